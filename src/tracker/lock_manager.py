"""
Per-key async lock manager.

Grants at most one concurrent operation per key (a job id), in strict arrival
order. Distinct keys never block each other.

Each key maps to the release future of the most recent caller (the tail of
the chain). A new caller installs its own release future as the tail and
waits for its predecessor's future. When a holder releases and is still the
tail, the key is dropped so idle jobs leave no bookkeeping behind.

Reentrancy is not supported: acquiring a key already held by the same task
deadlocks.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar


T = TypeVar("T")


class KeyedLockManager:
    """FIFO mutual exclusion per key for asyncio tasks."""

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._tails)

    def is_locked(self, key: str) -> bool:
        return key in self._tails

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold ``key`` for the duration of the ``async with`` block."""
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        released = loop.create_future()
        self._tails[key] = released

        if previous is not None:
            try:
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # Our turn comes only after the predecessor; hand it on then.
                previous.add_done_callback(lambda _f: self._release(key, released))
                raise

        try:
            yield
        finally:
            self._release(key, released)

    async def run_with_lock(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation()`` while holding ``key`` and return its result."""
        async with self.hold(key):
            return await operation()

    def _release(self, key: str, released: asyncio.Future) -> None:
        if not released.done():
            released.set_result(None)
        if self._tails.get(key) is released:
            del self._tails[key]
