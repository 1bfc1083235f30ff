"""
Pytest configuration and shared fixtures.

Base fixtures:
  - Temporary job database and result directory (per test)
  - FakeExecutionBackend with scripted execution states
  - InstrumentedLockManager that records concurrent holders per job
  - QueryService wired from the above
"""

import asyncio
from collections import defaultdict
from typing import Optional

import pytest

from src.tracker import (
    BackendError,
    DatabaseSchema,
    ExecutionState,
    ExecutionStatus,
    FileResultStore,
    JobRepository,
    KeyedLockManager,
    QueryService,
    QueryValidator,
    ResultSet,
    SubmissionResult,
    TableSchema,
)


class FakeExecutionBackend:
    """
    In-memory execution backend.

    - Handles are issued as exec-1, exec-2, ...
    - set_states() scripts the states reported for a handle; the last state
      repeats once the script is exhausted (RUNNING when nothing is scripted)
    - *_error attributes make the matching call raise
    - Gates (asyncio.Event) hold a call open until the test sets them
    """

    def __init__(self, default_database: str = "analytics"):
        self.default_database = default_database
        self.submitted: list[tuple[str, Optional[str]]] = []
        self.state_calls: list[str] = []
        self.cancel_calls: list[str] = []
        self.download_calls: list[str] = []

        self.submit_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.state_errors: dict[str, Exception] = {}
        self.download_errors: dict[str, Exception] = {}

        self.state_gates: dict[str, asyncio.Event] = {}
        self.cancel_gate: Optional[asyncio.Event] = None

        self.results: dict[str, ResultSet] = {}
        self.schema = DatabaseSchema(
            catalog="AwsDataCatalog",
            database=default_database,
            tables=[
                TableSchema(name="events", columns=[{"name": "id", "type": "bigint"}]),
                TableSchema(name="users", columns=[{"name": "email", "type": "string"}]),
            ],
        )

        self._counter = 0
        self._states: dict[str, list[ExecutionStatus]] = {}

    def set_states(self, handle: str, *states) -> None:
        """Script the states reported for ``handle`` (ExecutionState or ExecutionStatus)."""
        self._states[handle] = [
            state if isinstance(state, ExecutionStatus) else ExecutionStatus(state=state)
            for state in states
        ]

    async def submit(self, query_text: str, database: Optional[str] = None) -> SubmissionResult:
        if self.submit_error is not None:
            raise self.submit_error
        self._counter += 1
        self.submitted.append((query_text, database))
        return SubmissionResult(
            execution_handle=f"exec-{self._counter}",
            resolved_database=database or self.default_database,
        )

    async def get_execution_state(self, execution_handle: str) -> ExecutionStatus:
        self.state_calls.append(execution_handle)
        gate = self.state_gates.get(execution_handle)
        if gate is not None:
            await gate.wait()
        if execution_handle in self.state_errors:
            raise self.state_errors[execution_handle]

        script = self._states.get(execution_handle)
        if not script:
            return ExecutionStatus(state=ExecutionState.RUNNING)
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    async def cancel(self, execution_handle: str) -> None:
        self.cancel_calls.append(execution_handle)
        if self.cancel_gate is not None:
            await self.cancel_gate.wait()
        if self.cancel_error is not None:
            raise self.cancel_error

    async def download_results(self, execution_handle: str) -> ResultSet:
        self.download_calls.append(execution_handle)
        if execution_handle in self.download_errors:
            raise self.download_errors.pop(execution_handle)
        return self.results.get(
            execution_handle,
            ResultSet(columns=["id", "name"], rows=[["1", "alpha"], ["2", None]]),
        )

    async def list_table_schema(self) -> DatabaseSchema:
        return self.schema


class InstrumentedLockManager(KeyedLockManager):
    """KeyedLockManager that records the maximum concurrent holders per key."""

    def __init__(self):
        super().__init__()
        self.active: dict[str, int] = defaultdict(int)
        self.max_active: dict[str, int] = defaultdict(int)

    async def run_with_lock(self, key, operation):
        async def _tracked():
            self.active[key] += 1
            self.max_active[key] = max(self.max_active[key], self.active[key])
            try:
                return await operation()
            finally:
                self.active[key] -= 1

        return await super().run_with_lock(key, _tracked)


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def repository(tmp_path) -> JobRepository:
    return JobRepository(tmp_path / "queries.sqlite")


@pytest.fixture
def result_store(tmp_path) -> FileResultStore:
    return FileResultStore(tmp_path / "results")


@pytest.fixture
def backend() -> FakeExecutionBackend:
    return FakeExecutionBackend()


@pytest.fixture
def lock_manager() -> InstrumentedLockManager:
    return InstrumentedLockManager()


@pytest.fixture
def service(repository, backend, result_store, lock_manager) -> QueryService:
    return QueryService(
        repository=repository,
        backend=backend,
        result_store=result_store,
        lock_manager=lock_manager,
        poll_interval=0.01,
        validator=QueryValidator(backend, timeout=0.2, poll_interval=0.01),
    )


@pytest.fixture
def backend_error() -> BackendError:
    return BackendError("cancel", "ThrottlingException: Rate exceeded")


@pytest.fixture
def wait_until():
    """Async helper: ``await wait_until(lambda: ...)``."""
    return _wait_until
