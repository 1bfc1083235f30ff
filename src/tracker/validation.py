"""
EXPLAIN-based query validation.

Submits ``EXPLAIN <query>`` through the same backend primitives as real
executions and polls it to a terminal state. Validation attempts are tracked
in memory only and never written to the job repository.
"""

import asyncio
import logging
import time
from typing import Optional

from .backend import ExecutionBackend
from .entities import ExecutionState, ValidationResult
from .errors import BackendError


logger = logging.getLogger("query_tracker")

DEFAULT_VALIDATION_TIMEOUT = 15.0
DEFAULT_VALIDATION_POLL_INTERVAL = 0.75


class QueryValidator:
    """Checks query syntax by letting the backend plan it."""

    def __init__(
        self,
        backend: ExecutionBackend,
        timeout: float = DEFAULT_VALIDATION_TIMEOUT,
        poll_interval: float = DEFAULT_VALIDATION_POLL_INTERVAL,
    ):
        self.backend = backend
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def validate(self, query_text: str, database: Optional[str] = None) -> ValidationResult:
        """
        Validate a query.

        Returns:
            valid=True once the EXPLAIN succeeds; valid=False with the
            backend's reason when it fails or is cancelled, or after timeout
            (in which case the EXPLAIN is cancelled best-effort)

        Raises:
            BackendError: If the EXPLAIN cannot be submitted or polled
        """
        submission = await self.backend.submit(f"EXPLAIN {query_text}", database)
        handle = submission.execution_handle
        deadline = time.monotonic() + self.timeout

        while time.monotonic() < deadline:
            execution = await self.backend.get_execution_state(handle)

            if execution.state == ExecutionState.SUCCEEDED:
                logger.info(f"[Validator] Query valid (handle={handle})")
                return ValidationResult(valid=True, execution_handle=handle)

            if execution.state in (ExecutionState.FAILED, ExecutionState.CANCELLED):
                error = execution.reason or f"Validation ended in state: {execution.state.value}"
                logger.info(f"[Validator] Query invalid (handle={handle}): {error}")
                return ValidationResult(valid=False, execution_handle=handle, error=error)

            await asyncio.sleep(self.poll_interval)

        try:
            await self.backend.cancel(handle)
        except BackendError as e:
            logger.warning(f"[Validator] Cancel after timeout failed (handle={handle}): {e}")

        logger.warning(f"[Validator] Validation timed out after {self.timeout}s (handle={handle})")
        return ValidationResult(valid=False, execution_handle=handle, error="Validation timed out")
