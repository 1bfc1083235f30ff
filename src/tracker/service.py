"""
Query Service - lifecycle operations for tracked queries.

Wires the tracker components together:
- JobRepository (durable job records)
- ExecutionBackend (remote execution)
- FileResultStore (downloaded result sets)
- KeyedLockManager (one operation per job at a time)
- Reconciler (periodic polling of RUNNING jobs)
- QueryValidator (EXPLAIN-based validation)

Usage:
    service = QueryService.create(settings)
    service.start()
    job = await service.submit("SELECT 1")
    ...
    await service.stop()

State machine (per execution attempt):
    RUNNING -> SUCCEEDED | FAILED | CANCELLED
    SUCCEEDED | FAILED | CANCELLED -> RUNNING (refresh, new attempt)

Every mutation runs inside the job's lock; reads outside the lock are
snapshots that may already be superseded.
"""

import logging
from typing import Any, Optional

from .backend import ExecutionBackend
from .entities import DatabaseSchema, QueryJob, QueryStatus, ValidationResult, generate_uuid, now_iso
from .errors import InvalidStateError, JobNotFoundError, StorageError
from .lock_manager import KeyedLockManager
from .persistence import JobRepository
from .reconciler import DEFAULT_POLL_INTERVAL, Reconciler, TickReport
from .result_store import FileResultStore
from .validation import QueryValidator


logger = logging.getLogger("query_tracker")


class QueryService:
    """
    Lifecycle service for tracked queries.

    Provides:
    - submit / refresh / cancel / delete (locked per job id)
    - get / list_all / get_results (unlocked snapshots)
    - validate / get_schema (pass-through to the backend)
    - run_reconciliation_tick and background loop control
    """

    def __init__(
        self,
        repository: JobRepository,
        backend: ExecutionBackend,
        result_store: FileResultStore,
        lock_manager: Optional[KeyedLockManager] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        validator: Optional[QueryValidator] = None,
    ):
        """
        Initialize QueryService.

        Use QueryService.create() to build one from Settings.
        """
        self.repository = repository
        self.backend = backend
        self.result_store = result_store
        self.lock_manager = lock_manager if lock_manager is not None else KeyedLockManager()
        self.reconciler = Reconciler(
            repository=repository,
            backend=backend,
            result_store=result_store,
            lock_manager=self.lock_manager,
            poll_interval=poll_interval,
        )
        self.validator = validator if validator is not None else QueryValidator(backend)

    @classmethod
    def create(cls, settings, backend: Optional[ExecutionBackend] = None) -> "QueryService":
        """
        Create a QueryService with all components wired together.

        Args:
            settings: Settings instance (see src.infra.config)
            backend: Execution backend; an AthenaBackend is built when None

        Returns:
            Configured QueryService
        """
        if backend is None:
            from .athena import AthenaBackend
            backend = AthenaBackend.from_settings(settings)

        return cls(
            repository=JobRepository(settings.db_path),
            backend=backend,
            result_store=FileResultStore(settings.results_dir),
            poll_interval=settings.poll_interval,
            validator=QueryValidator(
                backend,
                timeout=settings.validation_timeout,
                poll_interval=settings.validation_poll_interval,
            ),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the background reconciliation loop."""
        self.reconciler.start()

    async def stop(self) -> None:
        await self.reconciler.stop()

    @property
    def is_running(self) -> bool:
        return self.reconciler.is_running

    async def run_reconciliation_tick(self) -> TickReport:
        """Run one reconciliation pass over all RUNNING jobs."""
        return await self.reconciler.run_tick()

    # =========================================================================
    # Mutations (locked per job id)
    # =========================================================================

    async def submit(
        self,
        query_text: str,
        display_name: Optional[str] = None,
        database: Optional[str] = None,
    ) -> QueryJob:
        """
        Start a query on the backend and record it as RUNNING.

        Raises:
            BackendError: Submission failed; no record is created
            StorageError: Record could not be written; the new execution is
                cancelled best-effort
        """
        job_id = generate_uuid()

        async def _submit() -> QueryJob:
            submission = await self.backend.submit(query_text, database)
            job = QueryJob.create(
                job_id=job_id,
                query_text=query_text,
                execution_handle=submission.execution_handle,
                display_name=display_name,
                target_database=submission.resolved_database or database,
            )
            try:
                created = self.repository.create(job)
            except StorageError:
                await self._cancel_best_effort(job_id, submission.execution_handle, "failed submit")
                raise
            logger.info(
                f"[QueryService] Query submitted: {job_id} (handle={submission.execution_handle})"
            )
            return created

        return await self.lock_manager.run_with_lock(job_id, _submit)

    async def refresh(self, job_id: str) -> QueryJob:
        """
        Re-run a finished query as a new attempt.

        Raises:
            JobNotFoundError: Unknown job
            InvalidStateError: Job is still RUNNING (code RUNNING)
            BackendError: Resubmission failed; the record is left unchanged
            StorageError: Reset failed; the new execution is cancelled best-effort
        """

        async def _refresh() -> QueryJob:
            existing = self._require(job_id)
            if existing.is_running():
                raise InvalidStateError(
                    job_id,
                    InvalidStateError.RUNNING,
                    existing.status.value,
                    "Cannot refresh while query is running",
                )

            submission = await self.backend.submit(existing.query_text, existing.target_database)
            try:
                refreshed = self.repository.reset_for_refresh(job_id, submission.execution_handle)
            except StorageError:
                await self._cancel_best_effort(job_id, submission.execution_handle, "failed refresh")
                raise

            if existing.result_location:
                try:
                    self.result_store.delete(job_id)
                except Exception as e:
                    logger.warning(f"[QueryService] Could not discard old results for {job_id}: {e}")

            logger.info(
                f"[QueryService] Query refreshed: {job_id} (handle={submission.execution_handle})"
            )
            return refreshed

        return await self.lock_manager.run_with_lock(job_id, _refresh)

    async def cancel(self, job_id: str) -> QueryJob:
        """
        Cancel a RUNNING query.

        The backend stop request is best-effort; the job is marked CANCELLED
        even if it fails.

        Raises:
            JobNotFoundError: Unknown job
            InvalidStateError: ALREADY_CANCELLED or ALREADY_COMPLETED
        """

        async def _cancel() -> QueryJob:
            existing = self._require(job_id)
            if existing.status == QueryStatus.CANCELLED:
                raise InvalidStateError(
                    job_id,
                    InvalidStateError.ALREADY_CANCELLED,
                    existing.status.value,
                    "Query is already cancelled",
                )
            if existing.is_terminal():
                raise InvalidStateError(
                    job_id,
                    InvalidStateError.ALREADY_COMPLETED,
                    existing.status.value,
                    "Completed query cannot be cancelled",
                )

            await self._cancel_best_effort(job_id, existing.execution_handle, "cancel")
            cancelled = self.repository.update_status(
                job_id, QueryStatus.CANCELLED, cancelled_at=now_iso()
            )
            logger.info(f"[QueryService] Query cancelled: {job_id}")
            return cancelled

        return await self.lock_manager.run_with_lock(job_id, _cancel)

    async def delete(self, job_id: str) -> str:
        """
        Delete a query, its results, and (best-effort) its live execution.

        Raises:
            JobNotFoundError: Unknown job
        """

        async def _delete() -> str:
            existing = self._require(job_id)
            if existing.is_running():
                await self._cancel_best_effort(job_id, existing.execution_handle, "delete")

            self.result_store.delete(job_id)
            self.repository.delete_by_id(job_id)
            logger.info(f"[QueryService] Query deleted: {job_id}")
            return job_id

        return await self.lock_manager.run_with_lock(job_id, _delete)

    async def _cancel_best_effort(self, job_id: str, execution_handle: str, reason: str) -> None:
        try:
            await self.backend.cancel(execution_handle)
        except Exception as e:
            logger.warning(
                f"[QueryService] Backend cancel ({reason}) failed for {job_id} "
                f"(handle={execution_handle}): {e}"
            )

    def _require(self, job_id: str) -> QueryJob:
        job = self.repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # =========================================================================
    # Reads (snapshots, no lock)
    # =========================================================================

    def get(self, job_id: str) -> QueryJob:
        """Get a job by ID. Raises JobNotFoundError."""
        return self._require(job_id)

    def list_all(self, limit: int = 100) -> list[QueryJob]:
        return self.repository.list_all(limit=limit)

    def get_results(self, job_id: str) -> tuple[QueryJob, dict[str, Any]]:
        """
        Load the stored result payload of a SUCCEEDED job.

        Raises:
            JobNotFoundError: Unknown job
            InvalidStateError: RUNNING, CANCELLED or RESULTS_NOT_AVAILABLE
        """
        job = self._require(job_id)
        if job.status == QueryStatus.RUNNING:
            raise InvalidStateError(
                job_id, InvalidStateError.RUNNING, job.status.value, "Query is still running"
            )
        if job.status == QueryStatus.CANCELLED:
            raise InvalidStateError(
                job_id, InvalidStateError.CANCELLED, job.status.value, "Query has been cancelled"
            )
        if job.status != QueryStatus.SUCCEEDED or not job.result_location:
            raise InvalidStateError(
                job_id,
                InvalidStateError.RESULTS_NOT_AVAILABLE,
                job.status.value,
                "No results available for this query",
            )

        return job, self.result_store.load(job.result_location)

    def get_stats(self) -> dict:
        """Job counts per status plus loop and lock state."""
        return {
            "counts": self.repository.count_by_status(),
            "reconciler_running": self.is_running,
            "locked_jobs": len(self.lock_manager),
        }

    # =========================================================================
    # Backend pass-through
    # =========================================================================

    async def validate(self, query_text: str, database: Optional[str] = None) -> ValidationResult:
        return await self.validator.validate(query_text, database)

    async def get_schema(self) -> DatabaseSchema:
        return await self.backend.list_table_schema()
