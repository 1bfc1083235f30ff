"""
Reconciliation loop for the query tracker.

Each tick:
1. Lists RUNNING jobs (one indexed repository query)
2. Reconciles every job concurrently, each under its own job lock
3. Re-reads the job under lock and skips it unless it is still RUNNING
4. Maps the backend's execution state onto the local record

A failure while reconciling one job is logged and counted; it never stops
the other jobs in the tick, and the failed job's record is left unchanged
so the next tick retries it.

Ticks fire on a fixed interval independently of each other. A job whose
reconciliation from an earlier tick is still in flight is skipped, so a slow
backend call delays only that job.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .backend import ExecutionBackend
from .entities import ExecutionState, QueryJob, QueryStatus, now_iso
from .lock_manager import KeyedLockManager
from .persistence import JobRepository
from .result_store import FileResultStore


logger = logging.getLogger("query_tracker")

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_FAILURE_MESSAGE = "Athena query failed"

# Per-job outcomes reported by reconcile_one
OUTCOME_SKIPPED = "skipped"
OUTCOME_UNCHANGED = "unchanged"


@dataclass
class TickReport:
    """Summary of one reconciliation tick."""

    checked: int = 0
    updated: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


class Reconciler:
    """
    Polls the execution backend for RUNNING jobs and advances their records.

    Shares its KeyedLockManager with QueryService so that user-triggered
    refresh/cancel/delete and reconciliation never interleave on one job.
    """

    def __init__(
        self,
        repository: JobRepository,
        backend: ExecutionBackend,
        result_store: FileResultStore,
        lock_manager: KeyedLockManager,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """
        Initialize Reconciler.

        Args:
            repository: JobRepository holding the job records
            backend: ExecutionBackend to poll
            result_store: Destination for downloaded result sets
            lock_manager: Lock manager shared with the lifecycle service
            poll_interval: Seconds between ticks when running in background
        """
        self.repository = repository
        self.backend = backend
        self.result_store = result_store
        self.lock_manager = lock_manager
        self.poll_interval = poll_interval

        self._in_flight: set[str] = set()
        self._tick_tasks: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    # =========================================================================
    # Single Tick
    # =========================================================================

    async def run_tick(self) -> TickReport:
        """Reconcile every RUNNING job once."""
        report = TickReport()
        running = self.repository.list_running()
        if not running:
            return report

        logger.info(f"[Reconciler] Poll cycle started: {len(running)} running queries")

        job_ids = []
        for job in running:
            if job.id in self._in_flight:
                logger.debug(f"[Reconciler] {job.id} still reconciling from a previous tick, skipping")
                report.skipped.append(job.id)
                continue
            job_ids.append(job.id)
            self._in_flight.add(job.id)

        results = await asyncio.gather(
            *(self._reconcile_tracked(job_id) for job_id in job_ids),
            return_exceptions=True,
        )

        for job_id, result in zip(job_ids, results):
            report.checked += 1
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(f"[Reconciler] Poll processing failed for query {job_id}: {result}")
                report.failed[job_id] = str(result)
            elif result == OUTCOME_SKIPPED:
                report.skipped.append(job_id)
            elif result != OUTCOME_UNCHANGED:
                report.updated[job_id] = result

        logger.info(
            f"[Reconciler] Poll cycle finished: {report.checked} checked, "
            f"{len(report.updated)} updated, {len(report.failed)} failed"
        )
        return report

    async def _reconcile_tracked(self, job_id: str) -> str:
        try:
            return await self.lock_manager.run_with_lock(
                job_id, lambda: self.reconcile_one(job_id)
            )
        finally:
            self._in_flight.discard(job_id)

    async def reconcile_one(self, job_id: str) -> str:
        """
        Advance one job to match its backend execution state.

        Must be called while holding the job's lock.

        Returns:
            New status value, or OUTCOME_UNCHANGED / OUTCOME_SKIPPED
        """
        latest = self.repository.get_by_id(job_id)
        if latest is None or not latest.is_running():
            logger.debug(f"[Reconciler] Skipping {job_id}: not running anymore")
            return OUTCOME_SKIPPED

        execution = await self.backend.get_execution_state(latest.execution_handle)
        logger.info(
            f"[Reconciler] Polled query {latest.id} "
            f"(handle={latest.execution_handle}): {execution.state.value}"
        )

        if execution.state.is_in_flight():
            return OUTCOME_UNCHANGED

        if execution.state == ExecutionState.CANCELLED:
            self.repository.update_status(
                latest.id,
                QueryStatus.CANCELLED,
                cancelled_at=now_iso(),
                error_message=execution.reason,
            )
            logger.info(f"[Reconciler] Query {latest.id} marked cancelled by backend")
            return QueryStatus.CANCELLED.value

        if execution.state == ExecutionState.FAILED:
            self.repository.update_status(
                latest.id,
                QueryStatus.FAILED,
                completed_at=now_iso(),
                error_message=execution.reason or DEFAULT_FAILURE_MESSAGE,
            )
            logger.warning(f"[Reconciler] Query {latest.id} failed: {execution.reason}")
            return QueryStatus.FAILED.value

        if execution.state == ExecutionState.SUCCEEDED:
            return await self._store_results(latest)

        logger.warning(
            f"[Reconciler] Query {latest.id} reported state {execution.state.value}, "
            f"will retry next tick"
        )
        return OUTCOME_UNCHANGED

    async def _store_results(self, job: QueryJob) -> str:
        result_set = await self.backend.download_results(job.execution_handle)
        location = self.result_store.put(
            job.id, result_set.to_payload(job.id, job.execution_handle)
        )
        self.repository.update_status(
            job.id,
            QueryStatus.SUCCEEDED,
            completed_at=now_iso(),
            result_location=location,
            result_received_at=result_set.fetched_at,
        )
        logger.info(
            f"[Reconciler] Query {job.id} succeeded: {len(result_set.rows)} rows stored at {location}"
        )
        return QueryStatus.SUCCEEDED.value

    # =========================================================================
    # Background Loop
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start firing ticks every poll_interval seconds."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._tick_loop())
        logger.info(f"[Reconciler] Started with poll interval: {self.poll_interval}s")

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the loop and wait briefly for in-flight ticks."""
        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._tick_tasks:
            _, pending = await asyncio.wait(self._tick_tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("[Reconciler] Stopped")

    async def _tick_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            if not self._running:
                break

            task = asyncio.create_task(self._run_tick_safely())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def _run_tick_safely(self) -> None:
        try:
            await self.run_tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Reconciler] Polling cycle failed: {e}")
