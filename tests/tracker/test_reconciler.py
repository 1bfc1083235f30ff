"""
Reconciliation tests.

- Backend state -> local status mapping
- Per-job failure isolation within a tick
- Re-read under lock (races with cancel)
- Cooperative skipping of jobs still in flight from an earlier tick
- Background loop start / stop
"""

import asyncio
from pathlib import Path

import pytest

from src.tracker import (
    BackendError,
    ExecutionState,
    ExecutionStatus,
    InvalidStateError,
    QueryService,
    QueryStatus,
    ResultSet,
    StorageError,
)
from src.tracker.reconciler import DEFAULT_FAILURE_MESSAGE


class TestStateMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [ExecutionState.QUEUED, ExecutionState.RUNNING, ExecutionState.UNKNOWN])
    async def test_non_terminal_states_leave_record_untouched(self, service: QueryService, backend, state):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, state)

        report = await service.run_reconciliation_tick()

        assert report.checked == 1
        assert report.updated == {}
        assert service.get(job.id) == job

    @pytest.mark.asyncio
    async def test_succeeded_downloads_and_stores_results(self, service: QueryService, backend, result_store):
        job = await service.submit("SELECT id, name FROM t")
        backend.set_states(job.execution_handle, ExecutionState.SUCCEEDED)
        backend.results[job.execution_handle] = ResultSet(
            columns=["id", "name"], rows=[["7", "x"]], fetched_at="2026-01-01T00:00:05Z"
        )

        report = await service.run_reconciliation_tick()

        stored = service.get(job.id)
        assert report.updated == {job.id: "SUCCEEDED"}
        assert stored.status == QueryStatus.SUCCEEDED
        assert stored.result_received_at == "2026-01-01T00:00:05Z"
        assert stored.completed_at is not None
        assert Path(stored.result_location) == result_store.path_for(job.id)
        assert result_store.load(stored.result_location)["rows"] == [["7", "x"]]

    @pytest.mark.asyncio
    async def test_failed_records_reason(self, service: QueryService, backend):
        job = await service.submit("SELEC 1")
        backend.set_states(
            job.execution_handle,
            ExecutionStatus(ExecutionState.FAILED, "SYNTAX_ERROR: mismatched input 'SELEC'"),
        )

        await service.run_reconciliation_tick()

        failed = service.get(job.id)
        assert failed.status == QueryStatus.FAILED
        assert failed.error_message == "SYNTAX_ERROR: mismatched input 'SELEC'"
        assert failed.completed_at is not None
        assert failed.result_location is None

    @pytest.mark.asyncio
    async def test_failed_without_reason_uses_default_message(self, service: QueryService, backend):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionState.FAILED)

        await service.run_reconciliation_tick()

        assert service.get(job.id).error_message == DEFAULT_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_cancelled_by_backend(self, service: QueryService, backend):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionStatus(ExecutionState.CANCELLED, "Stopped by admin"))

        await service.run_reconciliation_tick()

        cancelled = service.get(job.id)
        assert cancelled.status == QueryStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert cancelled.error_message == "Stopped by admin"

    @pytest.mark.asyncio
    async def test_empty_tick(self, service: QueryService, backend):
        report = await service.run_reconciliation_tick()

        assert report.checked == 0
        assert backend.state_calls == []


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_one_failing_job_does_not_stop_others(self, service: QueryService, backend):
        broken = await service.submit("SELECT 1")
        healthy = await service.submit("SELECT 2")
        backend.state_errors[broken.execution_handle] = BackendError("get_execution_state", "ThrottlingException")
        backend.set_states(healthy.execution_handle, ExecutionState.SUCCEEDED)

        report = await service.run_reconciliation_tick()

        assert report.checked == 2
        assert broken.id in report.failed
        assert report.updated == {healthy.id: "SUCCEEDED"}
        assert service.get(broken.id).status == QueryStatus.RUNNING
        assert service.get(healthy.id).status == QueryStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_download_failure_is_retried_next_tick(self, service: QueryService, backend):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionState.SUCCEEDED)
        backend.download_errors[job.execution_handle] = BackendError("download_results", "InternalServerException")

        first = await service.run_reconciliation_tick()
        assert job.id in first.failed
        assert service.get(job.id).status == QueryStatus.RUNNING

        second = await service.run_reconciliation_tick()
        assert second.updated == {job.id: "SUCCEEDED"}

    @pytest.mark.asyncio
    async def test_background_tick_survives_listing_failure(self, service: QueryService, monkeypatch):
        def broken_listing():
            raise StorageError("list_running", "database is locked")

        monkeypatch.setattr(service.repository, "list_running", broken_listing)

        with pytest.raises(StorageError):
            await service.run_reconciliation_tick()

        # The loop's wrapper logs and carries on
        await service.reconciler._run_tick_safely()


class TestLockInteraction:

    @pytest.mark.asyncio
    async def test_cancel_waits_for_tick_then_sees_completed_job(
        self, service: QueryService, backend, lock_manager, wait_until
    ):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionState.SUCCEEDED)
        gate = backend.state_gates[job.execution_handle] = asyncio.Event()

        tick = asyncio.create_task(service.run_reconciliation_tick())
        await wait_until(lambda: job.execution_handle in backend.state_calls)

        cancel = asyncio.create_task(service.cancel(job.id))
        await asyncio.sleep(0.01)
        assert not cancel.done()

        gate.set()
        report = await tick

        with pytest.raises(InvalidStateError) as exc_info:
            await cancel
        assert exc_info.value.code == InvalidStateError.ALREADY_COMPLETED
        assert report.updated == {job.id: "SUCCEEDED"}
        assert service.get(job.id).status == QueryStatus.SUCCEEDED
        assert lock_manager.max_active[job.id] == 1
        assert len(lock_manager) == 0

    @pytest.mark.asyncio
    async def test_tick_skips_job_cancelled_while_waiting_for_lock(
        self, service: QueryService, backend, result_store, lock_manager, wait_until
    ):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionState.SUCCEEDED)
        backend.cancel_gate = asyncio.Event()

        cancel = asyncio.create_task(service.cancel(job.id))
        await wait_until(lambda: backend.cancel_calls == [job.execution_handle])

        tick = asyncio.create_task(service.run_reconciliation_tick())
        await asyncio.sleep(0.01)
        assert not tick.done()

        backend.cancel_gate.set()
        await cancel
        report = await tick

        assert report.skipped == [job.id]
        assert backend.download_calls == []
        assert not result_store.exists(job.id)
        assert service.get(job.id).status == QueryStatus.CANCELLED
        assert lock_manager.max_active[job.id] == 1

    @pytest.mark.asyncio
    async def test_job_still_in_flight_is_skipped_by_next_tick(self, service: QueryService, backend, wait_until):
        job = await service.submit("SELECT 1")
        gate = backend.state_gates[job.execution_handle] = asyncio.Event()

        first = asyncio.create_task(service.run_reconciliation_tick())
        await wait_until(lambda: job.execution_handle in backend.state_calls)

        second = await asyncio.wait_for(service.run_reconciliation_tick(), timeout=1.0)

        assert second.skipped == [job.id]
        assert second.checked == 0
        assert backend.state_calls.count(job.execution_handle) == 1

        gate.set()
        await first

    @pytest.mark.asyncio
    async def test_slow_job_does_not_delay_others(self, service: QueryService, backend, wait_until):
        slow = await service.submit("SELECT 1")
        fast = await service.submit("SELECT 2")
        gate = backend.state_gates[slow.execution_handle] = asyncio.Event()
        backend.set_states(fast.execution_handle, ExecutionState.SUCCEEDED)

        tick = asyncio.create_task(service.run_reconciliation_tick())
        await wait_until(lambda: service.get(fast.id).status == QueryStatus.SUCCEEDED)
        assert not tick.done()

        gate.set()
        await tick


class TestBackgroundLoop:

    @pytest.mark.asyncio
    async def test_loop_reconciles_until_stopped(self, service: QueryService, backend, wait_until):
        job = await service.submit("SELECT 1")
        backend.set_states(job.execution_handle, ExecutionState.QUEUED, ExecutionState.RUNNING, ExecutionState.SUCCEEDED)

        service.start()
        assert service.is_running

        await wait_until(lambda: service.get(job.id).status == QueryStatus.SUCCEEDED)
        await service.stop()

        assert not service.is_running
        assert backend.state_calls.count(job.execution_handle) >= 3

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, service: QueryService):
        service.start()
        task = service.reconciler._loop_task
        service.start()

        assert service.reconciler._loop_task is task
        await service.stop()
