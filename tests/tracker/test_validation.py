"""
Tests for QueryValidator (EXPLAIN-based validation).
"""

import pytest

from src.tracker import BackendError, ExecutionState, ExecutionStatus, QueryValidator


class TestQueryValidator:

    @pytest.mark.asyncio
    async def test_valid_query(self, backend):
        backend.set_states("exec-1", ExecutionState.QUEUED, ExecutionState.SUCCEEDED)
        validator = QueryValidator(backend, timeout=1.0, poll_interval=0.001)

        result = await validator.validate("SELECT 1", database="sales")

        assert result.valid is True
        assert result.execution_handle == "exec-1"
        assert result.error is None
        assert backend.submitted == [("EXPLAIN SELECT 1", "sales")]

    @pytest.mark.asyncio
    async def test_invalid_query_reports_reason(self, backend):
        backend.set_states("exec-1", ExecutionStatus(ExecutionState.FAILED, "SYNTAX_ERROR: line 1:9"))
        validator = QueryValidator(backend, timeout=1.0, poll_interval=0.001)

        result = await validator.validate("SELECT FROM")

        assert result.valid is False
        assert result.error == "SYNTAX_ERROR: line 1:9"

    @pytest.mark.asyncio
    async def test_timeout_cancels_explain(self, backend):
        validator = QueryValidator(backend, timeout=0.05, poll_interval=0.01)

        result = await validator.validate("SELECT 1")

        assert result.valid is False
        assert result.error == "Validation timed out"
        assert backend.cancel_calls == ["exec-1"]

    @pytest.mark.asyncio
    async def test_timeout_tolerates_cancel_failure(self, backend, backend_error):
        backend.cancel_error = backend_error
        validator = QueryValidator(backend, timeout=0.02, poll_interval=0.01)

        result = await validator.validate("SELECT 1")

        assert result.error == "Validation timed out"

    @pytest.mark.asyncio
    async def test_submit_failure_propagates(self, backend):
        backend.submit_error = BackendError("submit", "AccessDeniedException")
        validator = QueryValidator(backend)

        with pytest.raises(BackendError):
            await validator.validate("SELECT 1")
