"""
Execution backend protocol.

The backend runs queries asynchronously and exposes only poll-based status.
Implementations raise BackendError for any failed call.
"""

from typing import Optional, Protocol

from .entities import DatabaseSchema, ExecutionStatus, ResultSet, SubmissionResult


class ExecutionBackend(Protocol):
    """Protocol for a remote query execution backend."""

    async def submit(
        self,
        query_text: str,
        database: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Start a new execution.

        Args:
            query_text: SQL to execute
            database: Target database; the backend default is used when None

        Returns:
            The new execution handle and the database it resolved to
        """
        ...

    async def get_execution_state(self, execution_handle: str) -> ExecutionStatus:
        """Get the current state of an execution."""
        ...

    async def cancel(self, execution_handle: str) -> None:
        """Ask the backend to stop an execution."""
        ...

    async def download_results(self, execution_handle: str) -> ResultSet:
        """Fetch every page of a finished execution's result set."""
        ...

    async def list_table_schema(self) -> DatabaseSchema:
        """List tables and columns of the default database."""
        ...
