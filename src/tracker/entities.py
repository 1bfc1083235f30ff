"""
Query Tracker Domain Entities.

- QueryJob: Durable record of one submitted query and its lifecycle
- SubmissionResult / ExecutionStatus / ResultSet: Values returned by the
  execution backend
- TableSchema / DatabaseSchema: Schema discovery results
- ValidationResult: Outcome of an EXPLAIN-based validation (never persisted)

Status values:
- QueryStatus is the local, user-facing lifecycle state
- ExecutionState is whatever the backend reports for one execution handle
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class QueryStatus(str, Enum):
    """
    Local job status.

    - RUNNING: Submitted attempt still in flight
    - SUCCEEDED: Results downloaded into the result store
    - FAILED: Backend reported a failure
    - CANCELLED: Cancelled locally or by the backend
    """

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (QueryStatus.SUCCEEDED, QueryStatus.FAILED, QueryStatus.CANCELLED)


class ExecutionState(str, Enum):
    """Execution state as reported by the backend for one handle."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ExecutionState":
        """Map a raw backend state string, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    def is_in_flight(self) -> bool:
        return self in (ExecutionState.QUEUED, ExecutionState.RUNNING)


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


@dataclass
class QueryJob:
    """
    Durable record of one submitted query.

    Mutability rules:
    - id, query_text, submitted_at: Immutable
    - execution_handle: Replaced only by a refresh (one live handle at a time)
    - status and terminal fields: Written only by the lifecycle service or the
      reconciler while holding the job's lock
    - result_location is set if and only if status is SUCCEEDED
    """

    id: str
    query_text: str
    execution_handle: str
    status: QueryStatus
    display_name: str = ""
    target_database: Optional[str] = None
    submitted_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    result_location: Optional[str] = None
    result_received_at: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def create(
        cls,
        query_text: str,
        execution_handle: str,
        display_name: Optional[str] = None,
        target_database: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> "QueryJob":
        """Create a new RUNNING job. The display name defaults to the id."""
        job_id = job_id or generate_uuid()
        now = now_iso()
        return cls(
            id=job_id,
            query_text=query_text,
            execution_handle=execution_handle,
            status=QueryStatus.RUNNING,
            display_name=display_name or job_id,
            target_database=target_database,
            submitted_at=now,
            updated_at=now,
        )

    def is_running(self) -> bool:
        return self.status == QueryStatus.RUNNING

    def is_terminal(self) -> bool:
        """Check if the current attempt has reached a terminal state."""
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class SubmissionResult:
    """Handle issued by the backend for a newly started attempt."""

    execution_handle: str
    resolved_database: Optional[str] = None


@dataclass
class ExecutionStatus:
    """Current backend state of one execution handle."""

    state: ExecutionState
    reason: Optional[str] = None


@dataclass
class ResultSet:
    """Fully assembled result set of one execution (all pages)."""

    columns: list[str]
    rows: list[list[Optional[str]]]
    fetched_at: str = field(default_factory=now_iso)

    def to_payload(self, job_id: str, execution_handle: str) -> dict[str, Any]:
        """Build the blob persisted in the result store."""
        return {
            "query_id": job_id,
            "execution_handle": execution_handle,
            "fetched_at": self.fetched_at,
            "columns": self.columns,
            "rows": self.rows,
        }


@dataclass
class TableSchema:
    name: str
    columns: list[dict[str, str]] = field(default_factory=list)


@dataclass
class DatabaseSchema:
    catalog: str
    database: str
    tables: list[TableSchema] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Outcome of an EXPLAIN-based validation. Held in memory only."""

    valid: bool
    execution_handle: Optional[str] = None
    error: Optional[str] = None
