"""
Query Tracker Core Module.

Tracks long-running queries executed by a remote, poll-only backend and
reconciles their state into durable local records.
"""

from .entities import (
    QueryStatus,
    ExecutionState,
    QueryJob,
    SubmissionResult,
    ExecutionStatus,
    ResultSet,
    TableSchema,
    DatabaseSchema,
    ValidationResult,
)
from .errors import (
    TrackerError,
    JobNotFoundError,
    InvalidStateError,
    BackendError,
    StorageError,
)
from .backend import ExecutionBackend
from .lock_manager import KeyedLockManager
from .persistence import JobRepository
from .result_store import FileResultStore
from .reconciler import Reconciler, TickReport
from .validation import QueryValidator
from .service import QueryService

__all__ = [
    # Entities
    "QueryStatus",
    "ExecutionState",
    "QueryJob",
    "SubmissionResult",
    "ExecutionStatus",
    "ResultSet",
    "TableSchema",
    "DatabaseSchema",
    "ValidationResult",
    # Errors
    "TrackerError",
    "JobNotFoundError",
    "InvalidStateError",
    "BackendError",
    "StorageError",
    # Collaborators
    "ExecutionBackend",
    "JobRepository",
    "FileResultStore",
    # Concurrency
    "KeyedLockManager",
    "Reconciler",
    "TickReport",
    # Validation
    "QueryValidator",
    # Service
    "QueryService",
]
