"""
Query tracker exceptions.

Every error carries a short machine-readable ``code`` that the HTTP layer
maps onto a status code:
- NOT_FOUND: Unknown job id
- RUNNING / ALREADY_CANCELLED / ALREADY_COMPLETED / CANCELLED /
  RESULTS_NOT_AVAILABLE: Operation not valid in the current status
- BACKEND_ERROR: Execution backend call failed
- STORAGE_ERROR: Job repository or result store call failed
"""


class TrackerError(Exception):
    """Base exception for all query tracker errors."""

    code = "TRACKER_ERROR"


class JobNotFoundError(TrackerError):
    """Raised when a requested job does not exist."""

    code = "NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown query identifier: {job_id}")


class InvalidStateError(TrackerError):
    """
    Raised when an operation is not valid for the job's current status.

    Examples:
    - Refreshing a RUNNING job (code RUNNING)
    - Cancelling a CANCELLED job (code ALREADY_CANCELLED)
    - Cancelling a SUCCEEDED or FAILED job (code ALREADY_COMPLETED)
    """

    RUNNING = "RUNNING"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    CANCELLED = "CANCELLED"
    RESULTS_NOT_AVAILABLE = "RESULTS_NOT_AVAILABLE"

    def __init__(self, job_id: str, code: str, status: str, message: str):
        self.job_id = job_id
        self.code = code
        self.status = status
        super().__init__(message)


class BackendError(TrackerError):
    """Raised when an execution backend call fails."""

    code = "BACKEND_ERROR"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Backend {operation} failed: {message}")


class StorageError(TrackerError):
    """Raised when the job repository or the result store fails."""

    code = "STORAGE_ERROR"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Storage {operation} failed: {message}")
