"""
Job Repository for the query tracker.

- SQLite storage with WAL mode
- Index over status for the reconciler's "list RUNNING" query
- Atomic status-update-with-timestamps (omitted fields left unchanged)
- Refresh reset that clears every terminal field in one statement

The repository does NOT enforce the lifecycle state machine; callers
(QueryService, Reconciler) hold the job's lock around every write.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .entities import QueryJob, QueryStatus, now_iso
from .errors import StorageError


logger = logging.getLogger("query_tracker")


def _row_to_job(row: sqlite3.Row) -> QueryJob:
    return QueryJob(
        id=row["id"],
        display_name=row["name"],
        query_text=row["query_text"],
        target_database=row["target_database"],
        execution_handle=row["execution_handle"],
        status=QueryStatus(row["status"]),
        submitted_at=row["submitted_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
        cancelled_at=row["cancelled_at"],
        result_location=row["result_location"],
        result_received_at=row["result_received_at"],
        error_message=row["error_message"],
    )


class JobRepository:
    """
    SQLite-backed storage for QueryJob records.

    A connection is opened per operation, so one repository can be shared by
    request handlers and the reconciliation loop.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize repository and apply schema migrations.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Read-only connection; sqlite errors surface as StorageError."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StorageError(operation, str(e)) from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(operation, str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StorageError(operation, str(e)) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(operation, str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the queries table, its status index, and run migrations."""
        with self._transaction("init") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS queries (
                    id TEXT PRIMARY KEY,
                    query_text TEXT NOT NULL,
                    target_database TEXT,
                    execution_handle TEXT NOT NULL,
                    status TEXT NOT NULL,
                    submitted_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    result_location TEXT,
                    result_received_at TEXT,
                    error_message TEXT
                )
            """)

            self._migrate_name_column(conn)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_queries_status
                ON queries (status)
            """)

    def _migrate_name_column(self, conn: sqlite3.Connection) -> None:
        """Add the display name column to databases created without it."""
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(queries)")}
        if "name" not in columns:
            logger.info("[JobRepository] Adding name column to queries table")
            conn.execute("ALTER TABLE queries ADD COLUMN name TEXT NOT NULL DEFAULT ''")

        conn.execute("UPDATE queries SET name = id WHERE name IS NULL OR name = ''")

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create(self, job: QueryJob) -> QueryJob:
        """Insert a new job record."""
        with self._transaction("create") as conn:
            conn.execute(
                """
                INSERT INTO queries
                (id, name, query_text, target_database, execution_handle, status,
                 submitted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.display_name or job.id,
                    job.query_text,
                    job.target_database,
                    job.execution_handle,
                    job.status.value,
                    job.submitted_at,
                    job.updated_at,
                ),
            )
        return self.get_by_id(job.id)

    def get_by_id(self, job_id: str) -> Optional[QueryJob]:
        """Get a job by ID, or None."""
        with self._connection("get") as conn:
            row = conn.execute(
                "SELECT * FROM queries WHERE id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_job(row)

    def list_running(self) -> list[QueryJob]:
        """List all RUNNING jobs (served by idx_queries_status)."""
        with self._connection("list_running") as conn:
            rows = conn.execute(
                "SELECT * FROM queries WHERE status = ? ORDER BY submitted_at",
                (QueryStatus.RUNNING.value,),
            ).fetchall()

        return [_row_to_job(row) for row in rows]

    def list_all(self, limit: int = 100) -> list[QueryJob]:
        """List jobs, newest first."""
        with self._connection("list_all") as conn:
            rows = conn.execute(
                "SELECT * FROM queries ORDER BY submitted_at DESC LIMIT ?",
                (limit,),
            ).fetchall()

        return [_row_to_job(row) for row in rows]

    def update_status(
        self,
        job_id: str,
        status: QueryStatus,
        completed_at: Optional[str] = None,
        cancelled_at: Optional[str] = None,
        result_location: Optional[str] = None,
        result_received_at: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[QueryJob]:
        """
        Set the status and any supplied terminal fields in one statement.

        Fields passed as None keep their stored value.
        """
        with self._transaction("update_status") as conn:
            conn.execute(
                """
                UPDATE queries SET
                    status = ?,
                    updated_at = ?,
                    completed_at = COALESCE(?, completed_at),
                    cancelled_at = COALESCE(?, cancelled_at),
                    result_location = COALESCE(?, result_location),
                    result_received_at = COALESCE(?, result_received_at),
                    error_message = COALESCE(?, error_message)
                WHERE id = ?
                """,
                (
                    status.value,
                    now_iso(),
                    completed_at,
                    cancelled_at,
                    result_location,
                    result_received_at,
                    error_message,
                    job_id,
                ),
            )
        return self.get_by_id(job_id)

    def reset_for_refresh(self, job_id: str, execution_handle: str) -> Optional[QueryJob]:
        """Install a new execution handle, clear terminal fields, set RUNNING."""
        with self._transaction("reset_for_refresh") as conn:
            conn.execute(
                """
                UPDATE queries SET
                    execution_handle = ?,
                    status = ?,
                    updated_at = ?,
                    completed_at = NULL,
                    cancelled_at = NULL,
                    result_location = NULL,
                    result_received_at = NULL,
                    error_message = NULL
                WHERE id = ?
                """,
                (execution_handle, QueryStatus.RUNNING.value, now_iso(), job_id),
            )
        return self.get_by_id(job_id)

    def delete_by_id(self, job_id: str) -> bool:
        """Hard-delete a job. Returns True if a row was removed."""
        with self._transaction("delete") as conn:
            cursor = conn.execute("DELETE FROM queries WHERE id = ?", (job_id,))
            return cursor.rowcount > 0

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status."""
        with self._connection("count_by_status") as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM queries GROUP BY status"
            ).fetchall()

        counts = {status.value: 0 for status in QueryStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts
