"""
File-based result store.

One JSON blob per job, stored as ``<results_dir>/<job_id>.json``. The
location returned by ``put`` is the file path; callers treat it as opaque.
"""

import json
import logging
from pathlib import Path
from typing import Any

from .errors import StorageError


logger = logging.getLogger("query_tracker")


class FileResultStore:
    """Result blobs addressed by job id."""

    def __init__(self, results_dir: str | Path):
        self.results_dir = Path(results_dir)
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, job_id: str) -> Path:
        """Get path to a job's result file."""
        return self.results_dir / f"{job_id}.json"

    def put(self, job_id: str, payload: dict[str, Any]) -> str:
        """
        Persist a result payload, replacing any previous blob for the job.

        Returns:
            Location of the stored blob
        """
        path = self.path_for(job_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError("result_put", str(e)) from e

        logger.debug(f"[ResultStore] Stored results for {job_id} at {path}")
        return str(path)

    def load(self, location: str) -> dict[str, Any]:
        """Read a stored payload back."""
        try:
            with open(location, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError("result_load", str(e)) from e

    def exists(self, job_id: str) -> bool:
        return self.path_for(job_id).exists()

    def delete(self, job_id: str) -> bool:
        """
        Remove a job's blob. Deleting a missing blob is not an error.

        Returns:
            True if a file was removed
        """
        path = self.path_for(job_id)
        try:
            if not path.exists():
                return False
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError("result_delete", str(e)) from e

        logger.debug(f"[ResultStore] Deleted results for {job_id}")
        return True
