"""Filesystem-backed processing job documents.

This module records job progress and terminal status as one JSON
document per job. It implements the reporter contract the extraction
pipeline writes into.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import re
import threading
from typing import Any, Mapping
from uuid import uuid4

from core.constants import (
    JOB_STATUS_PROCESSING,
    JOBS_DIR_NAME,
    TERMINAL_JOB_STATUSES,
)
from core.errors import PersistenceError
from core.types import JobProgress

_JOB_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class FileJobStore:
    """Job tracker persisting ``jobs/<job_id>.json`` documents."""

    def __init__(self, data_root: Path) -> None:
        self._jobs_dir = data_root / JOBS_DIR_NAME
        self._lock = threading.Lock()

    def create_job(self, owner_id: str, source_uri: str) -> str:
        """Create a pending job and return its id."""
        job_id = uuid4().hex
        now = _utc_now()
        self._write(
            job_id,
            {
                "job_id": job_id,
                "owner_id": owner_id,
                "source_uri": source_uri,
                "status": "pending",
                "created_at": now,
                "updated_at": now,
            },
        )
        return job_id

    def load_job(self, job_id: str) -> dict[str, Any]:
        """Load a job document.

        Raises:
            PersistenceError: If the job does not exist or is unreadable.
        """
        path = self._job_path(job_id)
        if not path.exists():
            raise PersistenceError(f"Job {job_id} not found under {self._jobs_dir}.")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            raise PersistenceError(f"Failed to read job document {path}: {error}.") from error

    def report_progress(self, job_id: str, progress: JobProgress) -> None:
        self._update(
            job_id,
            {
                "status": JOB_STATUS_PROCESSING,
                "progress": {
                    "current": progress.current,
                    "total": progress.total,
                    "message": progress.message,
                },
            },
        )

    def report_status(self, job_id: str, status: str, details: Mapping[str, Any]) -> None:
        updates: dict[str, Any] = {"status": status, **dict(details)}
        if status in TERMINAL_JOB_STATUSES:
            updates["completed_at"] = _utc_now()
        self._update(job_id, updates)

    def _update(self, job_id: str, updates: dict[str, Any]) -> None:
        with self._lock:
            path = self._job_path(job_id)
            document: dict[str, Any] = {"job_id": job_id}
            if path.exists():
                document = self.load_job(job_id)
            document.update(updates)
            document["updated_at"] = _utc_now()
            self._write(job_id, document)

    def _write(self, job_id: str, document: dict[str, Any]) -> None:
        path = self._job_path(job_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as error:
            raise PersistenceError(f"Failed to write job document {path}: {error}.") from error

    def _job_path(self, job_id: str) -> Path:
        if not _JOB_ID_PATTERN.fullmatch(job_id):
            raise PersistenceError(
                f"Invalid job id '{job_id}': use letters, digits, '_' or '-'."
            )
        return self._jobs_dir / f"{job_id}.json"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
