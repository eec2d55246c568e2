"""Job progress and status reporting collaborators.

The extraction pipeline reports into a job tracker it does not own.
Progress delivery goes through a bounded background queue so a slow
status store can never stall extraction.
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Mapping, Protocol

from core.constants import DEFAULT_MAX_PENDING_PROGRESS_UPDATES
from core.logging_config import get_logger
from core.types import JobProgress

_LOGGER = get_logger(__name__)

_CLOSE = object()


class ProgressReporter(Protocol):
    """Job tracker contract used by the pipeline."""

    def report_progress(self, job_id: str, progress: JobProgress) -> None:
        """Record a progress update for a job."""

    def report_status(self, job_id: str, status: str, details: Mapping[str, Any]) -> None:
        """Record a status transition for a job."""


class LoggingJobReporter:
    """Reporter that only emits structured log events."""

    def report_progress(self, job_id: str, progress: JobProgress) -> None:
        _LOGGER.info(
            "job_progress",
            job_id=job_id,
            current=progress.current,
            total=progress.total,
            message=progress.message,
        )

    def report_status(self, job_id: str, status: str, details: Mapping[str, Any]) -> None:
        _LOGGER.info("job_status", job_id=job_id, status=status, **dict(details))


class NonBlockingReporter:
    """Fire-and-forget wrapper around a slow reporter.

    Progress updates go through a bounded queue drained by one worker
    thread; when the queue is full the update is dropped and counted.
    Status reports are queued behind pending progress and always
    delivered, so a terminal status is never lost.
    """

    def __init__(
        self,
        reporter: ProgressReporter,
        max_pending: int = DEFAULT_MAX_PENDING_PROGRESS_UPDATES,
    ) -> None:
        self._reporter = reporter
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_pending)
        self._worker = threading.Thread(target=self._run, name="job-reporter", daemon=True)
        self._closed = False
        self.dropped_updates = 0
        self._worker.start()

    def report_progress(self, job_id: str, progress: JobProgress) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(("progress", job_id, progress))
        except queue.Full:
            self.dropped_updates += 1

    def report_status(self, job_id: str, status: str, details: Mapping[str, Any]) -> None:
        if self._closed:
            self._deliver(("status", job_id, (status, dict(details))))
            return
        self._queue.put(("status", job_id, (status, dict(details))))

    def close(self) -> None:
        """Deliver queued updates and stop the worker thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_CLOSE)
        self._worker.join()
        if self.dropped_updates:
            _LOGGER.info("job_progress_updates_dropped", dropped=self.dropped_updates)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            self._deliver(item)

    def _deliver(self, item: tuple[str, str, Any]) -> None:
        kind, job_id, payload = item
        try:
            if kind == "progress":
                self._reporter.report_progress(job_id, payload)
            else:
                status, details = payload
                self._reporter.report_status(job_id, status, details)
        except Exception as error:
            # Reporting is best-effort; extraction must keep going.
            _LOGGER.warning("job_report_failed", job_id=job_id, kind=kind, error=str(error))
