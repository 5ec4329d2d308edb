"""
In-process tracking for long-running import jobs.

``ImportProgressRegistry`` is owned by the application (``app.state``) and
handed to both the bulk importer and the polling endpoint, so separate app
instances and tests never share job state.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, Optional

from dataask.api.schemas.shared import ImportJob, ImportSummary
from dataask.core.errors import NotFoundError

logger = logging.getLogger(__name__)


class _JobEntry:
    __slots__ = ("job", "cancel_event", "terminal_at")

    def __init__(self, job: ImportJob):
        self.job = job
        self.cancel_event = threading.Event()
        self.terminal_at: Optional[float] = None


class ImportProgressRegistry:
    """
    Map of import id -> live ``ImportJob``.

    The lock guards the key space only; each entry is written solely by the
    importer running that job, and readers always receive a copy.
    Terminal jobs are kept for ``retention_seconds`` so a final poll can
    observe completion or failure, then evicted on the next registry access.
    """

    def __init__(self, retention_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._entries: Dict[str, _JobEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def create(
        self,
        *,
        total_rows: int,
        table_name: Optional[str] = None,
        connection_id: Optional[str] = None,
        import_id: Optional[str] = None,
    ) -> ImportJob:
        """Register a new pending job and return a snapshot of it."""
        job = ImportJob(
            import_id=import_id or str(uuid.uuid4()),
            status="pending",
            progress=0,
            message="Waiting to start...",
            total_rows=total_rows,
            table_name=table_name,
            connection_id=connection_id,
        )
        with self._lock:
            self._evict_expired_locked()
            if job.import_id in self._entries:
                raise ValueError(f"Import id {job.import_id} is already registered")
            self._entries[job.import_id] = _JobEntry(job)
        logger.info("Registered import %s for table '%s' (%d rows)", job.import_id, table_name, total_rows)
        return job.model_copy(deep=True)

    def get(self, import_id: str) -> Optional[ImportJob]:
        with self._lock:
            self._evict_expired_locked()
            entry = self._entries.get(import_id)
            return entry.job.model_copy(deep=True) if entry else None

    def require(self, import_id: str) -> ImportJob:
        job = self.get(import_id)
        if job is None:
            raise NotFoundError(f"Import '{import_id}' not found")
        return job

    def update(
        self,
        import_id: str,
        *,
        status: Optional[str] = None,
        progress: Optional[int] = None,
        rows_processed: Optional[int] = None,
        message: Optional[str] = None,
    ) -> ImportJob:
        """Apply a progress update; progress never moves backwards and never reaches 100 here."""
        entry = self._entry(import_id)
        job = entry.job
        if job.is_terminal:
            return job.model_copy(deep=True)
        if status is not None:
            job.status = status
        if progress is not None:
            job.progress = max(job.progress, min(int(progress), 99))
        if rows_processed is not None:
            job.rows_processed = max(job.rows_processed, rows_processed)
        if message is not None:
            job.message = message
        job.updated_at = datetime.now()
        return job.model_copy(deep=True)

    def complete(
        self,
        import_id: str,
        *,
        summary: ImportSummary,
        message: str,
        rows_processed: Optional[int] = None,
    ) -> ImportJob:
        """Mark a job completed; ``rows_processed`` is the count the full pass actually read."""
        entry = self._entry(import_id)
        job = entry.job
        now = datetime.now()
        job.status = "completed"
        job.progress = 100
        job.rows_processed = job.total_rows if rows_processed is None else rows_processed
        job.summary = summary
        job.message = message
        job.updated_at = now
        job.completed_at = now
        entry.terminal_at = self._clock()
        logger.info("Import %s completed: %s", import_id, message)
        return job.model_copy(deep=True)

    def fail(
        self,
        import_id: str,
        *,
        error: str,
        reason: str,
        summary: Optional[ImportSummary] = None,
    ) -> ImportJob:
        entry = self._entry(import_id)
        job = entry.job
        now = datetime.now()
        job.status = "failed"
        job.error = error
        job.failure_reason = reason
        job.message = "Import cancelled" if reason == "cancelled" else "Import failed"
        if summary is not None:
            job.summary = summary
        job.updated_at = now
        job.completed_at = now
        entry.terminal_at = self._clock()
        logger.warning("Import %s failed (%s): %s", import_id, reason, error)
        return job.model_copy(deep=True)

    def request_cancel(self, import_id: str) -> ImportJob:
        """Flag a job for cancellation; the importer honours it at the next batch boundary."""
        entry = self._entry(import_id)
        if not entry.job.is_terminal:
            entry.cancel_event.set()
            logger.info("Cancellation requested for import %s", import_id)
        return entry.job.model_copy(deep=True)

    def is_cancelled(self, import_id: str) -> bool:
        return self._entry(import_id).cancel_event.is_set()

    def _entry(self, import_id: str) -> _JobEntry:
        with self._lock:
            entry = self._entries.get(import_id)
        if entry is None:
            raise NotFoundError(f"Import '{import_id}' not found")
        return entry

    def _evict_expired_locked(self) -> int:
        now = self._clock()
        expired = [
            import_id
            for import_id, entry in self._entries.items()
            if entry.terminal_at is not None and now - entry.terminal_at >= self.retention_seconds
        ]
        for import_id in expired:
            del self._entries[import_id]
        if expired:
            logger.debug("Evicted %d finished import job(s)", len(expired))
        return len(expired)
