"""
Scratch storage for uploaded files waiting to be committed.

An upload is written here by the preview endpoint and referenced afterwards by
its ``tempFilePath``. The import leases the file while it runs and deletes it
once the job is terminal; previews nobody commits are swept after
``upload_ttl_seconds``.
"""
import logging
import os
import shutil
import threading
import time
import uuid
from typing import BinaryIO, Callable, Dict, Optional

from dataask.core.errors import DataAskError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_COPY_CHUNK_BYTES = 1024 * 1024


class UploadTooLargeError(ValidationError):
    status_code = 413

    def __init__(self, file_name: str, max_bytes: int):
        super().__init__(
            f"{file_name} is too large. "
            f"Maximum allowed upload size is {max_bytes // (1024 * 1024)}MB.",
            details={"max_bytes": max_bytes},
        )


class ScratchFileStore:
    """Directory of uploaded files keyed by their absolute path."""

    def __init__(
        self,
        root: str,
        max_bytes: int,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.root = os.path.abspath(root)
        self.max_bytes = max_bytes
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._leases: Dict[str, int] = {}
        self._lock = threading.Lock()

    def ensure_root(self) -> None:
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create upload directory '{self.root}': {exc}") from exc

    def save(self, stream: BinaryIO, file_name: str) -> str:
        """
        Copy ``stream`` into the store and return the new file's path.

        The copy is chunked and aborted as soon as the size limit is crossed, so
        an oversized upload never lands on disk in full.
        """
        self.ensure_root()
        extension = os.path.splitext(file_name or "")[1].lower()
        path = os.path.join(self.root, f"{uuid.uuid4()}{extension}")
        written = 0
        try:
            with open(path, "wb") as target:
                while True:
                    chunk = stream.read(_COPY_CHUNK_BYTES)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise UploadTooLargeError(file_name, self.max_bytes)
                    target.write(chunk)
        except DataAskError:
            self._remove_quietly(path)
            raise
        except OSError as exc:
            self._remove_quietly(path)
            raise StorageError(f"Could not store upload '{file_name}': {exc}") from exc
        logger.info("Stored upload %s (%d bytes) at %s", file_name, written, path)
        return path

    def save_copy(self, source_path: str, file_name: str) -> str:
        """Copy an existing file (CLI imports) into the store."""
        if not os.path.isfile(source_path):
            raise ValidationError(f"File '{source_path}' does not exist")
        if os.path.getsize(source_path) > self.max_bytes:
            raise UploadTooLargeError(file_name, self.max_bytes)
        self.ensure_root()
        extension = os.path.splitext(file_name)[1].lower()
        path = os.path.join(self.root, f"{uuid.uuid4()}{extension}")
        shutil.copyfile(source_path, path)
        return path

    def resolve(self, temp_file_path: str) -> str:
        """Return the absolute path of a stored upload, rejecting paths outside the store."""
        if not temp_file_path:
            raise ValidationError("tempFilePath is required")
        path = os.path.abspath(temp_file_path)
        if os.path.dirname(path) != self.root:
            raise ValidationError("tempFilePath does not refer to an uploaded file")
        if not os.path.isfile(path):
            raise NotFoundError("Uploaded file not found or has expired. Please upload your file again.")
        return path

    def lease(self, temp_file_path: str) -> str:
        path = self.resolve(temp_file_path)
        with self._lock:
            self._leases[path] = self._leases.get(path, 0) + 1
        return path

    def release(self, path: str, *, discard: bool = True) -> None:
        """Drop one lease; the file is deleted when ``discard`` and no lease remains."""
        with self._lock:
            remaining = self._leases.get(path, 0) - 1
            if remaining > 0:
                self._leases[path] = remaining
                return
            self._leases.pop(path, None)
        if discard:
            self._remove_quietly(path)

    def is_leased(self, path: str) -> bool:
        with self._lock:
            return self._leases.get(os.path.abspath(path), 0) > 0

    def discard(self, temp_file_path: str) -> bool:
        """Delete an unleased upload; returns False when it was already gone."""
        try:
            path = self.resolve(temp_file_path)
        except NotFoundError:
            return False
        if self.is_leased(path):
            raise ValidationError("The upload is being imported and cannot be discarded")
        return self._remove_quietly(path)

    def sweep_expired(self) -> int:
        """Delete unleased uploads older than the TTL and return how many were removed."""
        if not os.path.isdir(self.root):
            return 0
        cutoff = self._clock() - self.ttl_seconds
        removed = 0
        for entry in os.scandir(self.root):
            if not entry.is_file() or self.is_leased(entry.path):
                continue
            try:
                expired = entry.stat().st_mtime <= cutoff
            except FileNotFoundError:
                continue
            if expired and self._remove_quietly(entry.path):
                removed += 1
        if removed:
            logger.info("Swept %d expired upload(s) from %s", removed, self.root)
        return removed

    @staticmethod
    def _remove_quietly(path: Optional[str]) -> bool:
        if not path:
            return False
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not delete upload %s: %s", path, exc)
            return False
