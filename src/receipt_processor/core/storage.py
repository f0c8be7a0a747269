from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from receipt_processor.core.config import settings
from receipt_processor.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredFile:
    path: Path
    byte_size: int


class UploadStorage:
    """Raw upload store. Files live on local disk so they can be archived by rename."""

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def put(self, *, filename: str, body: bytes) -> StoredFile:
        start = time.monotonic()
        path = self._root / f"{uuid.uuid4().hex}-{filename}"
        try:
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger,
                "storage.put.failure",
                path=str(path),
                byte_size=len(body),
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            path=str(path),
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredFile(path=path, byte_size=len(body))

    def read(self, path: str | Path) -> bytes:
        start = time.monotonic()
        target = Path(path)
        if not target.exists():
            log_event(
                logger,
                "storage.read.failure",
                path=str(target),
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"File not found: {target}")
        try:
            return target.read_bytes()
        except OSError as e:
            log_exception(
                logger,
                "storage.read.failure",
                path=str(target),
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"Could not read {target}: {e}") from e


_storage: UploadStorage | None = None


def get_storage() -> UploadStorage:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage

    root = settings.upload_dir
    if not root.is_absolute():
        root = Path(os.getcwd()) / root
    _storage = UploadStorage(root)
    return _storage
