from __future__ import annotations

import os
import re
import time
from datetime import date
from pathlib import Path

from receipt_processor.core.errors import FileSystemError
from receipt_processor.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_YEAR_DIR_RE = re.compile(r"^\d{4}$")


def _base_dir(path: Path) -> Path:
    parent = path.parent
    # Files that were already archived once sit in a year folder; reuse its parent.
    if _YEAR_DIR_RE.match(parent.name):
        return parent.parent
    return parent


def archive_target(current_path: str | Path, purchased_at: date) -> Path:
    current = Path(current_path)
    return _base_dir(current) / f"{purchased_at.year:04d}" / current.name


def locate_source(current_path: str | Path) -> Path | None:
    """
    Find a source file, looking into year folders when it is no longer at `current_path`.

    Covers the window where a file was moved but the record still holds the old path.
    """
    current = Path(current_path)
    if current.exists():
        return current
    base = _base_dir(current)
    if not base.is_dir():
        return None
    candidates = sorted(
        p for p in base.glob(f"*/{current.name}") if _YEAR_DIR_RE.match(p.parent.name)
    )
    return candidates[-1] if candidates else None


def archive_file(current_path: str | Path, purchased_at: date) -> Path:
    """
    Move a source file into a folder named after its purchase year.

    `uploads/r1.pdf` with a 2024 purchase date ends up at `uploads/2024/r1.pdf`.
    A source that is already gone (an earlier attempt moved it) is not an error.
    """
    start = time.monotonic()
    current = Path(current_path)
    target = archive_target(current, purchased_at)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        log_exception(
            logger,
            "archive.mkdir.failure",
            directory=str(target.parent),
        )
        raise FileSystemError(f"Could not create archive directory {target.parent}: {e}") from e

    if current == target:
        return target
    if not current.exists():
        log_event(
            logger,
            "archive.source_missing",
            source_path=str(current),
            target_path=str(target),
        )
        return target

    try:
        os.replace(current, target)
    except OSError as e:
        log_exception(
            logger,
            "archive.rename.failure",
            source_path=str(current),
            target_path=str(target),
        )
        raise FileSystemError(f"Could not move {current} to {target}: {e}") from e

    log_event(
        logger,
        "archive.moved",
        source_path=str(current),
        target_path=str(target),
        duration_ms=monotonic_ms(start),
    )
    return target
