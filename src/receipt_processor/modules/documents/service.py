from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from fastapi import HTTPException, status
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from receipt_processor.core.config import settings
from receipt_processor.core.errors import IllegalTransitionError, StoreError
from receipt_processor.core.logging import get_logger, log_event
from receipt_processor.core.models import utcnow
from receipt_processor.core.storage import get_storage
from receipt_processor.modules.documents.models import (
    ALLOWED_TRANSITIONS,
    FileRecord,
    FileStatus,
)

logger = get_logger(__name__)


def get_file_record(session: Session, *, file_record_id: uuid.UUID) -> FileRecord | None:
    return session.scalar(select(FileRecord).where(FileRecord.id == file_record_id))


def get_file_record_or_404(session: Session, *, file_record_id: uuid.UUID) -> FileRecord:
    record = get_file_record(session, file_record_id=file_record_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return record


def ingest_file_record(
    session: Session, *, file_name: str, file_path: str
) -> tuple[FileRecord, bool]:
    """
    Create or refresh the record for an uploaded file.

    A re-upload under the same original name replaces the content of the existing
    record instead of creating a second one. Returns the record and whether it is new.
    """
    existing = session.scalar(
        select(FileRecord).where(FileRecord.file_name == file_name).order_by(FileRecord.created_at)
    )
    if existing:
        previous_path = existing.file_path
        existing.file_path = file_path
        existing.updated_at = utcnow()
        session.add(existing)
        session.commit()
        session.refresh(existing)
        log_event(
            logger,
            "file_record.ingest",
            file_record_id=str(existing.id),
            file_name=file_name,
            file_path=file_path,
            previous_path=previous_path,
            action="updated",
        )
        return existing, False

    record = FileRecord(
        file_name=file_name,
        file_path=file_path,
        is_valid=True,
        is_processed=False,
        status=FileStatus.PENDING,
        retry_count=0,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    log_event(
        logger,
        "file_record.ingest",
        file_record_id=str(record.id),
        file_name=file_name,
        file_path=file_path,
        action="created",
    )
    return record, True


def ingest_upload(session: Session, *, filename: str, body: bytes) -> tuple[FileRecord, bool]:
    name = sanitize_filename(filename) or "upload.pdf"
    stored = get_storage().put(filename=name, body=body)
    return ingest_file_record(session, file_name=name, file_path=str(stored.path))


def is_accepted_filename(filename: str) -> bool:
    suffix = Path(filename).suffix.lower()
    return suffix in {ext.lower() for ext in settings.accepted_extensions}


def check_file_validity(file_path: str) -> str | None:
    """Return a human-readable reason when the file is not an accepted document, else None."""
    if not is_accepted_filename(file_path):
        kinds = "/".join(ext.lstrip(".").upper() for ext in settings.accepted_extensions)
        return f"Not a valid {kinds} file"
    if settings.validate_pdf_header:
        path = Path(file_path)
        if path.suffix.lower() == ".pdf" and path.exists():
            with path.open("rb") as fh:
                head = fh.read(1024)
            if not _looks_like_pdf_bytes(head):
                return "Missing %PDF header"
    return None


def validate_file_record(session: Session, *, file_record_id: uuid.UUID) -> FileRecord:
    record = get_file_record_or_404(session, file_record_id=file_record_id)
    reason = check_file_validity(record.file_path)
    record.is_valid = reason is None
    record.invalid_reason = reason
    session.add(record)
    session.commit()
    session.refresh(record)
    log_event(
        logger,
        "file_record.validate",
        file_record_id=str(record.id),
        is_valid=record.is_valid,
        invalid_reason=reason,
    )
    return record


def claim_file_record(
    session: Session,
    *,
    record: FileRecord,
    from_statuses: Iterable[FileStatus],
    stale_before: datetime | None = None,
) -> bool:
    """
    Atomically move a record into PROCESSING.

    The UPDATE only matches while the row is still in one of `from_statuses` (or is a
    PROCESSING row last touched before `stale_before`), so of two concurrent attempts
    exactly one sees a matched row.
    """
    allowed = tuple(from_statuses)
    for current in allowed:
        if FileStatus.PROCESSING not in ALLOWED_TRANSITIONS[current]:
            raise IllegalTransitionError(f"Cannot claim a record from status {current.value}")

    condition = FileRecord.status.in_(allowed)
    if stale_before is not None:
        condition = condition | (
            (FileRecord.status == FileStatus.PROCESSING) & (FileRecord.updated_at < stale_before)
        )
    try:
        result = session.execute(
            update(FileRecord)
            .where(FileRecord.id == record.id, condition)
            .values(status=FileStatus.PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            session.rollback()
            return False
        session.commit()
        session.refresh(record)
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreError(f"Could not claim file record {record.id}: {e}") from e
    return True


def mark_completed(session: Session, *, record: FileRecord, file_path: str) -> FileRecord:
    _transition(record, FileStatus.COMPLETED)
    record.file_path = file_path
    record.is_processed = True
    record.last_error = None
    record.next_retry_at = None
    return _commit(session, record)


def mark_queued(
    session: Session,
    *,
    record: FileRecord,
    error: str,
    retry_count: int | None = None,
    next_retry_at: datetime | None = None,
) -> FileRecord:
    _transition(record, FileStatus.QUEUED)
    record.last_error = error
    if retry_count is not None:
        record.retry_count = retry_count
    record.next_retry_at = next_retry_at
    return _commit(session, record)


def mark_failed(
    session: Session, *, record: FileRecord, error: str, retry_count: int | None = None
) -> FileRecord:
    _transition(record, FileStatus.FAILED)
    record.last_error = error
    if retry_count is not None:
        record.retry_count = retry_count
    record.next_retry_at = None
    return _commit(session, record)


def list_retry_candidates(
    session: Session, *, now: datetime, limit: int, stale_before: datetime | None = None
) -> list[FileRecord]:
    due_queued = (FileRecord.status == FileStatus.QUEUED) & (
        FileRecord.next_retry_at.is_(None) | (FileRecord.next_retry_at <= now)
    )
    stuck_pending = (
        (FileRecord.status == FileStatus.PENDING)
        & FileRecord.is_valid.is_(True)
        & FileRecord.is_processed.is_(False)
    )
    conditions = [due_queued, stuck_pending]
    if stale_before is not None:
        conditions.append(
            (FileRecord.status == FileStatus.PROCESSING) & (FileRecord.updated_at < stale_before)
        )
    return list(
        session.scalars(
            select(FileRecord)
            .where(or_(*conditions))
            .order_by(FileRecord.updated_at.asc())
            .limit(limit)
        )
    )


def sanitize_filename(name: str) -> str:
    # Strip any path components and normalize whitespace.
    name = name.replace("\\", "/").split("/")[-1].strip()
    return " ".join(name.split())


def _transition(record: FileRecord, target: FileStatus) -> None:
    current = record.status
    if target not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransitionError(
            f"File record {record.id}: {current.value} -> {target.value} is not allowed"
        )
    record.status = target


def _commit(session: Session, record: FileRecord) -> FileRecord:
    session.add(record)
    try:
        session.commit()
        session.refresh(record)
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreError(f"Could not persist file record {record.id}: {e}") from e
    return record


def _looks_like_pdf_bytes(body: bytes) -> bool:
    if not body:
        return False
    b = body.lstrip()
    if b.startswith(b"\xef\xbb\xbf"):
        b = b[3:].lstrip()
    return b.startswith(b"%PDF")
