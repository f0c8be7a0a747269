from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from receipt_processor.core.config import settings
from receipt_processor.core.errors import (
    FailureKind,
    FileSystemError,
    RecordValidationError,
    StoreError,
)
from receipt_processor.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_processor.core.models import utcnow
from receipt_processor.core.storage import StorageError, get_storage
from receipt_processor.modules.documents.archiver import archive_file, locate_source
from receipt_processor.modules.documents.models import FileRecord, FileStatus
from receipt_processor.modules.documents.service import (
    claim_file_record,
    get_file_record,
    mark_completed,
    mark_failed,
    mark_queued,
)
from receipt_processor.modules.extraction.ai import ReceiptFields, extract_receipt_fields
from receipt_processor.modules.receipts.service import upsert_receipt

logger = get_logger(__name__)


class ProcessTrigger(str, enum.Enum):
    REQUEST = "request"
    QUEUE = "queue"


class OutcomeKind(str, enum.Enum):
    COMPLETED = "completed"
    QUEUED = "queued"
    FAILED = "failed"
    BUSY = "busy"


@dataclass(frozen=True)
class ProcessOutcome:
    kind: OutcomeKind
    file_record_id: uuid.UUID
    status: FileStatus
    retry_count: int = 0
    fields: ReceiptFields | None = None
    receipt_id: uuid.UUID | None = None
    failure_kind: FailureKind | None = None


# The queue never picks up terminal records; a manual request may re-run them.
_CLAIMABLE: dict[ProcessTrigger, tuple[FileStatus, ...]] = {
    ProcessTrigger.REQUEST: (
        FileStatus.PENDING,
        FileStatus.QUEUED,
        FileStatus.COMPLETED,
        FileStatus.FAILED,
    ),
    ProcessTrigger.QUEUE: (FileStatus.PENDING, FileStatus.QUEUED),
}


def next_retry_time(attempts: int, *, now: datetime) -> datetime | None:
    base = float(settings.retry_base_delay_seconds or 0)
    if base <= 0:
        return None
    delay = min(float(settings.retry_max_delay_seconds), base * (2 ** max(attempts - 1, 0)))
    return now + timedelta(seconds=delay)


def process_file_record(
    session: Session,
    *,
    file_record_id: uuid.UUID,
    trigger: ProcessTrigger = ProcessTrigger.REQUEST,
    max_retries: int | None = None,
    now: datetime | None = None,
) -> ProcessOutcome:
    """
    Extract, archive and store one file record.

    Raises RecordValidationError when the record is missing or invalid and StoreError
    when the result cannot be persisted. Every other failure is recorded on the file
    record (status + last_error) and reported through the returned outcome.
    """
    now = now or utcnow()
    record = get_file_record(session, file_record_id=file_record_id)
    if not record or not record.is_valid:
        raise RecordValidationError("Valid file not found")

    stale_before = now - timedelta(minutes=settings.processing_stale_after_minutes)
    claimed = claim_file_record(
        session,
        record=record,
        from_statuses=_CLAIMABLE[trigger],
        stale_before=stale_before,
    )
    if not claimed:
        session.refresh(record)
        log_event(
            logger,
            "extraction.claim.lost",
            file_record_id=str(record.id),
            trigger=trigger.value,
            current_status=record.status.value,
        )
        return ProcessOutcome(
            kind=OutcomeKind.BUSY,
            file_record_id=record.id,
            status=record.status,
            retry_count=record.retry_count,
        )

    start = time.monotonic()
    log_event(
        logger,
        "extraction.start",
        file_record_id=str(record.id),
        file_name=record.file_name,
        file_path=record.file_path,
        trigger=trigger.value,
        retry_count=record.retry_count,
    )
    try:
        return _run_claimed(
            session,
            record=record,
            trigger=trigger,
            max_retries=(
                settings.retry_queue_max_retries if max_retries is None else max_retries
            ),
            now=now,
            start=start,
        )
    except StoreError:
        raise
    except Exception as e:  # noqa: BLE001
        session.rollback()
        log_exception(
            logger,
            "extraction.error",
            file_record_id=str(record.id),
            trigger=trigger.value,
            duration_ms=monotonic_ms(start),
        )
        return _fail(
            session,
            record=record,
            kind=FailureKind.UPSTREAM,
            message=str(e) or type(e).__name__,
            start=start,
        )


def _run_claimed(
    session: Session,
    *,
    record: FileRecord,
    trigger: ProcessTrigger,
    max_retries: int,
    now: datetime,
    start: float,
) -> ProcessOutcome:
    old_path = record.file_path
    source = locate_source(old_path)
    if source is None:
        return _fail(
            session,
            record=record,
            kind=FailureKind.FILESYSTEM,
            message=f"File not found: {old_path}",
            start=start,
        )
    try:
        body = get_storage().read(source)
    except StorageError as e:
        return _fail(
            session, record=record, kind=FailureKind.FILESYSTEM, message=str(e), start=start
        )

    result = extract_receipt_fields(body)
    fields = result.fields
    if fields is None:
        failure = result.failure
        if failure.kind.retriable:
            return _rate_limited(
                session,
                record=record,
                trigger=trigger,
                message=failure.message,
                max_retries=max_retries,
                now=now,
                start=start,
            )
        return _fail(
            session,
            record=record,
            kind=failure.kind,
            message=failure.message,
            start=start,
        )

    try:
        new_path = str(archive_file(source, fields.purchased_at))
    except FileSystemError as e:
        return _fail(session, record=record, kind=e.kind, message=str(e), start=start)

    try:
        receipt = upsert_receipt(
            session,
            file_record_id=record.id,
            fields=fields,
            old_path=old_path,
            new_path=new_path,
        )
        receipt_id = receipt.id
        mark_completed(session, record=record, file_path=new_path)
    except (SQLAlchemyError, StoreError) as e:
        session.rollback()
        log_exception(
            logger,
            "extraction.store.failure",
            file_record_id=str(record.id),
            new_path=new_path,
            duration_ms=monotonic_ms(start),
        )
        _settle_after_store_failure(
            session, record=record, error=e, max_retries=max_retries, now=now
        )
        if isinstance(e, StoreError):
            raise
        raise StoreError(f"Could not store extraction result for {record.id}: {e}") from e

    log_event(
        logger,
        "extraction.finish",
        file_record_id=str(record.id),
        receipt_id=str(receipt_id),
        status=record.status.value,
        file_path=new_path,
        duration_ms=monotonic_ms(start),
    )
    return ProcessOutcome(
        kind=OutcomeKind.COMPLETED,
        file_record_id=record.id,
        status=record.status,
        retry_count=record.retry_count,
        fields=fields,
        receipt_id=receipt_id,
    )


def _rate_limited(
    session: Session,
    *,
    record: FileRecord,
    trigger: ProcessTrigger,
    message: str,
    max_retries: int,
    now: datetime,
    start: float,
) -> ProcessOutcome:
    kind = OutcomeKind.QUEUED
    if trigger is ProcessTrigger.REQUEST:
        mark_queued(session, record=record, error=message)
    else:
        attempts = min(record.retry_count + 1, max_retries)
        if attempts >= max_retries:
            mark_failed(session, record=record, error=message, retry_count=attempts)
            kind = OutcomeKind.FAILED
        else:
            mark_queued(
                session,
                record=record,
                error=message,
                retry_count=attempts,
                next_retry_at=next_retry_time(attempts, now=now),
            )

    log_event(
        logger,
        "extraction.rate_limited",
        file_record_id=str(record.id),
        trigger=trigger.value,
        status=record.status.value,
        retry_count=record.retry_count,
        next_retry_at=record.next_retry_at.isoformat() if record.next_retry_at else None,
        duration_ms=monotonic_ms(start),
    )
    return ProcessOutcome(
        kind=kind,
        file_record_id=record.id,
        status=record.status,
        retry_count=record.retry_count,
        failure_kind=FailureKind.RATE_LIMIT,
    )


def _fail(
    session: Session,
    *,
    record: FileRecord,
    kind: FailureKind,
    message: str,
    start: float,
) -> ProcessOutcome:
    mark_failed(session, record=record, error=message)
    log_event(
        logger,
        "extraction.finish",
        file_record_id=str(record.id),
        status=record.status.value,
        failure_kind=kind.value,
        error=message,
        duration_ms=monotonic_ms(start),
    )
    return ProcessOutcome(
        kind=OutcomeKind.FAILED,
        file_record_id=record.id,
        status=record.status,
        retry_count=record.retry_count,
        failure_kind=kind,
    )


def _settle_after_store_failure(
    session: Session,
    *,
    record: FileRecord,
    error: Exception,
    max_retries: int,
    now: datetime,
) -> None:
    """
    Leave a claimed record in a state the queue can act on after its result failed to save.

    Rejected data (constraint or type errors) fails the record outright. Anything else
    is treated as a transient store problem and counted against the retry ceiling.
    """
    cause = error.__cause__ if isinstance(error, StoreError) else error
    message = str(error)
    try:
        session.refresh(record)
        if record.status != FileStatus.PROCESSING:
            return
        if isinstance(cause, (IntegrityError, DataError)):
            mark_failed(session, record=record, error=message)
            return
        attempts = min(record.retry_count + 1, max_retries)
        if attempts >= max_retries:
            mark_failed(session, record=record, error=message, retry_count=attempts)
        else:
            mark_queued(
                session,
                record=record,
                error=message,
                retry_count=attempts,
                next_retry_at=next_retry_time(attempts, now=now),
            )
    except (SQLAlchemyError, StoreError):
        session.rollback()
        log_exception(
            logger,
            "extraction.store.settle_failure",
            file_record_id=str(record.id),
        )
