from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from receipt_processor.core.config import settings
from receipt_processor.core.db import SessionFactory, SessionLocal
from receipt_processor.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_tick_context,
    set_tick_context,
)
from receipt_processor.core.models import utcnow
from receipt_processor.modules.documents.service import list_retry_candidates
from receipt_processor.modules.extraction.service import (
    OutcomeKind,
    ProcessTrigger,
    process_file_record,
)

logger = get_logger(__name__)

# One tick at a time per process, whichever scheduler fires it.
_tick_lock = threading.Lock()


@dataclass
class TickReport:
    tick_id: str
    selected: int = 0
    completed: int = 0
    queued: int = 0
    failed: int = 0
    busy: int = 0
    errors: int = 0
    aborted: bool = False
    file_record_ids: list[uuid.UUID] = field(default_factory=list)


def drain_retry_queue(
    *,
    session_factory: SessionFactory = SessionLocal,
    now: datetime | None = None,
    batch_size: int | None = None,
    max_retries: int | None = None,
) -> TickReport | None:
    """
    Run one retry-queue tick.

    Picks up to `batch_size` queued (and due) records plus valid pending records that
    never got processed, and runs them through the extraction pipeline one by one.
    Returns None without doing anything when another tick is still running.
    """
    if not _tick_lock.acquire(blocking=False):
        log_event(logger, "retry_queue.tick.skipped", reason="previous_tick_running")
        return None

    report = TickReport(tick_id=uuid.uuid4().hex[:12])
    token = set_tick_context(report.tick_id)
    start = time.monotonic()
    try:
        now = now or utcnow()
        limit = settings.retry_queue_batch_size if batch_size is None else batch_size
        stale_before = now - timedelta(minutes=settings.processing_stale_after_minutes)
        try:
            with session_factory() as session:
                candidates = list_retry_candidates(
                    session, now=now, limit=limit, stale_before=stale_before
                )
                report.file_record_ids = [c.id for c in candidates]
        except SQLAlchemyError:
            report.aborted = True
            log_exception(logger, "retry_queue.tick.aborted", reason="store_unavailable")
            return report

        report.selected = len(report.file_record_ids)
        if report.selected:
            log_event(logger, "retry_queue.tick.start", selected=report.selected, batch_size=limit)

        for file_record_id in report.file_record_ids:
            _process_one(
                report,
                session_factory=session_factory,
                file_record_id=file_record_id,
                max_retries=max_retries,
                now=now,
            )

        if report.selected:
            log_event(
                logger,
                "retry_queue.tick.finish",
                selected=report.selected,
                completed=report.completed,
                queued=report.queued,
                failed=report.failed,
                busy=report.busy,
                errors=report.errors,
                duration_ms=monotonic_ms(start),
            )
        return report
    finally:
        reset_tick_context(token)
        _tick_lock.release()


def _process_one(
    report: TickReport,
    *,
    session_factory: SessionFactory,
    file_record_id: uuid.UUID,
    max_retries: int | None,
    now: datetime,
) -> None:
    try:
        with session_factory() as session:
            outcome = process_file_record(
                session,
                file_record_id=file_record_id,
                trigger=ProcessTrigger.QUEUE,
                max_retries=max_retries,
                now=now,
            )
    except Exception:  # noqa: BLE001
        report.errors += 1
        log_exception(
            logger,
            "retry_queue.record.error",
            file_record_id=str(file_record_id),
        )
        return

    if outcome.kind is OutcomeKind.COMPLETED:
        report.completed += 1
    elif outcome.kind is OutcomeKind.QUEUED:
        report.queued += 1
    elif outcome.kind is OutcomeKind.FAILED:
        report.failed += 1
    elif outcome.kind is OutcomeKind.BUSY:
        report.busy += 1
    log_event(
        logger,
        "retry_queue.record.finish",
        file_record_id=str(file_record_id),
        outcome=outcome.kind.value,
        status=outcome.status.value,
        retry_count=outcome.retry_count,
    )
