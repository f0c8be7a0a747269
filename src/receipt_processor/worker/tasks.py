from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import receipt_processor.models  # noqa: F401
# isort: on

import time

from receipt_processor.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_tick_context,
    set_tick_context,
)
from receipt_processor.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="drain_retry_queue", bind=True)
def drain_retry_queue_task(self) -> dict | None:
    from receipt_processor.modules.queue.service import drain_retry_queue

    task_id = getattr(self.request, "id", None)
    token = set_tick_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="drain_retry_queue",
        celery_task_id=task_id,
    )
    try:
        report = drain_retry_queue()
        log_event(
            logger,
            "celery.task.finish",
            task_name="drain_retry_queue",
            celery_task_id=task_id,
            skipped=report is None,
            duration_ms=monotonic_ms(start),
        )
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="drain_retry_queue",
            celery_task_id=task_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_tick_context(token)

    if report is None:
        return None
    return {
        "tick_id": report.tick_id,
        "selected": report.selected,
        "completed": report.completed,
        "queued": report.queued,
        "failed": report.failed,
        "busy": report.busy,
        "errors": report.errors,
        "aborted": report.aborted,
    }
