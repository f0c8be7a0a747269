from __future__ import annotations

from celery import Celery

from receipt_processor.core.config import settings


def make_celery() -> Celery:
    app = Celery("receipt_processor", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
        # Ticks must not pile up behind a slow one.
        worker_prefetch_multiplier=1,
        beat_schedule={
            "drain-retry-queue": {
                "task": "drain_retry_queue",
                "schedule": float(settings.retry_queue_interval_seconds),
                "options": {"expires": float(settings.retry_queue_interval_seconds)},
            }
        },
    )
    app.autodiscover_tasks(["receipt_processor.worker.tasks"])
    return app


celery_app = make_celery()
