from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receipt_processor.api.router import router as api_router
from receipt_processor.bootstrap import bootstrap
from receipt_processor.core.config import settings
from receipt_processor.core.logging import RequestContextMiddleware
from receipt_processor.modules.queue.worker import RetryQueueWorker


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bootstrap()
        worker: RetryQueueWorker | None = None
        if settings.retry_queue_enabled and settings.retry_queue_backend == "thread":
            worker = RetryQueueWorker(interval_seconds=settings.retry_queue_interval_seconds)
            worker.start()
        app.state.retry_worker = worker
        try:
            yield
        finally:
            if worker is not None:
                worker.stop()

    app = FastAPI(title="Receipt Processor", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)
    return app


app = create_app()
