from __future__ import annotations

# isort: off
import receipt_processor.models  # noqa: F401
# isort: on

from receipt_processor.core.config import settings
from receipt_processor.core.db import engine
from receipt_processor.core.logging import get_logger, log_event
from receipt_processor.core.models import Base
from receipt_processor.core.storage import get_storage
from receipt_processor.modules.extraction.ai import extraction_available

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    storage = get_storage()
    log_event(
        logger,
        "app.bootstrap",
        environment=settings.environment,
        upload_dir=str(storage.root),
        extraction_configured=extraction_available(),
        retry_queue_enabled=settings.retry_queue_enabled,
        retry_queue_backend=settings.retry_queue_backend,
    )
