from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any receipt_processor imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.receipts_test.db")
os.environ.setdefault("UPLOAD_DIR", ".tmp_uploads_test")
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("RETRY_QUEUE_ENABLED", "false")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import receipt_processor.models  # noqa: F401
    from receipt_processor.core.db import engine
    from receipt_processor.core.models import Base

    import receipt_processor.core.storage as storage_mod

    storage_mod._storage = None

    upload_dir = Path(os.environ["UPLOAD_DIR"])
    if upload_dir.exists():
        shutil.rmtree(upload_dir)

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def receipt_fields():
    from datetime import date
    from decimal import Decimal

    from receipt_processor.modules.extraction.ai import ReceiptFields

    return ReceiptFields(
        merchant_name="Acme",
        purchased_at=date(2023, 11, 5),
        total_amount=Decimal("42.50"),
        tax_amount=Decimal("3.50"),
        currency="USD",
    )


@pytest.fixture
def fake_extraction(monkeypatch, receipt_fields):
    """Replace the Gemini call with a scripted sequence of results; the last one repeats."""
    from receipt_processor.modules.extraction import service as extraction_service
    from receipt_processor.modules.extraction.ai import ExtractionResult

    calls: list[bytes] = []
    script: list = []

    def _fake(body: bytes, **_kwargs):
        calls.append(body)
        if not script:
            return ExtractionResult.success(receipt_fields)
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, BaseException):
            raise step
        return step

    monkeypatch.setattr(extraction_service, "extract_receipt_fields", _fake)
    _fake.calls = calls
    _fake.script = script
    return _fake
