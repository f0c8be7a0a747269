from __future__ import annotations

import time
import uuid
from pathlib import Path

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from receipt_processor.core.db import SessionLocal
from receipt_processor.core.storage import get_storage
from receipt_processor.modules.documents.models import FileRecord, FileStatus
from receipt_processor.modules.documents.service import (
    check_file_validity,
    ingest_file_record,
    ingest_upload,
    validate_file_record,
)


def test_ingest_creates_pending_record():
    with SessionLocal() as session:
        record, created = ingest_upload(session, filename="a.pdf", body=b"%PDF-1.4\n")

        assert created is True
        assert record.file_name == "a.pdf"
        assert record.is_valid is True
        assert record.invalid_reason is None
        assert record.is_processed is False
        assert record.status == FileStatus.PENDING
        assert record.retry_count == 0

        stored = Path(record.file_path)
        assert stored.exists()
        assert stored.parent == get_storage().root
        assert stored.read_bytes() == b"%PDF-1.4\n"


def test_ingest_same_name_twice_updates_existing_record():
    with SessionLocal() as session:
        first, created_first = ingest_upload(session, filename="a.pdf", body=b"%PDF-1.4 one")
        first_path = first.file_path
        first_updated_at = first.updated_at

        time.sleep(0.01)
        second, created_second = ingest_upload(session, filename="a.pdf", body=b"%PDF-1.4 two")

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert second.file_path != first_path
        assert Path(second.file_path).read_bytes() == b"%PDF-1.4 two"
        assert second.updated_at > first_updated_at

        count = session.scalar(select(func.count()).select_from(FileRecord))
        assert count == 1


def test_ingest_strips_directory_components_from_name():
    with SessionLocal() as session:
        record, _ = ingest_upload(session, filename="..\\..\\evil/  my   receipt.pdf", body=b"x")
        assert record.file_name == "my receipt.pdf"
        assert Path(record.file_path).parent == get_storage().root


def test_validate_rejects_non_pdf_extension(tmp_path):
    with SessionLocal() as session:
        record, _ = ingest_file_record(
            session, file_name="notes.txt", file_path=str(tmp_path / "notes.txt")
        )

        validated = validate_file_record(session, file_record_id=record.id)

        assert validated.is_valid is False
        assert validated.invalid_reason == "Not a valid PDF file"


def test_validate_clears_previous_reason_when_valid(tmp_path):
    with SessionLocal() as session:
        record, _ = ingest_file_record(
            session, file_name="scan.txt", file_path=str(tmp_path / "scan.txt")
        )
        validate_file_record(session, file_record_id=record.id)

        # Same name re-uploaded as a PDF.
        ingest_file_record(session, file_name="scan.txt", file_path=str(tmp_path / "scan.PDF"))
        validated = validate_file_record(session, file_record_id=record.id)

        assert validated.is_valid is True
        assert validated.invalid_reason is None


def test_validate_is_a_function_of_the_extension_only(tmp_path):
    # The file does not exist on disk; only the name is inspected.
    assert check_file_validity(str(tmp_path / "missing.pdf")) is None
    assert check_file_validity(str(tmp_path / "receipt.pdf.exe")) == "Not a valid PDF file"


def test_validate_header_check_when_enabled(monkeypatch, tmp_path):
    from receipt_processor.core.config import settings

    monkeypatch.setattr(settings, "validate_pdf_header", True)
    fake = tmp_path / "fake.pdf"
    fake.write_bytes(b"<html>not a pdf</html>")
    real = tmp_path / "real.pdf"
    real.write_bytes(b"\xef\xbb\xbf %PDF-1.7\n")

    assert check_file_validity(str(fake)) == "Missing %PDF header"
    assert check_file_validity(str(real)) is None


def test_validate_unknown_id_raises_not_found():
    with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc:
            validate_file_record(session, file_record_id=uuid.uuid4())
        assert exc.value.status_code == 404
