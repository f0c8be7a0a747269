from __future__ import annotations

import os
from datetime import date

import pytest

from receipt_processor.core.errors import FailureKind, FileSystemError
from receipt_processor.modules.documents import archiver
from receipt_processor.modules.documents.archiver import (
    archive_file,
    archive_target,
    locate_source,
)


def test_archive_moves_file_into_year_folder(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    source = uploads / "r1.pdf"
    source.write_bytes(b"%PDF-1.4")

    target = archive_file(source, date(2024, 3, 1))

    assert target == uploads / "2024" / "r1.pdf"
    assert target.read_bytes() == b"%PDF-1.4"
    assert not source.exists()


def test_archive_creates_missing_year_directory(tmp_path):
    source = tmp_path / "r2.pdf"
    source.write_bytes(b"%PDF-1.4")
    assert not (tmp_path / "1999").exists()

    archive_file(source, date(1999, 12, 31))

    assert (tmp_path / "1999").is_dir()
    assert (tmp_path / "1999" / "r2.pdf").exists()


def test_archive_tolerates_source_already_moved(tmp_path):
    target = archive_file(tmp_path / "gone.pdf", date(2024, 1, 1))

    assert target == tmp_path / "2024" / "gone.pdf"
    assert (tmp_path / "2024").is_dir()
    assert not target.exists()


def test_archive_does_not_nest_year_folders(tmp_path):
    year_dir = tmp_path / "2023"
    year_dir.mkdir()
    source = year_dir / "r3.pdf"
    source.write_bytes(b"%PDF-1.4")

    assert archive_target(source, date(2023, 6, 1)) == source
    moved = archive_file(source, date(2024, 6, 1))

    assert moved == tmp_path / "2024" / "r3.pdf"
    assert moved.exists()
    assert not (tmp_path / "2023" / "2024").exists()


def test_archive_rename_failure_is_a_filesystem_error(monkeypatch, tmp_path):
    source = tmp_path / "r4.pdf"
    source.write_bytes(b"%PDF-1.4")

    def _boom(src, dst):
        raise PermissionError("read-only volume")

    monkeypatch.setattr(archiver.os, "replace", _boom)

    with pytest.raises(FileSystemError) as exc:
        archive_file(source, date(2024, 3, 1))
    assert exc.value.kind == FailureKind.FILESYSTEM
    assert not exc.value.kind.retriable
    assert source.exists()


def test_locate_source_finds_file_moved_into_year_folder(tmp_path):
    (tmp_path / "2022").mkdir()
    moved = tmp_path / "2022" / "r5.pdf"
    moved.write_bytes(b"%PDF-1.4")

    assert locate_source(tmp_path / "r5.pdf") == moved
    assert locate_source(moved) == moved
    assert locate_source(tmp_path / "nope.pdf") is None


def test_archive_target_keeps_file_name(tmp_path):
    path = tmp_path / "uploads" / "abc-receipt.pdf"
    assert archive_target(path, date(2021, 2, 3)) == tmp_path / "uploads" / "2021" / path.name
    assert os.fspath(archive_target(str(path), date(2021, 2, 3))).endswith(
        os.path.join("2021", "abc-receipt.pdf")
    )
