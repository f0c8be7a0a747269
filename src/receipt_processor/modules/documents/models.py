from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from receipt_processor.core.models import Base, Timestamped, UUIDPrimaryKey


class FileStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"

    @property
    def is_terminal(self) -> bool:
        return self in {FileStatus.COMPLETED, FileStatus.FAILED}


# completed/failed -> processing is only reachable through a manual request.
ALLOWED_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.PROCESSING}),
    FileStatus.QUEUED: frozenset({FileStatus.PROCESSING}),
    FileStatus.PROCESSING: frozenset(
        {FileStatus.COMPLETED, FileStatus.QUEUED, FileStatus.FAILED, FileStatus.PROCESSING}
    ),
    FileStatus.COMPLETED: frozenset({FileStatus.PROCESSING}),
    FileStatus.FAILED: frozenset({FileStatus.PROCESSING}),
}


class FileRecord(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "documents_file_record"

    file_name: Mapped[str] = mapped_column(String(512), index=True)
    file_path: Mapped[str] = mapped_column(String(1024))

    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    invalid_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[FileStatus] = mapped_column(
        Enum(
            FileStatus,
            name="file_status",
            native_enum=False,
            create_constraint=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=FileStatus.PENDING,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
