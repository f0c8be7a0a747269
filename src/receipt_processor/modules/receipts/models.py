from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receipt_processor.core.models import Base, Timestamped, UUIDPrimaryKey


class ExtractedReceipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_extracted_receipt"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_receipt_total_non_negative"),
        CheckConstraint("tax_amount >= 0", name="ck_receipt_tax_non_negative"),
    )

    # Nullable: rows written before the link existed are matched by path.
    file_record_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("documents_file_record.id"), nullable=True, index=True
    )

    purchased_at: Mapped[date] = mapped_column(Date)
    merchant_name: Mapped[str] = mapped_column(String(255))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(10), default="USD")

    file_path: Mapped[str] = mapped_column(String(1024), index=True)
    source_file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    file_record = relationship("FileRecord")
