from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from receipt_processor.core.logging import get_logger, log_event
from receipt_processor.modules.extraction.ai import ReceiptFields
from receipt_processor.modules.receipts.models import ExtractedReceipt

logger = get_logger(__name__)


def list_receipts(session: Session) -> list[ExtractedReceipt]:
    return list(
        session.scalars(
            select(ExtractedReceipt).order_by(
                ExtractedReceipt.created_at.desc(), ExtractedReceipt.id.desc()
            )
        )
    )


def get_receipt(session: Session, *, receipt_id: uuid.UUID) -> ExtractedReceipt:
    receipt = session.scalar(select(ExtractedReceipt).where(ExtractedReceipt.id == receipt_id))
    if not receipt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return receipt


def find_receipt_for_file(
    session: Session, *, file_record_id: uuid.UUID, paths: list[str]
) -> ExtractedReceipt | None:
    # Old and new path are matched together: archival renames the file after extraction.
    return session.scalar(
        select(ExtractedReceipt)
        .where(
            or_(
                ExtractedReceipt.file_record_id == file_record_id,
                ExtractedReceipt.file_path.in_(paths),
            )
        )
        .order_by(ExtractedReceipt.created_at)
        .limit(1)
    )


def upsert_receipt(
    session: Session,
    *,
    file_record_id: uuid.UUID,
    fields: ReceiptFields,
    old_path: str,
    new_path: str,
) -> ExtractedReceipt:
    """Stage the receipt for a file; the caller commits together with the file record."""
    receipt = find_receipt_for_file(
        session, file_record_id=file_record_id, paths=sorted({old_path, new_path})
    )
    action = "updated"
    if not receipt:
        receipt = ExtractedReceipt(file_record_id=file_record_id, source_file_path=old_path)
        action = "created"

    receipt.file_record_id = file_record_id
    receipt.merchant_name = fields.merchant_name
    receipt.purchased_at = fields.purchased_at
    receipt.total_amount = fields.total_amount
    receipt.tax_amount = fields.tax_amount
    receipt.currency = fields.currency
    receipt.file_path = new_path
    if not receipt.source_file_path:
        receipt.source_file_path = old_path
    session.add(receipt)
    session.flush()
    log_event(
        logger,
        "receipt.upsert",
        receipt_id=str(receipt.id),
        file_record_id=str(file_record_id),
        file_path=new_path,
        action=action,
    )
    return receipt
