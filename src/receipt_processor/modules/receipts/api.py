from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from receipt_processor.core.db import db_session
from receipt_processor.modules.receipts.schemas import ReceiptOut
from receipt_processor.modules.receipts.service import get_receipt, list_receipts

router = APIRouter(tags=["receipts"])


@router.get("/receipts", response_model=list[ReceiptOut])
def list_receipts_endpoint(session: Session = Depends(db_session)) -> list[ReceiptOut]:
    return [ReceiptOut.model_validate(r, from_attributes=True) for r in list_receipts(session)]


@router.get("/receipts/{receipt_id}", response_model=ReceiptOut)
def get_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReceiptOut:
    receipt = get_receipt(session, receipt_id=receipt_id)
    return ReceiptOut.model_validate(receipt, from_attributes=True)
