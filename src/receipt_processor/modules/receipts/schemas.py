from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class ReceiptFieldsOut(BaseModel):
    merchant_name: str
    purchased_at: date
    total_amount: Decimal
    tax_amount: Decimal
    currency: str


class ReceiptOut(BaseModel):
    id: uuid.UUID
    file_record_id: uuid.UUID | None
    purchased_at: date
    merchant_name: str
    total_amount: Decimal
    tax_amount: Decimal
    currency: str
    file_path: str
    created_at: datetime
    updated_at: datetime
