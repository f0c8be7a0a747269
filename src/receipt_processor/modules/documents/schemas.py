from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from receipt_processor.modules.documents.models import FileStatus
from receipt_processor.modules.receipts.schemas import ReceiptFieldsOut


class FileRecordRef(BaseModel):
    id: uuid.UUID


class UploadOut(BaseModel):
    id: uuid.UUID
    message: str


class ValidateOut(BaseModel):
    id: uuid.UUID
    is_valid: bool


class ProcessOut(BaseModel):
    message: str
    data: ReceiptFieldsOut


class ProcessStatusOut(BaseModel):
    message: str
    id: uuid.UUID
    status: FileStatus


class FileRecordOut(BaseModel):
    id: uuid.UUID
    file_name: str
    is_valid: bool
    invalid_reason: str | None
    is_processed: bool
    status: FileStatus
    retry_count: int
    last_error: str | None
    next_retry_at: datetime | None
    created_at: datetime
    updated_at: datetime
