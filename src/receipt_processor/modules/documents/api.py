from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from receipt_processor.core.db import db_session
from receipt_processor.core.errors import RecordValidationError, StoreError
from receipt_processor.core.logging import get_logger, log_event, log_exception
from receipt_processor.modules.documents.schemas import (
    FileRecordOut,
    FileRecordRef,
    ProcessOut,
    ProcessStatusOut,
    UploadOut,
    ValidateOut,
)
from receipt_processor.modules.documents.service import (
    get_file_record_or_404,
    ingest_upload,
    is_accepted_filename,
    validate_file_record,
)
from receipt_processor.modules.extraction.service import (
    OutcomeKind,
    ProcessTrigger,
    process_file_record,
)
from receipt_processor.modules.receipts.schemas import ReceiptFieldsOut

router = APIRouter(tags=["documents"])
logger = get_logger(__name__)


@router.post(
    "/upload",
    response_model=UploadOut,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": UploadOut, "description": "Existing file replaced"}},
)
async def upload_receipt(
    response: Response,
    receipt: UploadFile | None = File(None),
    session: Session = Depends(db_session),
) -> UploadOut:
    if receipt is None or not receipt.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    if not is_accepted_filename(receipt.filename):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Only PDF files are allowed"
        )

    body = await receipt.read()
    log_event(
        logger,
        "upload.received",
        filename=receipt.filename,
        content_type=receipt.content_type,
        byte_size=len(body),
    )
    record, created = ingest_upload(session, filename=receipt.filename, body=body)
    if created:
        return UploadOut(id=record.id, message="File uploaded successfully")
    response.status_code = status.HTTP_200_OK
    return UploadOut(id=record.id, message="File updated successfully")


@router.post("/validate", response_model=ValidateOut)
def validate_receipt(
    payload: FileRecordRef,
    session: Session = Depends(db_session),
) -> ValidateOut:
    record = validate_file_record(session, file_record_id=payload.id)
    return ValidateOut(id=record.id, is_valid=record.is_valid)


@router.post(
    "/process",
    response_model=ProcessOut,
    responses={
        409: {"model": ProcessStatusOut},
        429: {"model": ProcessStatusOut},
        500: {"model": ProcessStatusOut},
    },
)
def process_receipt(
    payload: FileRecordRef,
    session: Session = Depends(db_session),
):
    try:
        outcome = process_file_record(
            session, file_record_id=payload.id, trigger=ProcessTrigger.REQUEST
        )
    except RecordValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except StoreError:
        log_exception(logger, "process.store_error", file_record_id=str(payload.id))
        return _status_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Receipt processing failed",
            file_record_id=payload.id,
            file_status="failed",
        )

    if outcome.kind is OutcomeKind.COMPLETED and outcome.fields is not None:
        return ProcessOut(
            message="Receipt processed successfully and organized by year",
            data=ReceiptFieldsOut(**outcome.fields.as_dict()),
        )
    if outcome.kind is OutcomeKind.QUEUED:
        return _status_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            message="Rate limit hit. Receipt has been queued for background processing.",
            file_record_id=outcome.file_record_id,
            file_status=outcome.status.value,
        )
    if outcome.kind is OutcomeKind.BUSY:
        return _status_response(
            status.HTTP_409_CONFLICT,
            message="Receipt is already being processed",
            file_record_id=outcome.file_record_id,
            file_status=outcome.status.value,
        )
    return _status_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Receipt processing failed",
        file_record_id=outcome.file_record_id,
        file_status=outcome.status.value,
    )


@router.get("/files/{file_record_id}", response_model=FileRecordOut)
def get_file_status(
    file_record_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> FileRecordOut:
    record = get_file_record_or_404(session, file_record_id=file_record_id)
    return FileRecordOut.model_validate(record, from_attributes=True)


def _status_response(
    status_code: int, *, message: str, file_record_id: uuid.UUID, file_status: str
) -> JSONResponse:
    body = ProcessStatusOut(message=message, id=file_record_id, status=file_status)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
