from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from receipt_processor.core.db import diagnose_database
from receipt_processor.modules.documents.api import router as documents_router
from receipt_processor.modules.receipts.api import router as receipts_router

router = APIRouter()

router.include_router(documents_router, prefix="/api")
router.include_router(receipts_router, prefix="/api")


@router.get("/")
def root() -> dict[str, str]:
    return {"message": "Receipt Processor API is running"}


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/db")
def healthz_db() -> JSONResponse:
    result = diagnose_database()
    status_code = 200 if result.get("ok") else 503
    return JSONResponse(status_code=status_code, content=result)
