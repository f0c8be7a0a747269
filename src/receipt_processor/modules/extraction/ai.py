from __future__ import annotations

import base64
import json
import re
import time
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from receipt_processor.core.config import settings
from receipt_processor.core.currencies import DEFAULT_CURRENCY, normalize_currency
from receipt_processor.core.errors import FailureKind
from receipt_processor.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)

UNKNOWN_MERCHANT = "Unknown Merchant"
_ZERO = Decimal("0.00")
# Largest value a Numeric(10, 2) column holds.
MAX_AMOUNT = Decimal("99999999.99")

_PROMPT = (
    "Analyze this receipt image/PDF and extract the following details in JSON format:\n"
    "- merchant_name (The store or company name, precisely as it appears)\n"
    "- purchased_at (The date of purchase in YYYY-MM-DD format)\n"
    "- total_amount (The final total amount shown, as a numeric value)\n"
    "- tax_amount (The tax amount if visible, otherwise 0.00)\n"
    "- currency (The currency symbol or code, e.g., $, USD, EUR)\n\n"
    "Return ONLY the JSON object. Do not include markdown formatting or explanations."
)


@dataclass(frozen=True)
class ReceiptFields:
    merchant_name: str
    purchased_at: date
    total_amount: Decimal
    tax_amount: Decimal
    currency: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "merchant_name": self.merchant_name,
            "purchased_at": self.purchased_at,
            "total_amount": self.total_amount,
            "tax_amount": self.tax_amount,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class ExtractionFailure:
    kind: FailureKind
    message: str
    http_status: int | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """Either `fields` or `failure` is set, never both."""

    fields: ReceiptFields | None = None
    failure: ExtractionFailure | None = None

    @property
    def ok(self) -> bool:
        return self.fields is not None

    @classmethod
    def success(cls, fields: ReceiptFields) -> ExtractionResult:
        return cls(fields=fields)

    @classmethod
    def failed(
        cls, kind: FailureKind, message: str, *, http_status: int | None = None
    ) -> ExtractionResult:
        return cls(failure=ExtractionFailure(kind=kind, message=message, http_status=http_status))


def extraction_available() -> bool:
    return bool(settings.gemini_api_key)


def extract_receipt_fields(
    body: bytes, *, mime_type: str = "application/pdf", today: date | None = None
) -> ExtractionResult:
    """
    Send a receipt document to Gemini and normalize the structured fields it returns.

    Never raises for service-side problems: every failure comes back as an
    `ExtractionResult` carrying a `FailureKind`, and only RATE_LIMIT is retriable.
    """
    if not settings.gemini_api_key:
        return ExtractionResult.failed(
            FailureKind.CONFIGURATION, "GEMINI_API_KEY is not configured"
        )

    payload = {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": _PROMPT},
                    {
                        "inline_data": {
                            "mime_type": mime_type,
                            "data": base64.b64encode(body).decode("ascii"),
                        }
                    },
                ],
            }
        ],
        "generationConfig": {"temperature": 0},
    }
    headers = {
        "x-goog-api-key": settings.gemini_api_key,
        "Content-Type": "application/json",
    }
    url = (
        settings.gemini_base_url.rstrip("/")
        + f"/v1beta/models/{settings.gemini_model}:generateContent"
    )

    start = time.monotonic()
    try:
        resp = httpx.post(
            url,
            headers=headers,
            json=payload,
            timeout=float(settings.extraction_timeout_seconds or 60.0),
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        result = _classify_status_error(e.response)
        log_event(
            logger,
            "extraction.request.failure",
            model=settings.gemini_model,
            http_status=e.response.status_code,
            failure_kind=result.failure.kind.value if result.failure else None,
            duration_ms=monotonic_ms(start),
        )
        return result
    except httpx.TimeoutException as e:
        log_event(
            logger,
            "extraction.request.timeout",
            model=settings.gemini_model,
            duration_ms=monotonic_ms(start),
        )
        return ExtractionResult.failed(FailureKind.TIMEOUT, f"Extraction request timed out: {e}")
    except httpx.HTTPError as e:
        log_event(
            logger,
            "extraction.request.failure",
            model=settings.gemini_model,
            error_type=type(e).__name__,
            duration_ms=monotonic_ms(start),
        )
        return ExtractionResult.failed(FailureKind.UPSTREAM, f"Extraction request failed: {e}")

    log_event(
        logger,
        "extraction.request.success",
        model=settings.gemini_model,
        http_status=resp.status_code,
        byte_size=len(body),
        duration_ms=monotonic_ms(start),
    )

    try:
        raw = resp.json()
    except ValueError:
        return ExtractionResult.failed(
            FailureKind.EXTRACTION, "Extraction service returned a non-JSON response"
        )

    text = _response_text(raw)
    if not text:
        reason = None
        if isinstance(raw, dict):
            reason = (raw.get("promptFeedback") or {}).get("blockReason")
        message = "Extraction service returned no content"
        if reason:
            message += f" (blocked: {reason})"
        return ExtractionResult.failed(FailureKind.EXTRACTION, message)

    return parse_receipt_payload(text, today=today)


class ReceiptFieldError(ValueError):
    """A field is present in the model output but cannot be used."""


def parse_receipt_payload(text: str, *, today: date | None = None) -> ExtractionResult:
    obj = _parse_json_object(text)
    if not isinstance(obj, dict):
        return ExtractionResult.failed(FailureKind.EXTRACTION, "AI failed to return valid JSON")
    try:
        fields = normalize_receipt_fields(obj, today=today)
    except ReceiptFieldError as e:
        log_event(logger, "extraction.normalize.rejected", reason=str(e))
        return ExtractionResult.failed(FailureKind.EXTRACTION, str(e))
    return ExtractionResult.success(fields)


def normalize_receipt_fields(obj: dict[str, Any], *, today: date | None = None) -> ReceiptFields:
    """
    Turn the model's JSON into typed receipt fields.

    Missing values get defaults (today, zero amounts, USD, "Unknown Merchant").
    A purchase date or amount that is present but unusable raises ReceiptFieldError.
    """
    merchant = obj.get("merchant_name")
    merchant_name = merchant.strip()[:255] if isinstance(merchant, str) else ""

    purchased_at = _parse_date(obj.get("purchased_at"))
    if purchased_at is None:
        purchased_at = today or datetime.now(UTC).date()

    currency = normalize_currency(obj.get("currency")) or DEFAULT_CURRENCY

    return ReceiptFields(
        merchant_name=merchant_name or UNKNOWN_MERCHANT,
        purchased_at=purchased_at,
        total_amount=_parse_amount(obj.get("total_amount"), field="total_amount"),
        tax_amount=_parse_amount(obj.get("tax_amount"), field="tax_amount"),
        currency=currency,
    )


def _classify_status_error(response: httpx.Response) -> ExtractionResult:
    code = response.status_code
    status_name = None
    message = None
    try:
        err = (response.json() or {}).get("error") or {}
        status_name = err.get("status")
        message = err.get("message")
    except Exception:  # noqa: BLE001
        pass
    detail = message or response.reason_phrase or "error"
    if code == 429 or status_name == "RESOURCE_EXHAUSTED":
        return ExtractionResult.failed(
            FailureKind.RATE_LIMIT,
            f"Rate limited by extraction service ({code}): {detail}",
            http_status=code,
        )
    if code in {401, 403}:
        return ExtractionResult.failed(
            FailureKind.CONFIGURATION,
            f"Extraction service rejected credentials ({code}): {detail}",
            http_status=code,
        )
    return ExtractionResult.failed(
        FailureKind.UPSTREAM, f"Extraction service error ({code}): {detail}", http_status=code
    )


def _response_text(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    candidates = raw.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = (candidates[0] or {}).get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    joined = "".join(texts).strip()
    return joined or None


def _parse_json_object(content: str) -> Any:
    c = (content or "").strip()
    if not c:
        return None
    try:
        obj = json.loads(c)
    except Exception:  # noqa: BLE001
        obj = None
    if isinstance(obj, dict):
        return obj
    if isinstance(obj, list) and obj and isinstance(obj[0], dict):
        return obj[0]

    # Fallback: extract the first {...} block.
    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except Exception:  # noqa: BLE001
        return None


_DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%Y.%m.%d",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
)


def _parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ReceiptFieldError(f"Unreadable purchase date: {str(value)[:40]}")
    s = value.strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass
    cleaned = " ".join(re.sub(r"^([A-Za-z]{3,9})\.", r"\1", s).split())
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    log_event(logger, "extraction.normalize.bad_date", raw_value=s[:40])
    raise ReceiptFieldError(f"Unreadable purchase date: {s[:40]}")


def _parse_amount(value: Any, *, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return _ZERO
    s = re.sub(r"[^\d.,\-]", "", str(value).strip())
    if not s:
        return _ZERO
    if "," in s and "." in s:
        # Whichever separator comes last is the decimal point.
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif re.fullmatch(r"-?\d+,\d{1,2}", s):
        s = s.replace(",", ".")
    else:
        s = s.replace(",", "")
    try:
        amount = Decimal(s)
    except InvalidOperation:
        return _ZERO
    if not amount.is_finite() or amount < 0:
        log_event(logger, "extraction.normalize.bad_amount", raw_value=str(value)[:40])
        return _ZERO
    amount = amount.quantize(Decimal("0.01"))
    if amount > MAX_AMOUNT:
        raise ReceiptFieldError(f"{field} {amount} exceeds the storable maximum {MAX_AMOUNT}")
    return amount
