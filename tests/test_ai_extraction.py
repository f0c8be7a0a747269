from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from receipt_processor.core.config import settings
from receipt_processor.core.errors import FailureKind
from receipt_processor.modules.extraction import ai
from receipt_processor.modules.extraction.ai import (
    UNKNOWN_MERCHANT,
    extract_receipt_fields,
    normalize_receipt_fields,
    parse_receipt_payload,
)

_URL = "https://generativelanguage.googleapis.com/v1beta/models/test:generateContent"


def _gemini_response(text: str, status_code: int = 200) -> httpx.Response:
    body = {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}
    return httpx.Response(status_code, json=body, request=httpx.Request("POST", _URL))


def test_parse_receipt_payload_accepts_json_wrapped_in_prose():
    text = (
        "Here you go:\n```json\n"
        '{"merchant_name": " Acme Hardware ", "purchased_at": "2023-11-05", '
        '"total_amount": "42.50", "tax_amount": 3.5, "currency": "$"}\n```'
    )

    result = parse_receipt_payload(text)

    assert result.ok
    fields = result.fields
    assert fields.merchant_name == "Acme Hardware"
    assert fields.purchased_at == date(2023, 11, 5)
    assert fields.total_amount == Decimal("42.50")
    assert fields.tax_amount == Decimal("3.50")
    assert fields.currency == "USD"


def test_parse_receipt_payload_without_json_is_extraction_failure():
    result = parse_receipt_payload("I could not read this receipt, sorry.")

    assert not result.ok
    assert result.failure.kind == FailureKind.EXTRACTION
    assert result.failure.message == "AI failed to return valid JSON"
    assert not result.failure.kind.retriable


def test_normalize_applies_defaults_for_missing_fields():
    fields = normalize_receipt_fields({}, today=date(2025, 6, 30))

    assert fields.merchant_name == UNKNOWN_MERCHANT
    assert fields.purchased_at == date(2025, 6, 30)
    assert fields.total_amount == Decimal("0.00")
    assert fields.tax_amount == Decimal("0.00")
    assert fields.currency == "USD"


def test_normalize_handles_messy_amounts_and_currency_codes():
    fields = normalize_receipt_fields(
        {
            "merchant_name": "Café Central",
            "purchased_at": "2024-02-29T10:15:00",
            "total_amount": "1.234,50 €",
            "tax_amount": "-4",
            "currency": "eur",
        }
    )

    assert fields.purchased_at == date(2024, 2, 29)
    assert fields.total_amount == Decimal("1234.50")
    assert fields.tax_amount == Decimal("0.00")
    assert fields.currency == "EUR"


def test_normalize_comma_decimal_amount():
    fields = normalize_receipt_fields({"total_amount": "12,99"})
    assert fields.total_amount == Decimal("12.99")


def test_extract_without_api_key_is_configuration_failure(monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", None)

    def _never(*args, **kwargs):
        raise AssertionError("no request expected without credentials")

    monkeypatch.setattr(ai.httpx, "post", _never)

    result = extract_receipt_fields(b"%PDF-1.4")

    assert not result.ok
    assert result.failure.kind == FailureKind.CONFIGURATION
    assert not result.failure.kind.retriable


def test_extract_success_sends_inline_pdf(monkeypatch):
    seen: dict = {}

    def _fake_post(url, *, headers, json, timeout, follow_redirects):
        seen["url"] = url
        seen["headers"] = headers
        seen["json"] = json
        return _gemini_response(
            '{"merchant_name": "Acme", "purchased_at": "2023-11-05", '
            '"total_amount": 42.5, "tax_amount": 3.5, "currency": "USD"}'
        )

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    result = extract_receipt_fields(b"%PDF-1.4")

    assert result.ok
    assert result.fields.merchant_name == "Acme"
    assert seen["url"].endswith(f"/models/{settings.gemini_model}:generateContent")
    assert seen["headers"]["x-goog-api-key"] == settings.gemini_api_key
    inline = seen["json"]["contents"][0]["parts"][1]["inline_data"]
    assert inline["mime_type"] == "application/pdf"
    assert inline["data"] == "JVBERi0xLjQ="


def test_extract_429_is_rate_limit(monkeypatch):
    def _fake_post(url, **kwargs):
        body = {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "Quota"}}
        return httpx.Response(429, json=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    result = extract_receipt_fields(b"%PDF-1.4")

    assert result.failure.kind == FailureKind.RATE_LIMIT
    assert result.failure.kind.retriable
    assert result.failure.http_status == 429
    assert "Quota" in result.failure.message


def test_extract_resource_exhausted_body_is_rate_limit(monkeypatch):
    def _fake_post(url, **kwargs):
        body = {"error": {"status": "RESOURCE_EXHAUSTED", "message": "Try later"}}
        return httpx.Response(503, json=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    assert extract_receipt_fields(b"x").failure.kind == FailureKind.RATE_LIMIT


def test_extract_other_http_errors_are_not_retriable(monkeypatch):
    statuses = iter([500, 403])

    def _fake_post(url, **kwargs):
        return httpx.Response(next(statuses), text="nope", request=httpx.Request("POST", url))

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    server_error = extract_receipt_fields(b"x")
    forbidden = extract_receipt_fields(b"x")

    assert server_error.failure.kind == FailureKind.UPSTREAM
    assert forbidden.failure.kind == FailureKind.CONFIGURATION
    assert not server_error.failure.kind.retriable


def test_extract_timeout_is_not_retriable(monkeypatch):
    def _fake_post(url, **kwargs):
        raise httpx.ReadTimeout("timed out", request=httpx.Request("POST", url))

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    result = extract_receipt_fields(b"x")
    assert result.failure.kind == FailureKind.TIMEOUT
    assert not result.failure.kind.retriable


def test_extract_blocked_response_is_extraction_failure(monkeypatch):
    def _fake_post(url, **kwargs):
        body = {"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}}
        return httpx.Response(200, content=json.dumps(body), request=httpx.Request("POST", url))

    monkeypatch.setattr(ai.httpx, "post", _fake_post)

    result = extract_receipt_fields(b"x")
    assert result.failure.kind == FailureKind.EXTRACTION
    assert "SAFETY" in result.failure.message


@pytest.mark.parametrize(
    "raw",
    ["11/05/2023", "2023/11/05", "05.11.2023", "Nov 5, 2023", "Nov. 5, 2023", "November 5, 2023"],
)
def test_common_receipt_date_formats_are_parsed(raw):
    text = json.dumps({"merchant_name": "Acme", "purchased_at": raw, "total_amount": 1})

    result = parse_receipt_payload(text, today=date(2026, 1, 1))

    assert result.ok
    assert result.fields.purchased_at == date(2023, 11, 5)


def test_unreadable_purchase_date_is_extraction_failure():
    text = json.dumps({"merchant_name": "Acme", "purchased_at": "sometime last week"})

    result = parse_receipt_payload(text, today=date(2026, 1, 1))

    assert not result.ok
    assert result.failure.kind == FailureKind.EXTRACTION
    assert "purchase date" in result.failure.message


def test_blank_purchase_date_defaults_to_today():
    result = parse_receipt_payload('{"purchased_at": "  "}', today=date(2026, 1, 1))
    assert result.fields.purchased_at == date(2026, 1, 1)


def test_object_wrapped_in_array_is_unwrapped():
    text = '[{"merchant_name":"Acme","purchased_at":"2023-11-05","total_amount":1}]'

    result = parse_receipt_payload(text)

    assert result.ok
    assert result.fields.merchant_name == "Acme"
    assert result.fields.purchased_at == date(2023, 11, 5)
    assert result.fields.total_amount == Decimal("1.00")


def test_amount_beyond_column_precision_is_extraction_failure():
    too_big = parse_receipt_payload(
        '{"purchased_at": "2023-11-05", "total_amount": "250000000", "currency": "VND"}'
    )
    at_limit = parse_receipt_payload(
        '{"purchased_at": "2023-11-05", "total_amount": "99999999.99", "currency": "VND"}'
    )

    assert not too_big.ok
    assert too_big.failure.kind == FailureKind.EXTRACTION
    assert "total_amount" in too_big.failure.message
    assert at_limit.fields.total_amount == Decimal("99999999.99")
