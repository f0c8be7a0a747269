from __future__ import annotations

import re

DEFAULT_CURRENCY = "USD"

_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₩": "KRW",
    "₽": "RUB",
    "₺": "TRY",
    "₪": "ILS",
    "₫": "VND",
    "₱": "PHP",
    "฿": "THB",
    "C$": "CAD",
    "A$": "AUD",
    "S$": "SGD",
    "HK$": "HKD",
    "R$": "BRL",
    "CHF": "CHF",
}

_CODE_RE = re.compile(r"^[A-Z]{3}$")


def normalize_currency(value: object) -> str | None:
    """Map a currency code or symbol to an ISO-4217 code, or None if unrecognised."""
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw in _SYMBOLS:
        return _SYMBOLS[raw]
    upper = raw.upper()
    if upper in _SYMBOLS:
        return _SYMBOLS[upper]
    if _CODE_RE.match(upper):
        return upper
    return None
