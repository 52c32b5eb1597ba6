"""
Payment log redaction.

Card data and secrets NEVER appear in logs. Payloads are deep-copied and
sensitive fields masked before they are attached to a log record:
- strings keep their first and last character
- numbers become "[REDACTED NUMBER]"
- anything else becomes "[REDACTED]"
"""

import copy
import re
from typing import Any

REDACTED_VALUE = "[REDACTED]"
REDACTED_NUMBER = "[REDACTED NUMBER]"
MASK_CHAR = "•"

SENSITIVE_FIELDS = frozenset({
    "card",
    "card_number",
    "cardnumber",
    "cvc",
    "cvv",
    "exp_month",
    "exp_year",
    "expiry_month",
    "expiry_year",
    "password",
    "security_code",
    "client_secret",
})

SECRET_KEY_PATTERNS = [
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"signature", re.IGNORECASE),
]


def is_sensitive_key(key: str) -> bool:
    normalized = str(key).lower()
    if normalized in SENSITIVE_FIELDS:
        return True
    return any(pattern.search(normalized) for pattern in SECRET_KEY_PATTERNS)


def _mask(value: Any) -> Any:
    if isinstance(value, str):
        if len(value) > 2:
            return value[0] + MASK_CHAR * (len(value) - 2) + value[-1]
        return MASK_CHAR * len(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return REDACTED_NUMBER
    return REDACTED_VALUE


def _redact_in_place(obj: Any) -> None:
    if isinstance(obj, dict):
        for key in list(obj.keys()):
            if is_sensitive_key(key):
                obj[key] = _mask(obj[key])
            else:
                _redact_in_place(obj[key])
    elif isinstance(obj, list):
        for item in obj:
            _redact_in_place(item)


def redact_payment_data(data: Any) -> Any:
    """Return a redacted deep copy of ``data``; the input is left untouched."""
    if data is None:
        return None
    sanitized = copy.deepcopy(data)
    _redact_in_place(sanitized)
    return sanitized
