from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_LONG_DIGITS_RE = re.compile(r"(?<![\w-])\d{9,17}(?![\w-])")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "password",
    "api_key",
    "encrypted",
)

# bank / address fields that are masked rather than dropped
_MASKED_KEY_MARKERS = (
    "account_number",
    "routing_number",
    "iban",
    "line1",
    "line2",
)


def _mask_email(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def mask_digits(value: str) -> str:
    digits = str(value)
    if len(digits) <= 4:
        return "****"
    return "*" * (len(digits) - 4) + digits[-4:]


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _LONG_DIGITS_RE.sub(lambda m: mask_digits(m.group(0)), masked)

    for marker in ("access_token", "bearer"):
        if marker in masked.lower():
            return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def _is_masked_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _MASKED_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif _is_masked_key(k) and v is not None:
            out[k] = mask_digits(str(v)) if str(v).isdigit() else "***"
        else:
            out[k] = redact_value(v)
    return out
