"""PII / secrets redaction engine.

Phone numbers are the identity key of this system, so they never reach logs
in clear. Also covers emails, JWTs, bearer tokens, MongoDB URIs and inline
base64 images (data URLs are large and may contain user photos).
"""
import re
from typing import List, Tuple

# (pattern, replacement_label); order matters: JWT before generic secrets
_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # Inline images
    (re.compile(r"data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]+"), "[REDACTED_IMAGE]"),
    # JWT tokens
    (re.compile(r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), "[REDACTED_JWT]"),
    # Generic bearer token
    (re.compile(r"Bearer\s+[A-Za-z0-9_\-\.]+", re.IGNORECASE), "[REDACTED_BEARER]"),
    # MongoDB URI with credentials
    (re.compile(r"mongodb(?:\+srv)?://[^\s]+"), "[REDACTED_MONGO_URI]"),
    # Email
    (re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+"), "[REDACTED_EMAIL]"),
    # Phone: trunk 0 or +country prefix, optional separators
    (re.compile(r"(?<![\w+])(?:\+\d|0)[\d\-\s]{7,15}\d(?!\d)"), "[REDACTED_PHONE]"),
    # API keys
    (re.compile(r"(?:api[_-]?key|secret|password)[\s:=]+[\"']?[A-Za-z0-9_\-\.]{16,}[\"']?", re.IGNORECASE), "[REDACTED_SECRET]"),
]

_SENSITIVE_KEYS = {"token", "code", "otp", "secret", "api_key", "jwt", "password", "data"}


def redact(text: str) -> str:
    """Apply all redaction patterns to text."""
    result = text
    for pattern, replacement in _PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_dict(data: dict, sensitive_keys: set | None = None) -> dict:
    """Redact values of sensitive keys in a dictionary, recursing into lists."""
    keys = _SENSITIVE_KEYS if sensitive_keys is None else sensitive_keys
    return {k: _redact_value(k, v, keys) for k, v in data.items()}


def _redact_value(key: str, value, keys: set):
    if key.lower() in keys:
        return "[REDACTED]"
    if isinstance(value, dict):
        return redact_dict(value, keys)
    if isinstance(value, list):
        return [_redact_value("", v, keys) for v in value]
    if isinstance(value, str):
        return redact(value)
    return value


def mask_identifier(identifier: str) -> str:
    """Short, log-safe handle for a phone identifier: last three digits only."""
    digits = re.sub(r"\D", "", identifier or "")
    if len(digits) <= 3:
        return "***"
    return f"***{digits[-3:]}"
