"""Sanitising helpers for the operator-facing diagnostic payloads."""
from __future__ import annotations

from typing import Any

SENSITIVE_KEYS = (
    "key",
    "token",
    "password",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "private_key",
    "privatekey",
    "access_token",
    "accesstoken",
    "bearer",
    "credential",
    "credentials",
)
REDACTED = "***REDACTED***"
MAX_EXCERPT_LENGTH = 2000


def sanitize(value: Any, max_string_length: int = 100) -> Any:
    """Return a copy of ``value`` with secrets redacted and inline image data elided."""
    if isinstance(value, list):
        return [sanitize(item, max_string_length) for item in value]
    if not isinstance(value, dict):
        return value

    sanitized: dict[str, Any] = {}
    for key, item in value.items():
        lowered = str(key).lower()
        if isinstance(item, str) and any(marker in lowered for marker in SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        elif key == "data" and isinstance(item, str) and len(item) > max_string_length:
            sanitized[key] = "..."
        elif isinstance(item, (dict, list)):
            sanitized[key] = sanitize(item, max_string_length)
        else:
            sanitized[key] = item
    return sanitized


def excerpt(text: str | bytes | None, limit: int = MAX_EXCERPT_LENGTH) -> str:
    """Truncate a raw provider body for logs and debug payloads."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
