"""Simple redaction helpers for logs and stored error messages."""

from __future__ import annotations

import re

_URL_USERINFO_RE = re.compile(r"([a-z][a-z0-9+.-]*://)([^@/]+)@", re.IGNORECASE)
_QUERY_SECRET_RE = re.compile(
    r"(?i)(token|secret|password|api_key|apikey|access_token|refresh_token|pin)=([^&\s]+)"
)
_BEARER_RE = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~-]+)")
_ACCOUNT_NUMBER_RE = re.compile(r"\b(\d{6})(\d{4})\b")


def redact_secrets(text: str) -> str:
    """Redact credentials and full ten-digit account numbers from a log string."""
    if not text:
        return text
    redacted = _URL_USERINFO_RE.sub(r"\1***@", text)
    redacted = _QUERY_SECRET_RE.sub(r"\1=***", redacted)
    redacted = _BEARER_RE.sub(r"\1***", redacted)
    redacted = _ACCOUNT_NUMBER_RE.sub(r"******\2", redacted)
    return redacted


def truncate_error(value: str | None, limit: int = 500) -> str | None:
    """Redact and shorten an error message for UI-facing fields."""
    if not value:
        return None
    return redact_secrets(value)[:limit]
