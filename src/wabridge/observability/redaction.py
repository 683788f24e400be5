"""Redaction helpers for safe logging.

Chat and sender identifiers embed phone numbers, so they never reach the logs
verbatim: JIDs keep their server part and the last digits of the user part.
"""

import re
from typing import Any

_JID_PATTERN = re.compile(r"(\d+)(?::\d+)?@([a-z.]+)")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")

_REDACTED = "[REDACTED]"


def mask_jid(jid: str) -> str:
    """Mask the user part of a JID, keeping the last 4 digits and the server.

    >>> mask_jid("5511999998888@s.whatsapp.net")
    '***8888@s.whatsapp.net'
    """
    return _JID_PATTERN.sub(lambda m: f"***{m.group(1)[-4:]}@{m.group(2)}", jid)


def redact_string(value: str) -> str:
    """Redact JIDs and phone-number patterns from a string."""
    result = mask_jid(value)
    return _PHONE_PATTERN.sub(_REDACTED, result)


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
