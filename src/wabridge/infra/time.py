"""Time utilities for consistent timestamp handling."""

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def now_seconds() -> int:
    """Return current wall-clock time in whole seconds since epoch."""
    return int(time.time())
