"""JSON log lines on stdout, tagged with the active correlation ID."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # extra_fields go first so they cannot shadow the fixed keys
        log_obj: dict[str, Any] = dict(getattr(record, "extra_fields", None) or {})
        log_obj.update(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def get_logger(name: str) -> logging.Logger:
    """Logger with a single JSON stdout handler, level from LOG_LEVEL.

    Pass structured context as ``extra={"extra_fields": safe_log_context(...)}``.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    logger.propagate = False
    return logger
