"""JSON logging with a per-flow correlation ID.

The correlation ID lives in a context variable, so it follows a login flow
(authorization URL, callback, token validation) across awaits without being
passed around explicitly.
"""

import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import Any

NO_CORRELATION_ID = "no-correlation-id"

correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

# Extra record attributes promoted to top-level JSON fields
_EXTRA_FIELDS = (
    "metadata_url",
    "url",
    "document",
    "cache_key",
    "kid",
    "key_count",
    "claim",
    "reason",
    "token_hash",
    "status_code",
    "error",
)


def get_correlation_id() -> str:
    """Return the current correlation ID, creating one on first use."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = uuid.uuid4().hex
        correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


class CorrelationIDFilter(logging.Filter):
    """Stamp each record with the current correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or NO_CORRELATION_ID  # type: ignore
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Core fields are timestamp, level, component (logger name), message and
    correlation_id. Known ``extra`` attributes such as ``url`` or ``kid`` are
    copied to the top level; other ``extra`` attributes are dropped.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
        }
        entry.update(
            (name, getattr(record, name)) for name in _EXTRA_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = record.stack_info

        return json.dumps(entry, default=str)


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure root logging on stderr.

    stdout is left to CLI output so it stays machine-readable. Every record
    carries the current correlation ID.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines when True, plain text otherwise
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CorrelationIDFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    root_logger.debug("Logging configured")


__all__ = [
    "correlation_id_var",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "TEXT_FORMAT",
    "setup_logging",
]
