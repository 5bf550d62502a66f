"""Logging configuration for pipelinesync.

This module provides structured logging setup for the sync agent.
All modules should use `get_logger(__name__)` to get their logger.

Usage:
    from pipelinesync.logging import setup_logging, get_logger

    # At process startup
    setup_logging()

    # In each module
    logger = get_logger(__name__)
    logger.info("Update completed", extra={"duration_ms": 150, "builds": 20})

Extra fields whose names look like credentials are masked before they are
written, so a stray `extra={"pat": ...}` never reaches the console.
"""

import logging
import sys
from typing import Any

from pipelinesync.constants import LOG_DATE_FORMAT, LOG_FORMAT

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "asctime",
    }
)

_SENSITIVE_MARKERS = ("pat", "token", "password", "connection_string", "secret_value")

MASK = "***"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(lowered == m or lowered.endswith(f"_{m}") for m in _SENSITIVE_MARKERS)


class StructuredFormatter(logging.Formatter):
    """A formatter that appends `extra` fields as `key=value` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record with structured fields.

        Args:
            record: The log record to format.

        Returns:
            Formatted log string.
        """
        base_message = super().format(record)

        extra_fields: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            extra_fields[key] = MASK if _is_sensitive(key) else value

        if extra_fields:
            fields_str = " | ".join(f"{k}={v}" for k, v in extra_fields.items())
            return f"{base_message} | {fields_str}"

        return base_message


def setup_logging(
    level: int = logging.INFO,
    *,
    include_timestamp: bool = True,
) -> None:
    """Configure logging for the process.

    Should be called once at startup, before any secret is resolved.

    Args:
        level: The logging level (default: INFO).
        include_timestamp: Whether to include timestamps in output.
    """
    if include_timestamp:
        formatter = StructuredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        formatter = StructuredFormatter("%(levelname)-8s | %(name)s | %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("pipelinesync").setLevel(level)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module.

    Args:
        name: The module name (typically __name__).

    Returns:
        A configured Logger instance.
    """
    return logging.getLogger(name)


class LogContext:
    """Context manager that stamps fields onto every record emitted inside it.

    Usage:
        with LogContext(iteration=3):
            logger.info("Running batch update")
            # The log will include: iteration=3
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._old_factory: Any = None

    def __enter__(self) -> "LogContext":
        old_factory = logging.getLogRecordFactory()
        self._old_factory = old_factory
        fields = self.fields

        def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
            record = old_factory(*args, **kwargs)
            for key, value in fields.items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._old_factory is not None:
            logging.setLogRecordFactory(self._old_factory)
