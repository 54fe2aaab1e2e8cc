"""Structured logging configuration for the Note Augment Engine."""

import logging
import sys
from typing import Any

# Context fields promoted to the front of every line when present
_CONTEXT_FIELDS = ("run_id", "phase", "round")


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
        }

        for field_name in _CONTEXT_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        log_data["message"] = record.getMessage()

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        parts = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(parts)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from augment_engine.core.config import get_settings

            if get_settings().AUGMENT_ENV == "dev":
                logger.setLevel(logging.DEBUG)
            else:
                logger.setLevel(logging.INFO)
        except Exception:
            # Settings can fail to load outside a configured environment
            logger.setLevel(logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with run-scoped context fields.

    ``run_id``, ``phase`` and ``round`` are promoted to record attributes so the
    formatter places them ahead of the message; anything else is appended.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Context fields
    """
    extra: dict[str, Any] = {}
    for field_name in _CONTEXT_FIELDS:
        if field_name in kwargs:
            extra[field_name] = kwargs.pop(field_name)
    extra["extra_data"] = kwargs

    logger.log(level, msg, extra=extra)


def text_preview(text: str, limit: int = 120) -> str:
    """Single-line preview of model output for log lines."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
