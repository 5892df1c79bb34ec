"""Structured JSON logging for treepurge."""

import json
import logging
import sys
from typing import IO, Any, Dict, Optional

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
            payload["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        context = getattr(record, "extra_fields", None)
        if context:
            payload["extra_fields"] = context

        # Paths and exceptions in context fields are not JSON native
        return json.dumps(payload, default=str)


def setup_logging(logger_name: str = "treepurge", level: str = "INFO", stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Configure a JSON logger.

    Calling this again for the same logger only updates the level, so
    several deleters can share one logger without duplicating output.

    Args:
        logger_name: Name of the logger
        level: One of LOG_LEVELS (case insensitive)
        stream: Destination stream (default: stdout)

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level is unknown
    """
    level_name = level.upper()
    if level_name not in LOG_LEVELS:
        raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level_name))

    if not logger.handlers:
        handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger


def log_with_context(
    logger: logging.Logger, level: str, message: str, extra: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log a message carrying structured context fields.

    Args:
        logger: Logger instance
        level: Method name on the logger (debug, info, warning, error)
        message: Log message
        extra: Fields rendered under ``extra_fields`` in the JSON output
    """
    getattr(logger, level.lower())(message, extra={"extra_fields": dict(extra or {})})
