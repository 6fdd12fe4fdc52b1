"""
Service logging: one JSON object per line on stdout.

Model loading and encoding run on the inference worker thread, so every
record names the thread it was emitted from. Fields passed through
``extra={...}`` are collected under the "extra" key.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Literal

__all__ = [
    "VALID_LOG_LEVELS",
    "JSONFormatter",
    "TextFormatter",
    "get_logger",
    "setup_logging",
]

LogFormat = Literal["json", "text"]

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%d %H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = _extra_fields(record)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single-line format for local development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s [%(threadName)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = _extra_fields(record)
        if extra:
            line += " " + " ".join(f"{key}={value}" for key, value in extra.items())
        return line


def setup_logging(level: str, service_name: str, log_format: LogFormat = "json") -> logging.Logger:
    """
    Configure the service logger.

    Replaces any handlers installed earlier, so calling it again (tests,
    reloads) does not duplicate output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive)
        service_name: Logger name; get_logger() looks it up by this name
        log_format: "json" for structured lines, "text" for plain lines

    Raises:
        ValueError: If level or log_format is not recognized
    """
    level_name = level.upper()
    if level_name not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}")
    if log_format not in ("json", "text"):
        raise ValueError(f"Invalid log format: {log_format}. Must be 'json' or 'text'")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    logger = logging.getLogger(service_name)
    logger.handlers = [handler]
    logger.setLevel(level_name)
    logger.propagate = False
    return logger


def get_logger() -> logging.Logger:
    """Return the logger named after the configured service."""
    # Deferred so importing this module never reads the config file
    from similarity_service.config import get_settings  # noqa: PLC0415

    return logging.getLogger(get_settings().service.name)
