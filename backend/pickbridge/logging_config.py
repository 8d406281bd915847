"""
pickbridge - Logging configuration

- JSON (default) or text output, selected by LOG_FORMAT
- Optional file handler via LOG_FILE
- Context passed with extra={...} is carried into JSON records

Usage:
    from pickbridge.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Pushed prepared quantities", extra={"order_id": 12})
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from pickbridge.core.settings import settings

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs; extra context appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS and not k.startswith("_")
        }
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Arguments default to LOG_LEVEL / LOG_FORMAT / LOG_FILE from settings.
    Safe to call more than once: existing handlers are replaced.
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_format = (log_format or settings.LOG_FORMAT).lower()
    log_file = log_file if log_file is not None else settings.LOG_FILE

    formatter: logging.Formatter = JSONFormatter() if log_format == "json" else TextFormatter()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Quiet chatty libraries unless debugging
    noisy_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(noisy_level)
    logging.getLogger("urllib3").setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger."""
    return logging.getLogger(name)
