"""
Structured JSON logging utilities.

The engine logs through the standard ``logging`` module. Hosts that ship logs
to a collector can switch on single-line JSON output with
``configure_structured_logging``; everything else keeps the host's handlers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fixed fields are ``timestamp`` (UTC, taken from the record itself),
    ``level``, ``logger`` and ``message``. Context passed through ``extra``
    (``instance_id``, ``domain``) is copied alongside them; values that do not
    serialize are written as strings.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "sentencify_storage",
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Route a logger's output through ``StructuredJsonFormatter``.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)
        stream: Destination stream (default: stdout)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Tags every message with the id of the instance that emitted it.

    Several instances of the same project log into one place; the tag is what
    tells their sync traffic apart. Keys the caller passes in ``extra`` win.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
