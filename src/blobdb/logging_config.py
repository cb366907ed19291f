"""Structured logging configuration for BlobDB.

BlobDB is a library, so configuration is scoped to the ``blobdb`` logger
hierarchy and leaves the host application's root logger alone.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from blobdb.config import LoggingConfig

LOGGER_NAME = "blobdb"

# Queue context attached to records via ``extra=``.
_EXTRA_FIELDS = ("path", "action", "op_id", "chunk")


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, exception, plus whichever
    queue context fields (path, action, op_id, chunk) the record carries.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Attach a stderr handler to the ``blobdb`` logger.

    Calling this again replaces the previously installed handler, so it is
    safe to reconfigure at runtime.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: 'text' for human-readable lines, 'json' for structured output.

    Returns:
        The configured ``blobdb`` logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def configure_from_config(config: LoggingConfig) -> logging.Logger:
    """Configure logging from the ``logging`` section of a BlobDBConfig."""
    return configure_logging(level=config.level, fmt=config.format)
