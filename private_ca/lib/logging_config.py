"""JSON logging configuration for the private-ca command line."""

import logging
import os
from typing import Any

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = "private_ca"
LOG_LEVEL_ENV = "PRIVATE_CA_LOG_LEVEL"
LOG_FIELDS = frozenset({"timestamp", "level", "message", "exc_info", "funcName", "lineno"})


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter that keeps only LOG_FIELDS, with ``levelname`` renamed to ``level``."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        for key in [key for key in log_record if key not in LOG_FIELDS]:
            log_record.pop(key)


def resolve_log_level(value: str | None) -> int:
    """Map a level name such as ``debug`` to its logging constant; INFO when unset or unknown."""
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _setup_logger() -> logging.Logger:
    """Initialize and configure singleton logger.

    Library modules log through ``logging.getLogger(__name__)``; their loggers
    are children of ``private_ca`` and reach this handler by propagation.
    The level comes from ``$PRIVATE_CA_LOG_LEVEL``.
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )

    logger.setLevel(resolve_log_level(os.environ.get(LOG_LEVEL_ENV)))
    logger.addHandler(handler)
    logger.propagate = False

    return logger


LOGGER = _setup_logger()
