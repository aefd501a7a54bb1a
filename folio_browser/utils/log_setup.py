"""Logging initialization with labeled prefixes.

Every module logs through ``logging.getLogger(__name__)``; this module wires a
single stderr handler onto the package logger so CLI output stays readable:

    INFO Sync complete: 23,000 rows in 3 chunks
    WARN Sync aborted after 10,000/23,000 rows
"""

import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "folio_browser"

_configured: Optional[logging.Logger] = None


class LabeledFormatter(logging.Formatter):
    """Formats records as ``LABEL message``."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{label} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure the package logger (idempotent).

    Args:
        verbose: Log DEBUG and up instead of WARNING and up

    Returns:
        The package logger
    """
    global _configured

    level = logging.DEBUG if verbose else logging.WARNING

    if _configured is not None:
        _configured.setLevel(level)
        for handler in _configured.handlers:
            handler.setLevel(level)
        return _configured

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)

    # Avoid duplicate lines through the root logger
    logger.propagate = False

    _configured = logger
    return logger


def reset_logging() -> None:
    """Forget the configured logger. Mainly for tests."""
    global _configured
    if _configured is not None:
        for handler in _configured.handlers[:]:
            _configured.removeHandler(handler)
        _configured.propagate = True
    _configured = None
