"""Logging setup for the nirforward namespace."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "nirforward"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level: int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """Attach console (and optionally file) handlers to the package logger.

    Calling this again replaces the handlers installed by the previous call;
    handlers on parent loggers are left alone. A log file is truncated on open.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    logger.addHandler(_make_handler(logging.StreamHandler(sys.stdout), level))
    if log_file is not None:
        path = Path(log_file)
        logger.addHandler(_make_handler(logging.FileHandler(path, mode="w", encoding="utf-8"), level))
        logger.debug("Writing log to %s", path)
    return logger
