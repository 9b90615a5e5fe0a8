"""Process-wide logging setup shared by every layer."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from simbooking.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """Install the root handler once; later calls are no-ops."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format=LOG_FORMAT,
        stream=stream or sys.stdout,
    )
    _LOGGER_INITIALIZED = True
    logging.getLogger(__name__).debug("Logging configured at %s", resolved_level)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
