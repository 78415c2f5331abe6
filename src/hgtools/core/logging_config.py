"""Console logging setup shared by the dump entry points."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from .config import env_str

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(stream: Optional[TextIO] = None, level: Optional[str] = None) -> None:
    """
    Configure the root logger with a single console handler.

    The level comes from `level`, else HGTOOLS_LOG_LEVEL, else INFO.
    Existing root handlers are removed first, so repeated calls stay idempotent.
    """
    level_name = (level or env_str("log_level", "INFO") or "INFO").upper()
    numeric_level = _LEVELS.get(level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
