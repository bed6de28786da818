"""Logging setup shared by the web app and the CLI."""
from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name: str = "box_manager", level: int | str = logging.INFO) -> logging.Logger:
    """Configure and return the package logger.

    Installs a single stdout handler; calling it again only updates the level.
    """

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    return logger


__all__ = ["setup_logger"]
