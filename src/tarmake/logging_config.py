"""Central logging configuration for the tarmake package."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int = 0, log_file: Optional[str] = None, debug: bool = False) -> None:
    """
    Configure the "tarmake" logger once per process.

    level 0 keeps logging silent, 1 is INFO, 2+ is DEBUG. Records go to
    `log_file` when given; `debug` additionally sends DEBUG to stderr.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger("tarmake")
    if debug:
        level = max(level, 2)

    if level <= 0:
        # Silent mode; library loggers stay quiet.
        logger.addHandler(logging.NullHandler())
        _CONFIGURED = True
        return

    logger.setLevel(_map_level(level))
    formatter = logging.Formatter(LOG_FORMAT)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if debug or not log_file:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    _CONFIGURED = True


def reset_logging() -> None:
    """Drop handlers installed by configure_logging (used by tests)."""
    global _CONFIGURED
    logger = logging.getLogger("tarmake")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _CONFIGURED = False


def _map_level(level: int) -> int:
    if level >= 2:
        return logging.DEBUG
    return logging.INFO
