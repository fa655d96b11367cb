"""
Logging setup shared by the API, the CLI and the discovery engine.

All loggers live under the ``pool_notes`` namespace so a single call to
``setup_logging`` configures every layer. Nothing in this package logs
account keys, nullifiers or precommitments: only indices, counts and cursors.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER = "pool_notes"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Library use: stay silent unless the host application calls setup_logging
logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger namespaced under ``pool_notes``.

    Args:
        name: Short component name, e.g. "discovery" or "database.cache"

    Returns:
        logging.Logger
    """
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: Optional[str] = None) -> None:
    """
    Attach a stderr handler to the package root logger.

    Args:
        level: Log level name; defaults to $LOG_LEVEL or INFO
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger(ROOT_LOGGER)
    for h in list(root.handlers):
        if not isinstance(h, logging.NullHandler):
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))
