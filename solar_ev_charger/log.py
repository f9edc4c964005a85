"""Logging setup: stdout or a size-rotated log file."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys

from .const import LOG_BACKUP_COUNT, LOG_FORMAT, LOG_MAX_BYTES


def setup_logging(log_file: str = "", level: str = "INFO") -> logging.Handler:
    """Configure the root logger and return the installed handler."""
    handler: logging.Handler
    if log_file:
        dirname = os.path.dirname(log_file)
        if dirname:
            os.makedirs(dirname, mode=0o711, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
    return handler
