"""Utility functions for image-mirror."""

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from image_mirror.config import ACCEPTED_EXTENSIONS


def is_accepted_image(filename: str) -> bool:
    """True for visible .jpg/.jpeg files, extension compared case-insensitively."""
    if filename.startswith("."):
        return False
    return os.path.splitext(filename)[1].lower() in ACCEPTED_EXTENSIONS


def filename_key(filename: str) -> str:
    """Index key for a filename. Lookups are case-insensitive."""
    return filename.lower()


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    console: bool = True,
) -> None:
    """
    Configure loguru sinks.

    Args:
        log_file: Optional file to write logs to, rotated at 10 MB
        log_level: Minimum level for every sink
        console: Also log to stderr
    """
    # Remove default handler and any existing handlers
    logger.remove()

    if console:
        logger.add(sys.stderr, level=log_level, backtrace=True, diagnose=True, colorize=True)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=log_level,
            rotation="10 MB",
            retention="10 days",
            backtrace=True,
            diagnose=True,
            enqueue=True,
            colorize=False,
        )

    logger.info(f"Logging configured (level={log_level}, file={log_file})")
