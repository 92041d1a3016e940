"""Logging configuration for the crawler."""

import sys
from typing import Optional

from loguru import logger

from .settings import settings


def setup_logging(log_level: Optional[str] = None) -> None:
    """Set up the loguru stderr sink.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR).
    """
    logger.remove()

    level = (log_level or settings.log_level).upper()

    format_string = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{module}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=format_string,
        level=level,
        colorize=True,
        backtrace=level == "DEBUG",
        diagnose=False,
    )

    logger.debug(f"Logging initialized with level: {level}")
