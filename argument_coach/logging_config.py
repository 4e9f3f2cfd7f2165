"""
Logging configuration for the coach service.
"""

import logging
import sys
from typing import Optional

LOGGER_NAME = "argument_coach"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"


def setup_logging(level: str = "INFO", stream: Optional[object] = None) -> logging.Logger:
    """
    Configure the package logger with a single console handler.

    Safe to call more than once; existing handlers are replaced.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    return logger
