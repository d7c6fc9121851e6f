"""
Logging Configuration

Console and optional file logging for the photoslice command line.

The console shows short "LEVEL: message" lines (with the module name at
DEBUG level) on stderr so stdout stays free for statistics. A log file gets
full timestamps regardless of the console level.
"""

import logging
import sys
from typing import Optional


PACKAGE_LOGGER = "photo_slicer"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
DEBUG_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def console_formatter(level: int) -> logging.Formatter:
    """Formatter for stderr; module names only at DEBUG."""
    if level <= logging.DEBUG:
        return logging.Formatter(DEBUG_CONSOLE_FORMAT)
    return logging.Formatter(CONSOLE_FORMAT)


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the 'photo_slicer' logger.

    Args:
        level: Console level (DEBUG for --verbose, WARNING for --quiet)
        log_file: Optional path for a DEBUG-level log with timestamps

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.propagate = False

    # Repeated calls (batch runs, tests) replace the previous handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter(level))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(level)

    logger.debug("Logging initialized at %s", logging.getLevelName(level))
    return logger
