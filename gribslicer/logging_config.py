"""
Logging configuration for the gribslicer package.

All package modules log through ``logging.getLogger(__name__)`` and so sit
below the ``gribslicer`` logger configured here. Console output goes through
``tqdm.write`` so that log lines emitted from worker threads do not tear the
progress bars of the fetch and assembly pools.
"""

import logging
import os
import sys
from typing import Optional

from tqdm import tqdm


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(levelname)s: %(message)s"

PACKAGE_LOGGER = "gribslicer"
LEVEL_ENV_VAR = "GRIBSLICER_LOG_LEVEL"

# verbosity flag -> level; anything below -2 is clamped to ERROR
_VERBOSITY_LEVELS = {
    1: logging.DEBUG,
    0: logging.INFO,
    -1: logging.WARNING,
    -2: logging.ERROR,
}

# Chatty collaborators: connection pool reuse, cfgrib index scans
QUIET_LIBRARIES = ("urllib3", "requests", "cfgrib")


class TqdmHandler(logging.StreamHandler):
    """StreamHandler that prints above active tqdm bars."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def _resolve_level(verbosity: int) -> int:
    env_level = os.environ.get(LEVEL_ENV_VAR, "").upper()
    if env_level in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        return getattr(logging, env_level)
    return _VERBOSITY_LEVELS[max(-2, min(1, verbosity))]


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """
    Configure the ``gribslicer`` logger.

    Args:
        verbosity: 1=DEBUG, 0=INFO, -1=WARNING, -2=ERROR
        log_file: Optional path; the file always receives DEBUG records
        format_string: Console format (defaults to a timestamped format,
            or a terse one when verbosity is negative)

    Environment Variables:
        GRIBSLICER_LOG_LEVEL: Overrides the verbosity-derived level

    Example:
        >>> setup_logging(verbosity=1)
        >>> setup_logging(log_file="gribslicer.log")
    """
    level = _resolve_level(verbosity)
    if format_string is None:
        format_string = DEFAULT_FORMAT if verbosity >= 0 else SIMPLE_FORMAT

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = TqdmHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(format_string))
    logger.addHandler(console)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode='a')
        except OSError as e:
            logger.setLevel(level)
            logger.warning(f"Failed to create log file {log_file}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")

    logger.debug(f"Logging configured: level={logging.getLevelName(level)}")


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, e.g. ``get_logger(__name__)`` inside the package."""
    return logging.getLogger(name)
