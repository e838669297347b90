"""
Logging setup for dmri_fem.

Modules log through ``logging.getLogger(__name__)``; this attaches the
handlers to the package logger so applications and the CLI can switch
solver progress output on with one call.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "dmri_fem"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Route dmri_fem log records to stdout and optionally to a file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Logging level (e.g. logging.DEBUG for per-interval output).
        log_file: Optional path of a log file, overwritten on each call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("Logging initialized at level %s", logging.getLevelName(level))
