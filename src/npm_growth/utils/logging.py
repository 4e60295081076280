"""Logging configuration for the npm_growth command-line jobs."""

import logging
import sys

logger = logging.getLogger("npm_growth")

DEFAULT_FORMAT = "%(message)s"
VERBOSE_FORMAT = "%(levelname)s %(name)s: %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Attach a stderr handler to the package logger.

    Args:
        verbose: Show DEBUG messages, prefixed with level and logger name.
        quiet: Only show WARNING and above.
    """
    logger.handlers.clear()

    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level)
