"""Logging setup for scripts that drive quorum agents."""

import logging
import sys

LOGGER_NAME = "quorum_agent"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Send quorum_agent log records to stdout.

    Safe to call more than once; only the first call adds a handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
