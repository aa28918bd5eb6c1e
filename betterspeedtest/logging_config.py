"""Logging configuration for betterspeedtest."""

import logging
import os
import sys


def configure_logging() -> None:
    """Configure application-wide logging.

    Respects BETTERSPEEDTEST_LOG_LEVEL environment variable (default: WARNING).
    Logs go to stderr so that reports written to stdout stay machine-readable.

    Environment Variables:
        BETTERSPEEDTEST_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR,
                                   CRITICAL). Default is WARNING.

    Examples:
        # Show phase progress
        $ BETTERSPEEDTEST_LOG_LEVEL=INFO betterspeedtest --idle

        # Show every subprocess command line
        $ BETTERSPEEDTEST_LOG_LEVEL=DEBUG betterspeedtest -t 20
    """
    log_level_str = os.environ.get("BETTERSPEEDTEST_LOG_LEVEL", "WARNING").upper()

    log_level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    log_level = log_level_map.get(log_level_str, logging.WARNING)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured: level=%s", logging.getLevelName(log_level))
