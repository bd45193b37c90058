"""Logging configuration for the LatMon service."""

import logging
import os
import sys

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_log_level(value: str | None) -> int:
    """Map a LATMON_LOG_LEVEL value to a logging level; unknown names mean INFO."""
    name = (value or "INFO").strip().upper()
    if name not in LOG_LEVELS:
        return logging.INFO
    return getattr(logging, name)


def configure_logging() -> None:
    """Configure process-wide logging to stderr.

    Environment Variables:
        LATMON_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default INFO)

    Examples:
        $ LATMON_LOG_LEVEL=DEBUG python -m latmon
    """
    log_level = resolve_log_level(os.environ.get("LATMON_LOG_LEVEL"))

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    # werkzeug logs every request at INFO
    if log_level > logging.DEBUG:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging configured: level=%s", logging.getLevelName(log_level))
