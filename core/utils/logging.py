"""Centralized logging configuration."""

import logging
import sys
from typing import Optional

# SDK loggers that log request headers or bodies at INFO/DEBUG
NOISY_LOGGERS = (
    "botocore",
    "boto3",
    "urllib3",
    "httpx",
    "httpcore",
    "azure",
    "google",
    "hvac",
)


def setup_logging(
    level: str = "INFO", format_style: str = "standard", log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure logging for the application.

    Logs go to stderr; stdout is reserved for resolved values.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_style: 'standard' for dev, 'json' for production
        log_file: Optional file path to write logs

    Returns:
        Root logger
    """
    if format_style == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,  # Override any existing config
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Usage:
        from core.utils.logging import get_logger
        logger = get_logger(__name__)
        logger.debug(f"token refreshed: {mask(token)}")
    """
    return logging.getLogger(name)


def mask(value: Optional[str], visible: int = 4) -> str:
    """
    Redacted preview of a secret or token for debug lines.

    Values shorter than twice ``visible`` are fully masked.

    Example:
        mask("hvs.CAESIabcdef")  -> "hvs.***"
        mask("short")            -> "***"
    """
    if not value:
        return "<empty>"
    if len(value) < visible * 2:
        return "***"
    return f"{value[:visible]}***"
