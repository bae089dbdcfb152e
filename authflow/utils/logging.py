"""Logging configuration for the application.

This module provides centralized logging configuration.
Import `get_logger` to create loggers in other modules.
"""

import logging
import sys
from functools import lru_cache

from authflow.config import get_settings


def configure_logging() -> None:
    """Configure logging for the application.

    This should be called once at application startup.
    Uses DEBUG when `settings.debug` is set, INFO otherwise.
    """
    level = logging.DEBUG if get_settings().debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,  # Override any existing configuration
    )

    logging.getLogger("authflow").setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@lru_cache(maxsize=None)
def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name.

    Args:
        name: The module name, typically __name__

    Returns:
        Configured logger instance

    Example:
        from authflow.utils.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Phone verification started")
    """
    return logging.getLogger(name)


def mask_phone(phone_number: str | None) -> str:
    """Mask a phone number down to its last four digits for log output."""
    if not phone_number:
        return "<none>"
    return f"***{phone_number[-4:]}"
