"""
Logging utilities for Pennybook Backend.

Provides standardized logger configuration following the privacy rules below.

PRIVACY RULES:
- NEVER log transaction amounts, notes or descriptions
- NEVER log Supabase Auth tokens, API keys, or secrets
- NEVER log receipt URIs

Acceptable logging:
- High-level events (e.g., "Recurring sync started", "Backfill complete")
- Identifiers (transaction / template UUIDs, user UUIDs)
- Counts and timestamps (e.g., "materialized 3 occurrences for template X")
- Error codes and sanitized error messages
"""

import logging
from typing import Optional

from pennybook.config import settings


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to settings.LOG_LEVEL)

    Returns:
        Configured logger instance

    Usage:
        >>> from pennybook.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("High-level event occurred")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Add handler if not already configured (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
