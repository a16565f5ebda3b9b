"""Structured logging configuration.

This module configures structlog once and hands out module loggers that
render events as JSON lines with an ISO timestamp and log level.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

_CONFIGURED = False


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog processors and the minimum level.

    Args:
        level: Minimum stdlib log level that is rendered.
    """
    global _CONFIGURED
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger with structured output.
    """
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)
