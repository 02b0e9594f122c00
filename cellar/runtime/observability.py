from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str = "WARNING", *, json: bool = False) -> None:
    """
    Configure structlog over stdlib logging.

    Logs go to stderr so that command output on stdout stays machine-readable.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        force=True,
    )

    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_default_logging() -> None:
    """Send structlog output to stderr until `setup_logging` runs; an existing configuration is left alone."""

    if structlog.is_configured():
        return
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
