"""Structured logging configuration."""

import logging
import sys
from typing import Optional

import structlog

from ..config import settings


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog and the standard library root logger.

    ``json`` output is meant for log collection, ``console`` for local use.
    """
    level = (level or settings.logging.log_level).upper()
    log_format = (log_format or settings.logging.log_format).lower()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name)
