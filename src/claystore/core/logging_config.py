"""Structured logging configuration.

Every module obtains its logger through get_logger so output shares one
structured JSON format. Log lines go to stderr; stdout stays free for
command output. CLAYSTORE_LOG_LEVEL sets the minimum level (default info).
"""

import logging
import os
import sys
from typing import Any

import structlog

_configured = False


def _stderr_logger_factory(*args: Any) -> structlog.PrintLogger:
    # Looked up per call so redirected streams are honoured
    return structlog.PrintLogger(sys.stderr)


def _min_level() -> int:
    name = os.getenv("CLAYSTORE_LOG_LEVEL", "info").upper()
    level = getattr(logging, name, None)
    if not isinstance(level, int):
        return logging.INFO
    return level


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog bound logger emitting JSON lines.
    """
    global _configured
    if not _configured:
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(_min_level()),
            logger_factory=_stderr_logger_factory,
            cache_logger_on_first_use=False,
        )
        _configured = True
    return structlog.get_logger(name)
