"""Structured JSON logging via structlog."""

from __future__ import annotations

import logging
import sys

import structlog

_configured = False


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output.

    Only the first call installs processors; later calls just adjust the
    root level so the service can apply ``LOG_LEVEL`` after import-time
    loggers have already been created.
    """
    global _configured
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    if _configured:
        return
    _configured = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


def bind_request_context(**fields: object) -> None:
    """Attach *fields* to every log line emitted by the current task."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
