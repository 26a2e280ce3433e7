"""Structured logging configuration.

JSON or console output through structlog, with request context propagated
via contextvars so every line emitted while serving a request carries its
``request_id``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        level: Log level (default: ``CSVSENSE_LOG_LEVEL`` or INFO)
        json_format: Emit JSON lines (default: ``CSVSENSE_LOG_FORMAT == "json"``)
    """
    log_level = (level or os.environ.get("CSVSENSE_LOG_LEVEL", "INFO")).upper()
    if json_format is None:
        json_format = os.environ.get("CSVSENSE_LOG_FORMAT", "").lower() == "json"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr keeps CLI stdout clean for JSON output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all context bound with :func:`bind_context`."""
    structlog.contextvars.clear_contextvars()
