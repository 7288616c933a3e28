"""
Structured logging configuration using structlog.

JSON-formatted logs in production, human-readable console output
everywhere else. Service modules log through stdlib ``logging`` with
``extra={...}``; those records are rendered by the same structlog
processors, so keys such as user_id, event_id and event_type appear in
the output next to the request context bound by the middleware.

Usage:
    logger = logging.getLogger(__name__)
    logger.info("Consumed token", extra={"user_id": "uid_123", "tokens_remaining": 4})
"""

import logging
import sys
from typing import Any, Optional

import structlog

from rockid.core.config import settings

IS_PRODUCTION = settings.ENVIRONMENT == "production"
IS_TEST = "pytest" in sys.modules


def _renderer() -> Any:
    if IS_PRODUCTION:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=not IS_TEST)


def build_stdlib_formatter(renderer: Optional[Any] = None) -> structlog.stdlib.ProcessorFormatter:
    """
    Formatter for stdlib log records.

    ``ExtraAdder`` copies the record's ``extra`` fields into the event dict
    before rendering.
    """
    renderer = renderer or _renderer()
    final_processors: list[Any] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if isinstance(renderer, structlog.processors.JSONRenderer):
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(renderer)

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=final_processors,
    )


def configure_logging() -> None:
    """Configure structlog and route stdlib logging through the same renderer."""

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if IS_PRODUCTION:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            _renderer(),
        ]
    else:
        processors = shared_processors + [_renderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    if not any(isinstance(h.formatter, structlog.stdlib.ProcessorFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(build_stdlib_formatter())
        root.addHandler(handler)
    root.setLevel(logging.INFO)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


configure_logging()
