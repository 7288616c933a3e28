"""
Unified error reporting with Sentry integration.

Provides:
- Sentry initialization (when SENTRY_DSN is configured)
- Structured logging of captured exceptions with request context
- Custom fingerprinting for error grouping

Usage:
    capture_exception(exc, context={"event_id": "evt_1", "user_id": "uid_1"})
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from rockid.core.context import get_context_dict, get_request_id, get_user_id

logger = structlog.get_logger(__name__)

__all__ = [
    "init_sentry",
    "capture_exception",
    "is_sentry_enabled",
]

_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Args:
        dsn: Sentry DSN (from project settings)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR,
                ),
            ],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop health check noise and tag events with request context."""
    if "request" in event:
        url = event["request"].get("url", "")
        if "/health" in url:
            return None

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        event.setdefault("user", {})["id"] = user_id

    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"event_id": "evt_1"})
        level: Severity level (warning, error, fatal)
        fingerprint: Custom grouping fingerprint for Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    # Always log, even without Sentry
    logger.error(
        "Exception captured",
        exc_info=exc,
        **enriched_context,
    )

    if not _sentry_initialized:
        return None

    try:
        with sentry_sdk.push_scope() as scope:
            for key, value in enriched_context.items():
                if value is not None:
                    scope.set_extra(key, value)
            if fingerprint:
                scope.fingerprint = fingerprint
            scope.level = level
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Failed to send exception to Sentry", error=str(e))
        return None
