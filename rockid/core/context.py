"""
Request context management for log correlation.

Carries request_id, correlation_id and the verified user_id through the
request using contextvars (async-safe).

Usage:
    # In middleware (automatic)
    set_request_id(generate_request_id())

    # After identity verification
    set_user_id(uid)

    # In error handlers
    capture_exception(exc, context=get_context_dict())
"""

from contextvars import ContextVar
from typing import Optional
import uuid

__all__ = [
    "set_request_id",
    "get_request_id",
    "generate_request_id",
    "set_user_id",
    "get_user_id",
    "set_correlation_id",
    "get_correlation_id",
    "clear_context",
    "get_context_dict",
]

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """
    Generate a new request ID.

    Format: req_{16 hex chars}
    """
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_user_id(user_id: str) -> None:
    """Set user ID for current context (after identity verification)."""
    _user_id.set(user_id)


def get_user_id() -> Optional[str]:
    return _user_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set correlation ID for distributed tracing.

    Passed through via the X-Correlation-ID header.
    """
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def clear_context() -> None:
    """Clear all context variables at the end of a request."""
    _request_id.set(None)
    _user_id.set(None)
    _correlation_id.set(None)


def get_context_dict() -> dict:
    """Get all context variables as dict for enriching error reports."""
    return {
        "request_id": get_request_id(),
        "user_id": get_user_id(),
        "correlation_id": get_correlation_id(),
    }
