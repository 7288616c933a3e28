"""
Request context middleware for observability.

Injects request_id and correlation_id into every request for log
correlation and error grouping, and logs each completed request with its
latency.

Headers:
- X-Request-ID: Unique ID for this request (generated if not provided)
- X-Correlation-ID: ID spanning multiple services (passed through)
"""

import re
import time
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from rockid.core.context import (
    set_request_id,
    set_correlation_id,
    get_user_id,
    generate_request_id,
    clear_context,
)

logger = structlog.get_logger(__name__)

# Reject IDs that could inject into log lines
MAX_ID_LENGTH = 64
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")


def _validate_id(value: Optional[str]) -> Optional[str]:
    """Return the ID if it is short and made of safe characters, else None."""
    if not value:
        return None
    if len(value) > MAX_ID_LENGTH:
        return None
    if not SAFE_ID_PATTERN.match(value):
        return None
    return value


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Manages request context for observability.

    - Extracts X-Request-ID from headers or generates one
    - Extracts X-Correlation-ID for distributed tracing
    - Binds context to structlog for automatic log enrichment
    - Echoes IDs in response headers
    - Cleans up context after the request completes
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _validate_id(request.headers.get("X-Request-ID")) or generate_request_id()
        set_request_id(request_id)
        request.state.request_id = request_id

        correlation_id = _validate_id(request.headers.get("X-Correlation-ID"))
        if correlation_id:
            set_correlation_id(correlation_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        start_time = time.perf_counter()
        status_code = 500  # Default to error in case of exception

        try:
            response = await call_next(request)
            status_code = response.status_code

            response.headers["X-Request-ID"] = request_id
            if correlation_id:
                response.headers["X-Correlation-ID"] = correlation_id

            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if not request.url.path.startswith("/health"):
                logger.info(
                    "Request completed",
                    status_code=status_code,
                    duration_ms=round(duration_ms, 1),
                    user_id=get_user_id(),
                )
            structlog.contextvars.clear_contextvars()
            clear_context()
