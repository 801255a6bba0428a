# backend/portfolio_history/middleware/correlation.py
"""
Correlation ID middleware.

Every request runs with a correlation id in context, so each log line
written while serving it (including the per-day lines of a range
calculation) can be filtered by request.

Sources, first match wins:
1. X-Correlation-ID header
2. X-Request-ID header
3. A generated UUID

The id is echoed back in the X-Correlation-ID response header.
"""

import logging
import uuid
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from portfolio_history.utils.context import correlation_scope

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id to the request context and response headers."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = resolve_correlation_id(request)

        with correlation_scope(correlation_id):
            response = await call_next(request)

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


def resolve_correlation_id(request: Request) -> str:
    """Header value if the client sent one, otherwise a new UUID."""
    return (
        request.headers.get(CORRELATION_ID_HEADER)
        or request.headers.get(REQUEST_ID_HEADER)
        or str(uuid.uuid4())
    )
