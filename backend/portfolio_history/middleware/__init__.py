# backend/portfolio_history/middleware/__init__.py
"""
Middleware components for Portfolio Value History.

Usage:
    from portfolio_history.middleware import CorrelationIdMiddleware

    app.add_middleware(CorrelationIdMiddleware)
"""

from portfolio_history.middleware.correlation import (
    CORRELATION_ID_HEADER,
    CorrelationIdMiddleware,
)

__all__ = [
    "CORRELATION_ID_HEADER",
    "CorrelationIdMiddleware",
]
