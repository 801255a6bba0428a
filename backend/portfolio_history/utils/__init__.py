# backend/portfolio_history/utils/__init__.py
"""
Cross-cutting utilities:
- logging: Root logging setup with correlation id support
- context: Correlation id storage (contextvars)
"""

from portfolio_history.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from portfolio_history.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
