# backend/portfolio_history/routers/__init__.py
"""
API routers for Portfolio Value History.

- value_history: Range calculation, stored history, performance and jobs
"""

from portfolio_history.routers.value_history import router as value_history_router

__all__ = [
    "value_history_router",
]
