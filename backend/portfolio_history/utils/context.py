# backend/portfolio_history/utils/context.py
"""
Execution context for log correlation.

Holds the correlation id of the current unit of work in a ContextVar:
an HTTP request id, or the job id while a calculation job runs.

Usage:
    from portfolio_history.utils.context import correlation_scope

    with correlation_scope(f"job-{job.id}"):
        ...  # every log line carries job-<id>
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Return the current correlation id, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """
    Bind a correlation id for the duration of a block.

    The previous value is restored on exit, so scopes nest.
    """
    token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(token)
