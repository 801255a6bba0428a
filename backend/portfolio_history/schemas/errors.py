# backend/portfolio_history/schemas/errors.py
"""
Pydantic schemas for error responses.

Every handled error leaves the API in the same shape. Used by the global
exception handlers in main.py.
"""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error response format."""

    error: str = Field(
        ...,
        description="Error type (exception class name, e.g. 'AccountsNotFoundError')"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    details: dict | None = Field(
        default=None,
        description="Additional error context (optional)"
    )


class ValidationErrorDetail(BaseModel):
    """Request validation failure, one entry per invalid field."""

    error: str = Field(default="ValidationError")
    message: str = Field(...)
    details: list[dict] = Field(
        default_factory=list,
        description="Entries of {field, message, type}"
    )
