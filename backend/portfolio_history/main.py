# backend/portfolio_history/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Registers global exception handlers
- Registers routers
- Defines global endpoints (health checks)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portfolio_history.config import settings
from portfolio_history.database import check_database_health
from portfolio_history.middleware import CorrelationIdMiddleware
from portfolio_history.routers import value_history_router
from portfolio_history.schemas.errors import ErrorDetail, ValidationErrorDetail
from portfolio_history.services.exceptions import (
    ServiceError,
    ValidationError,
    InvalidDateRangeError,
    NotFoundError,
    PriceDataError,
    LivePriceUnavailableError,
    PersistenceError,
    CalculationJobError,
    InvalidJobTransitionError,
)
from portfolio_history.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Daily portfolio value reconstruction from the transaction ledger",
    version="0.1.0",
)

app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Service-layer exceptions become consistent HTTP responses here.
# Starlette picks the most specific handler along the exception's MRO.
# =============================================================================

def _error_response(status_code: int, exc: ServiceError, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=type(exc).__name__,
            message=str(exc),
            details=details,
        ).model_dump(),
    )


@app.exception_handler(InvalidDateRangeError)
async def invalid_date_range_handler(request: Request, exc: InvalidDateRangeError) -> JSONResponse:
    """Handle inverted or oversized date ranges (400)."""
    logger.warning(f"Invalid date range: {exc}")
    return _error_response(
        400,
        exc,
        {"start_date": exc.start_date.isoformat(), "end_date": exc.end_date.isoformat()},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle business validation errors (400)."""
    logger.warning(f"Validation error: {exc}")
    return _error_response(400, exc, {"field": exc.field} if exc.field else None)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing accounts or jobs (404)."""
    logger.warning(f"Not found: {exc}")
    return _error_response(
        404,
        exc,
        {"resource_type": exc.resource_type, "resource_id": str(exc.resource_id)},
    )


@app.exception_handler(InvalidJobTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidJobTransitionError) -> JSONResponse:
    """Handle a job that cannot move to the requested state (409)."""
    logger.warning(f"Rejected job transition: {exc}")
    return _error_response(
        409,
        exc,
        {"job_id": exc.job_id, "current": exc.current, "target": exc.target},
    )


@app.exception_handler(CalculationJobError)
async def calculation_job_error_handler(request: Request, exc: CalculationJobError) -> JSONResponse:
    """Handle job ledger failures (500)."""
    logger.error(f"Calculation job error: {exc}")
    return _error_response(500, exc, {"job_id": exc.job_id} if exc.job_id else None)


@app.exception_handler(LivePriceUnavailableError)
async def live_price_unavailable_handler(
    request: Request, exc: LivePriceUnavailableError
) -> JSONResponse:
    """Handle the live quote provider being unreachable (503)."""
    logger.error(f"Live price unavailable: {exc}")
    return _error_response(503, exc, {"symbol": exc.symbol})


@app.exception_handler(PriceDataError)
async def price_data_error_handler(request: Request, exc: PriceDataError) -> JSONResponse:
    """Handle historical price loading failures (500)."""
    logger.error(f"Price data error: {exc}")
    return _error_response(500, exc, {"symbol": exc.symbol} if exc.symbol else None)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    """Handle failures writing value records (500)."""
    logger.error(f"Persistence error: {exc}")
    details = {"value_date": exc.value_date.isoformat()} if exc.value_date else None
    return _error_response(500, exc, details)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Catch-all for other service errors (500)."""
    logger.error(f"Unhandled service error: {exc}")
    return _error_response(500, exc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle all HTTPExceptions with consistent error format.

    Converts FastAPI's default {"detail": "..."} format to ErrorDetail.
    Registered on the Starlette base so routing 404s and 405s are covered.
    """
    error_types = {
        400: "BadRequestError",
        404: "NotFoundError",
        405: "MethodNotAllowedError",
        409: "ConflictError",
        422: "ValidationError",
        500: "InternalServerError",
        503: "ServiceUnavailableError",
    }
    error_type = error_types.get(exc.status_code, "HTTPError")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorDetail(
            error=error_type,
            message=str(exc.detail) if exc.detail else "An error occurred",
            details=None,
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's 422 body into ValidationErrorDetail."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(
            message="Request validation failed",
            details=errors,
        ).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(value_history_router)  # /users/{user_id}/*


# =============================================================================
# GLOBAL ENDPOINTS
# =============================================================================

@app.get("/", tags=["Health"])
def root():
    """API root - basic application info."""
    return {
        "message": f"Welcome to {settings.app_name}!",
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check for load balancers.

    - 200: Database reachable
    - 503: Database unreachable
    """
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "environment": settings.environment,
        "checks": {"database": database},
    }

    if not healthy:
        return JSONResponse(status_code=503, content=body)
    return body
