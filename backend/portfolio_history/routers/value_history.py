# backend/portfolio_history/routers/value_history.py
"""
Portfolio value history endpoints.

- POST /users/{user_id}/value-history/calculate - Run (or resume) a range calculation
- GET  /users/{user_id}/value-history - Stored daily records for a window
- GET  /users/{user_id}/value-history/performance - Summary of a stored window
- GET  /users/{user_id}/value-history/{value_date} - On-demand value of one date
- GET  /users/{user_id}/calculation-jobs/{job_id} - Job status

Calculations run synchronously inside the request. Domain exceptions
propagate to the global handlers in main.py.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portfolio_history.dependencies import get_value_service
from portfolio_history.schemas.value_history import (
    CalculateRequest,
    CalculationJobResponse,
    CalculationRunResponse,
    DailyValueResponse,
    PerformanceSummaryResponse,
    PriceTierStatsResponse,
    RangeResultResponse,
    TickerBreakdownResponse,
    ValueHistoryResponse,
)
from portfolio_history.config import settings
from portfolio_history.services.valuation import PortfolioValueService

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/users/{user_id}",
    tags=["Value History"],
)


# =============================================================================
# MAPPER FUNCTIONS (Internal Types -> Pydantic Schemas)
# =============================================================================

def _map_daily_value(record) -> DailyValueResponse:
    """Map internal DailyPortfolioValue to Pydantic schema."""
    return DailyValueResponse(
        value_date=record.value_date,
        total_value=record.total_value,
        cash_value=record.cash_value,
        invested_value=record.invested_value,
        total_cost_basis=record.total_cost_basis,
        unrealized_gain=record.unrealized_gain,
        realized_gain=record.realized_gain,
        asset_class_breakdown=record.asset_class_breakdown,
        ticker_breakdown={
            symbol: TickerBreakdownResponse(
                value=entry.value,
                quantity=entry.quantity,
                price=entry.price,
            )
            for symbol, entry in record.ticker_breakdown.items()
        },
        account_breakdown=record.account_breakdown,
        data_quality=record.data_quality,
        missing_symbols=list(record.missing_symbols),
    )


def _map_job(job) -> CalculationJobResponse:
    """Map internal CalculationJob; status is exposed as its string value."""
    return CalculationJobResponse(
        id=job.id,
        user_id=job.user_id,
        start_date=job.start_date,
        end_date=job.end_date,
        status=job.status.value,
        progress_percentage=job.progress_percentage,
        days_calculated=job.days_calculated,
        days_failed=job.days_failed,
        error_message=job.error_message,
        resume_from_date=job.resume_from_date,
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
    )


def _map_result(result) -> RangeResultResponse:
    return RangeResultResponse(
        success=result.success,
        summary=result.summary(settings.job_error_preview_count),
        days_calculated=result.days_calculated,
        days_failed=result.days_failed,
        errors=list(result.errors),
        cancelled=result.cancelled,
        last_calculated_date=result.last_calculated_date,
        price_stats=PriceTierStatsResponse(**result.price_stats.as_dict()),
    )


# =============================================================================
# CALCULATION ENDPOINTS
# =============================================================================

@router.post(
    "/value-history/calculate",
    response_model=CalculationRunResponse,
    summary="Calculate value history",
    response_description="The calculation job and the result of the run",
)
def calculate_value_history(
        user_id: str,
        request: CalculateRequest,
        service: PortfolioValueService = Depends(get_value_service),
) -> CalculationRunResponse:
    """
    Value and store every day of a date range.

    - Omitted **start_date** defaults to the first transaction date
    - Omitted **end_date** defaults to today
    - **resume_job_id** continues a cancelled or failed job from its
      `resume_from_date` instead of starting a new job

    Days that fail are listed in `result.errors`; the other days are still
    stored and the job ends as `failed` so it can be resumed.

    Raises **404** if the user has no asset accounts, **409** if the job
    to resume is not cancelled or failed.
    """
    if request.resume_job_id is not None:
        job, result = service.resume_calculation_job(
            user_id,
            request.resume_job_id,
            rolling=request.rolling,
        )
    else:
        job, result = service.run_calculation_job(
            user_id,
            start_date=request.start_date,
            end_date=request.end_date,
            rolling=request.rolling,
        )

    return CalculationRunResponse(job=_map_job(job), result=_map_result(result))


@router.get(
    "/calculation-jobs/{job_id}",
    response_model=CalculationJobResponse,
    summary="Get calculation job",
)
def get_calculation_job(
        user_id: str,
        job_id: int,
        service: PortfolioValueService = Depends(get_value_service),
) -> CalculationJobResponse:
    """Status and progress of one calculation job. Raises **404** if unknown."""
    return _map_job(service.get_job(user_id, job_id))


# =============================================================================
# READ ENDPOINTS
# =============================================================================

@router.get(
    "/value-history",
    response_model=ValueHistoryResponse,
    summary="Get stored value history",
    response_description="Stored daily records in ascending date order",
)
def get_value_history(
        user_id: str,
        start_date: date = Query(..., description="First day (inclusive)"),
        end_date: date = Query(..., description="Last day (inclusive)"),
        service: PortfolioValueService = Depends(get_value_service),
) -> ValueHistoryResponse:
    """
    Stored records only. Days that were never calculated are absent.

    Raises **400** if start_date is after end_date.
    """
    records = service.get_history(user_id, start_date, end_date)

    return ValueHistoryResponse(
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        count=len(records),
        data=[_map_daily_value(r) for r in records],
    )


# Declared before /value-history/{value_date} so "performance" is not parsed as a date
@router.get(
    "/value-history/performance",
    response_model=PerformanceSummaryResponse,
    summary="Get performance summary",
)
def get_performance_summary(
        user_id: str,
        start_date: date = Query(..., description="First day (inclusive)"),
        end_date: date = Query(..., description="Last day (inclusive)"),
        service: PortfolioValueService = Depends(get_value_service),
) -> PerformanceSummaryResponse:
    """
    Value change, high, low and gain over the stored records of a window.

    Raises **404** if no records are stored in the window.
    """
    summary = service.get_performance_summary(user_id, start_date, end_date)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No value history stored for user {user_id} between {start_date} and {end_date}",
        )

    return PerformanceSummaryResponse.model_validate(summary)


@router.get(
    "/value-history/{value_date}",
    response_model=DailyValueResponse,
    summary="Value portfolio on a date",
)
def get_value_for_date(
        user_id: str,
        value_date: date,
        service: PortfolioValueService = Depends(get_value_service),
) -> DailyValueResponse:
    """
    Replay the ledger up to value_date and value it. Nothing is stored.

    Raises **404** if the user has no asset accounts.
    """
    return _map_daily_value(service.calculate_value_for_date(user_id, value_date))
