# backend/portfolio_history/schemas/value_history.py
"""
Pydantic schemas for portfolio value history.

These schemas handle:
- Daily value records (stored or computed on demand)
- Range calculation requests and results
- Calculation job status
- Performance summaries
"""

import datetime as dt
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# DAILY VALUE SCHEMAS
# =============================================================================

class TickerBreakdownResponse(BaseModel):
    """Value of one symbol on one day."""

    value: Decimal = Field(..., description="quantity * price")
    quantity: Decimal = Field(..., description="Units held across accounts")
    price: Decimal = Field(..., description="Price used for the day")


class DailyValueResponse(BaseModel):
    """One day of portfolio value."""

    value_date: date = Field(..., description="Valuation date")
    total_value: Decimal = Field(..., description="Cash plus invested value")
    cash_value: Decimal = Field(..., description="Liquid balance across accounts")
    invested_value: Decimal = Field(..., description="Market value of priced securities")
    total_cost_basis: Decimal = Field(..., description="Cost basis of priced securities")
    unrealized_gain: Decimal = Field(..., description="invested_value - total_cost_basis")
    realized_gain: Decimal = Field(..., description="Cumulative realized gain as of the date")
    asset_class_breakdown: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Value per asset class, cash included"
    )
    ticker_breakdown: dict[str, TickerBreakdownResponse] = Field(
        default_factory=dict,
        description="Value, quantity and price per priced symbol"
    )
    account_breakdown: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Value per account, cash included"
    )
    data_quality: float = Field(..., ge=0, le=1, description="Mean price quality, 1.0 = all exact")
    missing_symbols: list[str] = Field(
        default_factory=list,
        description="Held symbols with no price for the date"
    )


class ValueHistoryResponse(BaseModel):
    """Stored daily records for a date window."""

    user_id: str
    start_date: date
    end_date: date
    count: int = Field(..., description="Number of stored days in the window")
    data: list[DailyValueResponse]


# =============================================================================
# CALCULATION SCHEMAS
# =============================================================================

class CalculateRequest(BaseModel):
    """
    Request to calculate (or resume) a value history run.

    Omitted dates default to the earliest transaction date and today.
    """

    start_date: date | None = Field(default=None, description="First day (inclusive)")
    end_date: date | None = Field(default=None, description="Last day (inclusive)")
    rolling: bool = Field(
        default=True,
        description="Reuse one evolving holdings state across days (faster)"
    )
    resume_job_id: int | None = Field(
        default=None,
        description="Continue this cancelled or failed job instead of starting a new one"
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "CalculateRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class PriceTierStatsResponse(BaseModel):
    """How prices were resolved during a run."""

    exact: int = 0
    forward_filled: int = 0
    live_fallback: int = 0
    missing: int = 0


class RangeResultResponse(BaseModel):
    """Outcome of a range run."""

    success: bool = Field(..., description="True if no day failed")
    summary: str = Field(..., description="e.g. '9 days calculated, 1 failed'")
    days_calculated: int
    days_failed: int
    errors: list[str] = Field(default_factory=list, description="'YYYY-MM-DD: message' per failed day")
    cancelled: bool = False
    last_calculated_date: date | None = None
    price_stats: PriceTierStatsResponse


class CalculationJobResponse(BaseModel):
    """Persisted calculation job."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    start_date: date
    end_date: date
    status: str = Field(..., description="pending, running, completed, failed or cancelled")
    progress_percentage: int = Field(..., ge=0, le=100)
    days_calculated: int
    days_failed: int
    error_message: str | None = None
    resume_from_date: date | None = Field(
        default=None,
        description="First day still to calculate after a cancelled or failed run"
    )
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    created_at: dt.datetime | None = None


class CalculationRunResponse(BaseModel):
    """A job together with the result of the run that just finished."""

    job: CalculationJobResponse
    result: RangeResultResponse


# =============================================================================
# PERFORMANCE SCHEMAS
# =============================================================================

class PerformanceSummaryResponse(BaseModel):
    """Change in value over a stored window."""

    model_config = ConfigDict(from_attributes=True)

    start_date: date
    end_date: date
    start_value: Decimal
    current_value: Decimal
    value_change: Decimal
    value_change_percent: Decimal | None = Field(
        default=None,
        description="Percent change in total value (None if start value is zero)"
    )
    all_time_high: Decimal
    all_time_high_date: date
    all_time_low: Decimal
    all_time_low_date: date
    period_gain: Decimal = Field(..., description="Change in unrealized plus realized gain")
    period_gain_percent: Decimal | None = Field(
        default=None,
        description="period_gain relative to the starting cost basis"
    )
    days: int = Field(..., description="Stored days in the window")
