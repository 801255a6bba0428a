# backend/portfolio_history/schemas/__init__.py
from portfolio_history.schemas.errors import ErrorDetail, ValidationErrorDetail
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

__all__ = [
    "ErrorDetail",
    "ValidationErrorDetail",
    "CalculateRequest",
    "CalculationJobResponse",
    "CalculationRunResponse",
    "DailyValueResponse",
    "PerformanceSummaryResponse",
    "PriceTierStatsResponse",
    "RangeResultResponse",
    "TickerBreakdownResponse",
    "ValueHistoryResponse",
]
