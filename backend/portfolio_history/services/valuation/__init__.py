# backend/portfolio_history/services/valuation/__init__.py
"""
Portfolio value history package.

Rebuilds a user's holdings from the ledger day by day, prices them, and
stores one value record per day.

Usage:
    from portfolio_history.services.valuation import PortfolioValueService

    result = service.calculate_range("user-1", date(2024, 1, 1), date(2024, 3, 31))
    print(result.summary())

Architecture:
    valuation/
    ├── __init__.py           # This file - package exports
    ├── types.py              # Internal data classes
    ├── reconstructor.py      # Ledger replay and cost basis strategies
    ├── engine.py             # Single-day valuation
    ├── prices.py             # SQL price lookup and range price cache
    ├── range_calculator.py   # Multi-day driver with progress and cancel
    ├── repositories.py       # SQLAlchemy adapters
    └── service.py            # PortfolioValueService (orchestrator)

Data Flow:
    Ledger → HoldingsReconstructor → Positions
    Positions + PriceCache → DailyValuationEngine → DailyPortfolioValue
    RangeCalculator → upsert per day → RangeResult
"""

from portfolio_history.services.valuation.engine import DailyValuationEngine
from portfolio_history.services.valuation.prices import PriceCache, SqlPriceLookup
from portfolio_history.services.valuation.range_calculator import RangeCalculator
from portfolio_history.services.valuation.reconstructor import (
    AverageCostStrategy,
    FifoLotStrategy,
    HoldingsReconstructor,
    cost_basis_strategy,
)
from portfolio_history.services.valuation.repositories import (
    SqlCalculationJobStore,
    SqlRealizedGainSource,
    SqlTransactionLedger,
    SqlValueHistoryStore,
)
from portfolio_history.services.valuation.service import PortfolioValueService
from portfolio_history.services.valuation.types import (
    AccountInfo,
    CalculationJob,
    CashPosition,
    DailyPortfolioValue,
    JobStatus,
    PerformanceSummary,
    Position,
    PriceQuote,
    PriceTier,
    PriceTierStats,
    RangeResult,
    SecurityPosition,
    TickerBreakdown,
    TransactionRecord,
)

__all__ = [
    # Service
    "PortfolioValueService",
    # Components
    "HoldingsReconstructor",
    "AverageCostStrategy",
    "FifoLotStrategy",
    "cost_basis_strategy",
    "DailyValuationEngine",
    "RangeCalculator",
    "PriceCache",
    "SqlPriceLookup",
    # Adapters
    "SqlTransactionLedger",
    "SqlValueHistoryStore",
    "SqlRealizedGainSource",
    "SqlCalculationJobStore",
    # Types
    "AccountInfo",
    "CalculationJob",
    "CashPosition",
    "DailyPortfolioValue",
    "JobStatus",
    "PerformanceSummary",
    "Position",
    "PriceQuote",
    "PriceTier",
    "PriceTierStats",
    "RangeResult",
    "SecurityPosition",
    "TickerBreakdown",
    "TransactionRecord",
]
