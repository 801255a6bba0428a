# backend/portfolio_history/services/valuation/types.py
"""
Internal data types for portfolio value history.

These dataclasses are used by the reconstructor, engine and range
calculator. They are NOT Pydantic schemas - those live in
portfolio_history/schemas/value_history.py for API serialization.

Design Principles:
- Immutable where possible (frozen=True for value objects)
- Decimal for ALL monetary values and quantities; float only for quality
- date (not datetime) for valuation dates
- Optional fields use None, not sentinel values

Type Hierarchy:
    TransactionRecord    - One read-only ledger entry
    AccountInfo          - Account name and asset class
    CashPosition         - Liquid balance of one account
    SecurityPosition     - Quantity and cost basis of one symbol in one account
    PriceQuote           - A price with its quality score
    TickerBreakdown      - Value, quantity and price of one symbol on one day
    DailyPortfolioValue  - The valuation of a whole portfolio on one day
    PriceTierStats       - Counters of how range prices were resolved
    RangeResult          - Outcome of a range calculation
    CalculationJob       - Persisted job view
    PerformanceSummary   - Change over a stored window
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from portfolio_history.services.constants import CASH_SYMBOL, DEFAULT_ASSET_CLASS


# =============================================================================
# LEDGER INPUT
# =============================================================================

@dataclass(frozen=True)
class TransactionRecord:
    """
    A single ledger entry as seen by the reconstructor.

    Attributes:
        id: Ledger id; ties on transaction_date keep ledger order
        account_id: Owning account
        transaction_date: Calendar date (no intra-day ordering)
        transaction_type: Raw type string, e.g. "stock_buy", "fee"
        amount: Cash effect. Sign is ignored; the type gives direction.
        ticker: Security symbol, if any
        quantity: Units traded (for stock_split: units added)
        price: Per-unit price, informational only
    """

    id: int
    account_id: int | None
    transaction_date: date
    transaction_type: str
    amount: Decimal = Decimal("0")
    ticker: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None


@dataclass(frozen=True)
class AccountInfo:
    id: int
    name: str
    asset_class: str = DEFAULT_ASSET_CLASS


# =============================================================================
# POSITIONS
# =============================================================================

@dataclass(frozen=True)
class CashPosition:
    """
    Liquid balance held in one account.

    Cash is its own cost basis, so quantity and cost_basis both report the
    amount. symbol reports the CASH label for display only.
    """

    account_id: int
    account_name: str
    asset_class: str
    amount: Decimal

    @property
    def symbol(self) -> str:
        return CASH_SYMBOL

    @property
    def quantity(self) -> Decimal:
        return self.amount

    @property
    def cost_basis(self) -> Decimal:
        return self.amount


@dataclass(frozen=True)
class SecurityPosition:
    """Quantity and remaining cost basis of one symbol in one account."""

    account_id: int
    account_name: str
    asset_class: str
    symbol: str
    quantity: Decimal
    cost_basis: Decimal

    @property
    def average_cost(self) -> Decimal | None:
        """Cost per unit, or None for an empty position."""
        if self.quantity == 0:
            return None
        return self.cost_basis / self.quantity


Position = CashPosition | SecurityPosition


# =============================================================================
# PRICES
# =============================================================================

@dataclass(frozen=True)
class PriceQuote:
    """
    A price for a symbol on a date.

    Attributes:
        symbol: Security symbol
        price: Close price
        quality: 1.0 for an observed close on the requested date, lower for
                 interpolated, forward-filled or live substitutes
        source: How the price was obtained ("exact", "forward_filled", ...)
        price_date: Date of the underlying observation, when known
    """

    symbol: str
    price: Decimal
    quality: float
    source: str
    price_date: date | None = None


class PriceTier(str, enum.Enum):
    """How a range-mode price was resolved."""
    EXACT = "exact"
    FORWARD_FILLED = "forward_filled"
    LIVE_FALLBACK = "live_fallback"
    MISSING = "missing"


@dataclass
class PriceTierStats:
    """Per-lookup counters of the price tiers used in one range run."""

    exact: int = 0
    forward_filled: int = 0
    live_fallback: int = 0
    missing: int = 0

    def record(self, tier: PriceTier) -> None:
        setattr(self, tier.value, getattr(self, tier.value) + 1)

    @property
    def total(self) -> int:
        return self.exact + self.forward_filled + self.live_fallback + self.missing

    def as_dict(self) -> dict[str, int]:
        return {
            "exact": self.exact,
            "forward_filled": self.forward_filled,
            "live_fallback": self.live_fallback,
            "missing": self.missing,
        }


# =============================================================================
# DAILY VALUE
# =============================================================================

@dataclass(frozen=True)
class TickerBreakdown:
    value: Decimal
    quantity: Decimal
    price: Decimal


@dataclass
class DailyPortfolioValue:
    """
    Complete valuation of a user's portfolio on one day.

    Invariants:
        total_value == cash_value + invested_value
        unrealized_gain == invested_value - total_cost_basis
        sum(asset_class_breakdown) == sum(account_breakdown) == total_value
        sum(ticker_breakdown[*].value) == invested_value
        0.0 <= data_quality <= 1.0

    Attributes:
        value_date: Valuation date
        total_value: Cash plus priced securities
        cash_value: Sum of cash positions
        invested_value: Sum of quantity * price over priced securities
        total_cost_basis: Cost basis of priced securities
        unrealized_gain: invested_value - total_cost_basis
        realized_gain: Cumulative realized gain as of value_date (external)
        asset_class_breakdown: Value per asset class, cash included
        ticker_breakdown: Value, quantity and price per priced symbol
        account_breakdown: Value per account name, cash included
        data_quality: Mean price quality over priced securities, 1.0 if none
        missing_symbols: Held symbols with no price on value_date
    """

    value_date: date
    total_value: Decimal
    cash_value: Decimal
    invested_value: Decimal
    total_cost_basis: Decimal
    unrealized_gain: Decimal
    realized_gain: Decimal = Decimal("0")
    asset_class_breakdown: dict[str, Decimal] = field(default_factory=dict)
    ticker_breakdown: dict[str, TickerBreakdown] = field(default_factory=dict)
    account_breakdown: dict[str, Decimal] = field(default_factory=dict)
    data_quality: float = 1.0
    missing_symbols: list[str] = field(default_factory=list)

    @property
    def total_gain(self) -> Decimal:
        return self.unrealized_gain + self.realized_gain

    @property
    def has_complete_data(self) -> bool:
        """True if every held security was priced."""
        return not self.missing_symbols


# =============================================================================
# RANGE RESULT
# =============================================================================

@dataclass
class RangeResult:
    """
    Outcome of one range calculation.

    Per-day failures are collected here rather than raised. A cancelled run
    stops early; days after the stop are neither calculated nor failed.

    Attributes:
        start_date: First requested day
        end_date: Last requested day
        days_calculated: Days valuated and persisted
        days_failed: Days whose valuation or save failed
        errors: "YYYY-MM-DD: message" per failed day, in date order
        failed_dates: The failed days themselves
        cancelled: True if the run stopped on a cancel signal
        last_calculated_date: Latest day persisted successfully
        price_stats: Price tier counters (range mode only)
    """

    start_date: date
    end_date: date
    days_calculated: int = 0
    days_failed: int = 0
    errors: list[str] = field(default_factory=list)
    failed_dates: list[date] = field(default_factory=list)
    cancelled: bool = False
    last_calculated_date: date | None = None
    price_stats: PriceTierStats = field(default_factory=PriceTierStats)

    @property
    def success(self) -> bool:
        return self.days_failed == 0

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def summary(self, max_errors: int = 3) -> str:
        """
        Human-readable outcome, e.g.
        "9 days calculated, 1 failed. Errors: 2024-01-06: boom".
        """
        text = f"{self.days_calculated} days calculated, {self.days_failed} failed"
        if self.cancelled:
            text += " (cancelled)"
        if self.errors:
            shown = "; ".join(self.errors[:max_errors])
            if len(self.errors) > max_errors:
                shown += "; ..."
            text += f". Errors: {shown}"
        return text


# =============================================================================
# CALCULATION JOBS
# =============================================================================

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Allowed status changes; anything else is rejected
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
    JobStatus.CANCELLED: frozenset({JobStatus.RUNNING}),
}


@dataclass
class CalculationJob:
    """
    Persisted state of one calculation run.

    resume_from_date is the first day not yet calculated after a cancelled
    or failed run, or None when nothing remains.
    """

    id: int
    user_id: str
    start_date: date
    end_date: date
    status: JobStatus = JobStatus.PENDING
    progress_percentage: int = 0
    days_calculated: int = 0
    days_failed: int = 0
    error_message: str | None = None
    resume_from_date: date | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in JOB_TRANSITIONS[self.status]


# =============================================================================
# PERFORMANCE
# =============================================================================

@dataclass(frozen=True)
class PerformanceSummary:
    """
    Change in portfolio value across a stored window.

    period_gain is the change in total gain (unrealized + realized), so
    deposits and withdrawals do not count as performance.
    period_gain_percent is relative to the cost basis at the window start,
    None when that cost basis is zero.
    """

    start_date: date
    end_date: date
    start_value: Decimal
    current_value: Decimal
    value_change: Decimal
    value_change_percent: Decimal | None
    all_time_high: Decimal
    all_time_high_date: date
    all_time_low: Decimal
    all_time_low_date: date
    period_gain: Decimal
    period_gain_percent: Decimal | None
    days: int
