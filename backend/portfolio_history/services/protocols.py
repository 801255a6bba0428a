# backend/portfolio_history/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- SQL adapters satisfy protocols without inheriting from them
- In-memory test fakes work without explicit inheritance
- Clear documentation of what each collaborator must provide

Collaborators of PortfolioValueService:
    TransactionLedger      - accounts and ordered transactions per user
    HistoricalPriceLookup  - stored close prices (single and bulk)
    LivePriceProvider      - latest quote, last-resort pricing tier
    ValueHistoryStore      - upsert/read of daily value records
    RealizedGainSource     - cumulative realized gain as of a date
    CalculationJobStore    - job ledger rows
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from portfolio_history.services.valuation.types import (
        AccountInfo,
        CalculationJob,
        DailyPortfolioValue,
        PriceQuote,
        TransactionRecord,
    )


class PriceSource(Protocol):
    """Anything the valuation engine can ask for a single price."""

    def get_price(self, symbol: str, on_date: date) -> PriceQuote | None:
        ...


class HistoricalPriceLookup(Protocol):
    """Interface over stored historical close prices."""

    def get_price(self, symbol: str, on_date: date) -> PriceQuote | None:
        """Price on on_date, interpolated when no exact close exists."""
        ...

    def get_price_on_or_before(self, symbol: str, on_date: date) -> PriceQuote | None:
        """Most recent close on or before on_date."""
        ...

    def get_prices(
        self,
        symbols: Iterable[str],
        start_date: date,
        end_date: date,
    ) -> dict[tuple[str, date], Decimal]:
        """All stored closes for symbols within [start_date, end_date]."""
        ...


class LivePriceProvider(Protocol):
    """Interface required for the live-fallback pricing tier."""

    def get_current_price(self, symbol: str) -> Decimal | None:
        ...


class TransactionLedger(Protocol):
    """Read-only access to a user's accounts and ledger."""

    def get_accounts(self, user_id: str) -> dict[int, AccountInfo]:
        ...

    def get_transactions(
        self,
        user_id: str,
        through_date: date | None = None,
    ) -> list[TransactionRecord]:
        """Transactions up to through_date, ordered by (date, ledger order)."""
        ...

    def get_earliest_transaction_date(self, user_id: str) -> date | None:
        ...


class ValueHistoryStore(Protocol):
    """Persistence of daily value records, unique on (user_id, value_date)."""

    def upsert(self, user_id: str, record: DailyPortfolioValue) -> None:
        ...

    def get(self, user_id: str, value_date: date) -> DailyPortfolioValue | None:
        ...

    def get_range(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[DailyPortfolioValue]:
        ...


class RealizedGainSource(Protocol):
    """Cumulative realized gain, maintained outside the replay."""

    def get_realized_gain(self, user_id: str, as_of: date) -> Decimal:
        ...


class CalculationJobStore(Protocol):
    """Create, read and update calculation job rows."""

    def create(self, user_id: str, start_date: date, end_date: date) -> CalculationJob:
        ...

    def get(self, user_id: str, job_id: int) -> CalculationJob | None:
        ...

    def save(self, job: CalculationJob) -> CalculationJob:
        ...
