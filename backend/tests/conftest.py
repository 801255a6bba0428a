# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- In-memory fakes for every PortfolioValueService collaborator
- Ledger builders
"""

import os

# Must run before any portfolio_history import so Settings picks up test mode
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_history.models import Base
from portfolio_history.services.constants import QUALITY_EXACT, QUALITY_EXTRAPOLATED
from portfolio_history.services.exceptions import PersistenceError, PriceDataError
from portfolio_history.services.valuation import PortfolioValueService
from portfolio_history.services.valuation.types import (
    AccountInfo,
    CalculationJob,
    DailyPortfolioValue,
    PriceQuote,
    TransactionRecord,
)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# IN-MEMORY FAKES
# =============================================================================

class InMemoryLedger:
    """TransactionLedger over plain lists."""

    def __init__(
            self,
            accounts: dict[int, AccountInfo] | None = None,
            transactions: list[TransactionRecord] | None = None,
    ):
        self.accounts = accounts or {}
        self.transactions = transactions or []

    def get_accounts(self, user_id: str) -> dict[int, AccountInfo]:
        return dict(self.accounts)

    def get_transactions(self, user_id: str, through_date: date | None = None) -> list[TransactionRecord]:
        rows = [
            t for t in self.transactions
            if through_date is None or t.transaction_date <= through_date
        ]
        return sorted(rows, key=lambda t: (t.transaction_date, t.id))

    def get_earliest_transaction_date(self, user_id: str) -> date | None:
        return min((t.transaction_date for t in self.transactions), default=None)


class InMemoryPriceLookup:
    """
    HistoricalPriceLookup over a dict of closes.

    get_price returns the exact close or the latest earlier one; no
    interpolation. Set fail_bulk to make get_prices raise.
    """

    def __init__(self, prices: dict[tuple[str, date], Decimal] | None = None):
        self.prices = dict(prices or {})
        self.fail_bulk = False
        self.bulk_calls = 0
        self.single_calls = 0

    def add(self, symbol: str, on_date: date, close: str | Decimal) -> None:
        self.prices[(symbol, on_date)] = Decimal(close)

    def get_price(self, symbol: str, on_date: date) -> PriceQuote | None:
        self.single_calls += 1
        close = self.prices.get((symbol, on_date))
        if close is not None:
            return PriceQuote(symbol, close, QUALITY_EXACT, "exact", on_date)
        earlier = self.get_price_on_or_before(symbol, on_date)
        if earlier is None:
            return None
        return PriceQuote(symbol, earlier.price, QUALITY_EXTRAPOLATED, "forward", earlier.price_date)

    def get_price_on_or_before(self, symbol: str, on_date: date) -> PriceQuote | None:
        dates = [d for (s, d) in self.prices if s == symbol and d <= on_date]
        if not dates:
            return None
        latest = max(dates)
        return PriceQuote(symbol, self.prices[(symbol, latest)], 0.8, "on_or_before", latest)

    def get_prices(self, symbols, start_date: date, end_date: date) -> dict[tuple[str, date], Decimal]:
        self.bulk_calls += 1
        if self.fail_bulk:
            raise PriceDataError("price store unavailable")
        wanted = set(symbols)
        return {
            (s, d): close
            for (s, d), close in self.prices.items()
            if s in wanted and start_date <= d <= end_date
        }


class InMemoryValueStore:
    """ValueHistoryStore keyed by (user_id, value_date)."""

    def __init__(self):
        self.rows: dict[tuple[str, date], DailyPortfolioValue] = {}
        self.fail_dates: set[date] = set()
        self.writes = 0

    def upsert(self, user_id: str, record: DailyPortfolioValue) -> None:
        if record.value_date in self.fail_dates:
            raise PersistenceError("disk full", value_date=record.value_date)
        self.writes += 1
        self.rows[(user_id, record.value_date)] = record

    def get(self, user_id: str, value_date: date) -> DailyPortfolioValue | None:
        return self.rows.get((user_id, value_date))

    def get_range(self, user_id: str, start_date: date, end_date: date) -> list[DailyPortfolioValue]:
        return [
            record for (uid, day), record in sorted(self.rows.items(), key=lambda item: item[0][1])
            if uid == user_id and start_date <= day <= end_date
        ]


class FixedRealizedGains:
    def __init__(self, amount: str | Decimal = "0"):
        self.amount = Decimal(amount)

    def get_realized_gain(self, user_id: str, as_of: date) -> Decimal:
        return self.amount


class FakeLivePrices:
    """LivePriceProvider returning configured quotes and counting calls."""

    def __init__(self, prices: dict[str, Decimal] | None = None):
        self.prices = prices or {}
        self.calls: list[str] = []

    def get_current_price(self, symbol: str) -> Decimal | None:
        self.calls.append(symbol)
        return self.prices.get(symbol)


class InMemoryJobStore:
    """CalculationJobStore with sequential ids."""

    def __init__(self):
        self.jobs: dict[int, CalculationJob] = {}
        self.saves = 0

    def create(self, user_id: str, start_date: date, end_date: date) -> CalculationJob:
        job = CalculationJob(
            id=len(self.jobs) + 1,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            created_at=datetime.now(timezone.utc),
        )
        self.jobs[job.id] = job
        return job

    def get(self, user_id: str, job_id: int) -> CalculationJob | None:
        job = self.jobs.get(job_id)
        if job is None or job.user_id != user_id:
            return None
        return job

    def save(self, job: CalculationJob) -> CalculationJob:
        self.saves += 1
        self.jobs[job.id] = job
        return job


# =============================================================================
# LEDGER BUILDERS
# =============================================================================

BROKER = AccountInfo(id=1, name="Broker", asset_class="Equity")
SAVINGS = AccountInfo(id=2, name="Savings", asset_class="Cash")


def txn(
        txn_id: int,
        on_date: date,
        transaction_type: str,
        amount: str = "0",
        ticker: str | None = None,
        quantity: str | None = None,
        price: str | None = None,
        account_id: int | None = 1,
) -> TransactionRecord:
    """Build a TransactionRecord from strings."""
    return TransactionRecord(
        id=txn_id,
        account_id=account_id,
        transaction_date=on_date,
        transaction_type=transaction_type,
        amount=Decimal(amount),
        ticker=ticker,
        quantity=Decimal(quantity) if quantity is not None else None,
        price=Decimal(price) if price is not None else None,
    )


@pytest.fixture
def accounts() -> dict[int, AccountInfo]:
    return {BROKER.id: BROKER, SAVINGS.id: SAVINGS}


@pytest.fixture
def ledger(accounts) -> InMemoryLedger:
    return InMemoryLedger(accounts=accounts)


@pytest.fixture
def price_lookup() -> InMemoryPriceLookup:
    return InMemoryPriceLookup()


@pytest.fixture
def store() -> InMemoryValueStore:
    return InMemoryValueStore()


@pytest.fixture
def live_prices() -> FakeLivePrices:
    return FakeLivePrices()


@pytest.fixture
def jobs() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def service(ledger, price_lookup, store, live_prices, jobs) -> PortfolioValueService:
    """PortfolioValueService wired to in-memory fakes, average cost."""
    return PortfolioValueService(
        ledger=ledger,
        price_lookup=price_lookup,
        store=store,
        realized_gains=FixedRealizedGains("0"),
        live_prices=live_prices,
        jobs=jobs,
        cost_basis_method="average",
        epsilon=Decimal("0.0001"),
    )
