# backend/portfolio_history/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import String, Date, DateTime, ForeignKey, Numeric, Integer, Float, UniqueConstraint, JSON, Text, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class JobStatusEnum(str, enum.Enum):
    """
    Status values for a portfolio value calculation job.

    State transitions:
        PENDING → RUNNING → COMPLETED (no day failed)
        PENDING → RUNNING → FAILED (at least one day failed)
        PENDING → RUNNING → CANCELLED (stopped by the caller)

        CANCELLED | FAILED → RUNNING (resume)
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Account(Base):
    """
    A user account. Only accounts with account_type 'asset' carry portfolio
    value; liability and other accounts are ignored by valuation.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    account_type: Mapped[str] = mapped_column(String, default="asset")
    asset_class: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="account")


class Transaction(Base):
    """
    One ledger entry.

    Security fields (ticker, quantity, price) are read from
    transaction_metadata first and from the direct columns as a fallback.
    Ties on transaction_date are processed in primary key order.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # "Get all transactions for user X up to date Y"
        Index('ix_transaction_user_date', 'user_id', 'transaction_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True)
    transaction_date: Mapped[date] = mapped_column(Date, index=True)
    transaction_type: Mapped[str] = mapped_column(String)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    description: Mapped[str | None] = mapped_column(String, nullable=True)

    # Direct security columns; metadata wins when both are present
    ticker: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    transaction_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    account: Mapped["Account"] = relationship(back_populates="transactions")


class PriceHistory(Base):
    """
    Daily close prices per symbol. One row per (symbol, price_date).
    """
    __tablename__ = "price_history"
    __table_args__ = (
        UniqueConstraint('symbol', 'price_date', name='uq_price_symbol_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String, index=True)
    price_date: Mapped[date] = mapped_column(Date, index=True)
    close_price: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    data_source: Mapped[str] = mapped_column(String, default="yahoo")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AccountBalanceHistory(Base):
    """
    Per-account daily balance snapshots. realized_gain is cumulative, so the
    latest row on or before a date is that account's realized gain.
    """
    __tablename__ = "account_balance_history"
    __table_args__ = (
        Index('ix_balance_user_date', 'user_id', 'balance_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True)
    balance_date: Mapped[date] = mapped_column(Date)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal(0))
    realized_gain: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal(0))


class PortfolioValueHistory(Base):
    """
    One computed valuation per user per day.

    Breakdowns are JSON objects with string-encoded decimals so no precision
    is lost between Decimal and the JSON column.
    """
    __tablename__ = "portfolio_value_history"
    __table_args__ = (
        UniqueConstraint('user_id', 'value_date', name='uq_value_user_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    value_date: Mapped[date] = mapped_column(Date, index=True)

    total_value: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    cash_value: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    invested_value: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    total_cost_basis: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    unrealized_gain: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    realized_gain: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal(0))

    asset_class_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    ticker_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    account_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    missing_symbols: Mapped[list[str]] = mapped_column(JSON, default=list)

    data_quality_score: Mapped[float] = mapped_column(Float, default=1.0)
    calculation_method: Mapped[str] = mapped_column(String, default="transaction_replay")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PortfolioCalculationJob(Base):
    """
    Ledger row for one range calculation run. See JobStatusEnum for the
    allowed status transitions.
    """
    __tablename__ = "portfolio_calculation_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    job_status: Mapped[str] = mapped_column(String, default=JobStatusEnum.PENDING.value)

    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)
    days_calculated: Mapped[int] = mapped_column(Integer, default=0)
    days_failed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # First day still to calculate after a cancelled or failed run
    resume_from_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
