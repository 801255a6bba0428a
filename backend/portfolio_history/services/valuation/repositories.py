# backend/portfolio_history/services/valuation/repositories.py
"""
SQLAlchemy adapters for the PortfolioValueService collaborators.

Each adapter wraps one Session and converts between ORM rows and the
dataclasses in types.py, so the calculation code never sees ORM objects.

    SqlTransactionLedger    accounts (type 'asset') and ordered transactions
    SqlValueHistoryStore    upsert/read of portfolio_value_history
    SqlRealizedGainSource   cumulative realized gain from balance history
    SqlCalculationJobStore  portfolio_calculation_jobs rows
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_history.models import (
    Account,
    AccountBalanceHistory,
    PortfolioCalculationJob,
    PortfolioValueHistory,
    Transaction,
)
from portfolio_history.services.constants import (
    ASSET_ACCOUNT_TYPE,
    CALCULATION_METHOD,
    DEFAULT_ASSET_CLASS,
    ZERO,
)
from portfolio_history.services.exceptions import CalculationJobError, PersistenceError
from portfolio_history.services.valuation.types import (
    AccountInfo,
    CalculationJob,
    DailyPortfolioValue,
    JobStatus,
    TickerBreakdown,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


# =============================================================================
# LEDGER
# =============================================================================

class SqlTransactionLedger:
    """
    Ledger reads for one user.

    Security fields come from transaction_metadata ("ticker", "quantity",
    "price") and fall back to the direct columns when a key is absent.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_accounts(self, user_id: str) -> dict[int, AccountInfo]:
        rows = self._read(
            select(Account)
            .where(Account.user_id == user_id, Account.account_type == ASSET_ACCOUNT_TYPE)
            .order_by(Account.id),
            "accounts",
        )
        return {
            row.id: AccountInfo(
                id=row.id,
                name=row.name,
                asset_class=row.asset_class or DEFAULT_ASSET_CLASS,
            )
            for row in rows
        }

    def get_transactions(
            self,
            user_id: str,
            through_date: date | None = None,
    ) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.user_id == user_id,
                Account.account_type == ASSET_ACCOUNT_TYPE,
            )
            .order_by(Transaction.transaction_date, Transaction.id)
        )
        if through_date is not None:
            stmt = stmt.where(Transaction.transaction_date <= through_date)

        return [_to_record(row) for row in self._read(stmt, "transactions")]

    def get_earliest_transaction_date(self, user_id: str) -> date | None:
        """First transaction date in an asset account, the only ones valued."""
        stmt = (
            select(func.min(Transaction.transaction_date))
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.user_id == user_id,
                Account.account_type == ASSET_ACCOUNT_TYPE,
            )
        )
        (earliest,) = self._read(stmt, "earliest transaction date")
        return earliest

    def _read(self, stmt, what: str) -> list:
        try:
            return list(self._db.scalars(stmt).all())
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError(f"Could not load {what}: {e}") from e


def _to_record(row: Transaction) -> TransactionRecord:
    metadata: dict[str, Any] = row.transaction_metadata or {}

    ticker = metadata.get("ticker") or row.ticker
    quantity = _to_decimal(metadata["quantity"]) if "quantity" in metadata else row.quantity
    price = _to_decimal(metadata["price"]) if "price" in metadata else row.price

    return TransactionRecord(
        id=row.id,
        account_id=row.account_id,
        transaction_date=row.transaction_date,
        transaction_type=row.transaction_type,
        amount=Decimal(row.amount) if row.amount is not None else ZERO,
        ticker=ticker,
        quantity=quantity,
        price=price,
    )


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Ignoring non-numeric metadata value: {value!r}")
        return None


# =============================================================================
# VALUE HISTORY
# =============================================================================

class SqlValueHistoryStore:
    """
    portfolio_value_history access.

    upsert uses INSERT ... ON CONFLICT (user_id, value_date) DO UPDATE, so
    re-running a day overwrites its row (last write wins).
    """

    _UPDATE_COLUMNS = (
        "total_value",
        "cash_value",
        "invested_value",
        "total_cost_basis",
        "unrealized_gain",
        "realized_gain",
        "asset_class_breakdown",
        "ticker_breakdown",
        "account_breakdown",
        "missing_symbols",
        "data_quality_score",
        "calculation_method",
    )

    def __init__(self, db: Session) -> None:
        self._db = db

    def upsert(self, user_id: str, record: DailyPortfolioValue) -> None:
        values = _record_to_row(user_id, record)
        insert = pg_insert if self._db.get_bind().dialect.name == "postgresql" else sqlite_insert

        stmt = insert(PortfolioValueHistory).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "value_date"],
            set_={column: getattr(stmt.excluded, column) for column in self._UPDATE_COLUMNS},
        )

        try:
            self._db.execute(stmt)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError(
                f"Could not save value for {record.value_date}: {e}",
                value_date=record.value_date,
            ) from e

    def get(self, user_id: str, value_date: date) -> DailyPortfolioValue | None:
        row = self._db.scalar(
            select(PortfolioValueHistory).where(
                PortfolioValueHistory.user_id == user_id,
                PortfolioValueHistory.value_date == value_date,
            )
        )
        return _row_to_record(row) if row is not None else None

    def get_range(
            self,
            user_id: str,
            start_date: date,
            end_date: date,
    ) -> list[DailyPortfolioValue]:
        rows = self._db.scalars(
            select(PortfolioValueHistory)
            .where(
                PortfolioValueHistory.user_id == user_id,
                PortfolioValueHistory.value_date >= start_date,
                PortfolioValueHistory.value_date <= end_date,
            )
            .order_by(PortfolioValueHistory.value_date)
        ).all()
        return [_row_to_record(row) for row in rows]


def _record_to_row(user_id: str, record: DailyPortfolioValue) -> dict[str, Any]:
    # Decimals go into JSON as strings to keep full precision
    return {
        "user_id": user_id,
        "value_date": record.value_date,
        "total_value": record.total_value,
        "cash_value": record.cash_value,
        "invested_value": record.invested_value,
        "total_cost_basis": record.total_cost_basis,
        "unrealized_gain": record.unrealized_gain,
        "realized_gain": record.realized_gain,
        "asset_class_breakdown": {k: str(v) for k, v in record.asset_class_breakdown.items()},
        "ticker_breakdown": {
            symbol: {
                "value": str(item.value),
                "quantity": str(item.quantity),
                "price": str(item.price),
            }
            for symbol, item in record.ticker_breakdown.items()
        },
        "account_breakdown": {k: str(v) for k, v in record.account_breakdown.items()},
        "missing_symbols": list(record.missing_symbols),
        "data_quality_score": record.data_quality,
        "calculation_method": CALCULATION_METHOD,
    }


def _row_to_record(row: PortfolioValueHistory) -> DailyPortfolioValue:
    return DailyPortfolioValue(
        value_date=row.value_date,
        total_value=Decimal(row.total_value),
        cash_value=Decimal(row.cash_value),
        invested_value=Decimal(row.invested_value),
        total_cost_basis=Decimal(row.total_cost_basis),
        unrealized_gain=Decimal(row.unrealized_gain),
        realized_gain=Decimal(row.realized_gain or 0),
        asset_class_breakdown={k: Decimal(v) for k, v in (row.asset_class_breakdown or {}).items()},
        ticker_breakdown={
            symbol: TickerBreakdown(
                value=Decimal(item["value"]),
                quantity=Decimal(item["quantity"]),
                price=Decimal(item["price"]),
            )
            for symbol, item in (row.ticker_breakdown or {}).items()
        },
        account_breakdown={k: Decimal(v) for k, v in (row.account_breakdown or {}).items()},
        data_quality=float(row.data_quality_score),
        missing_symbols=list(row.missing_symbols or []),
    )


# =============================================================================
# REALIZED GAIN
# =============================================================================

class SqlRealizedGainSource:
    """
    Sum over the user's accounts of the latest realized_gain recorded on or
    before a date. Accounts with no balance rows contribute zero.
    When an account has several rows on its latest date, the highest id wins.
    Query failures raise PersistenceError.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_realized_gain(self, user_id: str, as_of: date) -> Decimal:
        ranked = (
            select(
                AccountBalanceHistory.realized_gain,
                func.row_number().over(
                    partition_by=AccountBalanceHistory.account_id,
                    order_by=(
                        AccountBalanceHistory.balance_date.desc(),
                        AccountBalanceHistory.id.desc(),
                    ),
                ).label("position"),
            )
            .where(
                AccountBalanceHistory.user_id == user_id,
                AccountBalanceHistory.balance_date <= as_of,
            )
            .subquery()
        )

        try:
            total = self._db.scalar(
                select(func.sum(ranked.c.realized_gain)).where(ranked.c.position == 1)
            )
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError(f"Could not load realized gain for {as_of}: {e}", value_date=as_of) from e
        return Decimal(total) if total is not None else ZERO


# =============================================================================
# CALCULATION JOBS
# =============================================================================

class SqlCalculationJobStore:
    """portfolio_calculation_jobs access. Failures raise CalculationJobError."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, user_id: str, start_date: date, end_date: date) -> CalculationJob:
        row = PortfolioCalculationJob(
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            job_status=JobStatus.PENDING.value,
        )
        try:
            self._db.add(row)
            self._db.commit()
            self._db.refresh(row)
        except SQLAlchemyError as e:
            self._db.rollback()
            raise CalculationJobError(f"Could not create calculation job: {e}") from e
        return _job_from_row(row)

    def get(self, user_id: str, job_id: int) -> CalculationJob | None:
        row = self._db.get(PortfolioCalculationJob, job_id)
        if row is None or row.user_id != user_id:
            return None
        return _job_from_row(row)

    def save(self, job: CalculationJob) -> CalculationJob:
        row = self._db.get(PortfolioCalculationJob, job.id)
        if row is None:
            raise CalculationJobError(f"Calculation job {job.id} disappeared", job_id=job.id)

        row.job_status = job.status.value
        row.progress_percentage = job.progress_percentage
        row.days_calculated = job.days_calculated
        row.days_failed = job.days_failed
        row.error_message = job.error_message
        row.resume_from_date = job.resume_from_date
        row.started_at = job.started_at
        row.completed_at = job.completed_at

        try:
            self._db.commit()
            self._db.refresh(row)
        except SQLAlchemyError as e:
            self._db.rollback()
            raise CalculationJobError(f"Could not update calculation job {job.id}: {e}", job_id=job.id) from e
        return _job_from_row(row)


def _job_from_row(row: PortfolioCalculationJob) -> CalculationJob:
    return CalculationJob(
        id=row.id,
        user_id=row.user_id,
        start_date=row.start_date,
        end_date=row.end_date,
        status=JobStatus(row.job_status),
        progress_percentage=row.progress_percentage or 0,
        days_calculated=row.days_calculated or 0,
        days_failed=row.days_failed or 0,
        error_message=row.error_message,
        resume_from_date=row.resume_from_date,
        started_at=row.started_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
    )
