# backend/portfolio_history/services/valuation/range_calculator.py
"""
Range Calculator - values and persists every day of a date span.

Days are processed strictly in order, one at a time: in rolling mode each
day's holdings depend on the previous day's state.

Per day:
    1. Bring holdings up to the day (rolling: apply only new transactions;
       replay: rebuild from the start of the ledger)
    2. Valuate against the price source
    3. Persist through the supplied callback (upsert by user and date)
    4. Report progress as (percent 0-100, "YYYY-MM-DD")

Failure policy:
    A day whose valuation or save fails is recorded as
    "YYYY-MM-DD: message" and counted; the run moves on to the next day.

Cancellation:
    cancel_event.is_set() is checked before each day. Once set, the run
    stops; the remaining days are neither attempted nor counted as failed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Protocol

from portfolio_history.services.protocols import PriceSource
from portfolio_history.services.valuation.engine import DailyValuationEngine
from portfolio_history.services.valuation.reconstructor import (
    HoldingsReconstructor,
    sort_transactions,
)
from portfolio_history.services.valuation.types import (
    AccountInfo,
    DailyPortfolioValue,
    RangeResult,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class CancelSignal(Protocol):
    """Anything with is_set(), e.g. threading.Event."""

    def is_set(self) -> bool:
        ...


def iter_dates(start_date: date, end_date: date):
    """Calendar days from start_date to end_date inclusive."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def progress_percent(processed: int, total: int) -> int:
    """Whole percent, halves rounded up; 100 for an empty total."""
    if total <= 0:
        return 100
    return (processed * 200 + total) // (total * 2)


class RangeCalculator:
    """
    Drives reconstruction and valuation across a date range.

    Attributes:
        reconstructor: Builds holdings from the ledger
        engine: Values one day's holdings
    """

    def __init__(
            self,
            reconstructor: HoldingsReconstructor,
            engine: DailyValuationEngine,
    ) -> None:
        self.reconstructor = reconstructor
        self.engine = engine

    def run(
            self,
            transactions: Sequence[TransactionRecord],
            accounts: Mapping[int, AccountInfo],
            start_date: date,
            end_date: date,
            price_source: PriceSource,
            persist: Callable[[DailyPortfolioValue], None],
            realized_gain: Callable[[date], Decimal],
            on_progress: ProgressCallback | None = None,
            cancel_event: CancelSignal | None = None,
            rolling: bool = True,
    ) -> RangeResult:
        """
        Value and persist each day from start_date to end_date.

        Args:
            transactions: Ledger entries up to at least end_date
            accounts: Known accounts by id
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            price_source: Per-symbol price lookup for each day
            persist: Saves one day's record; raising marks the day failed
            realized_gain: Cumulative realized gain as of a day
            on_progress: Called after every processed day
            cancel_event: Stops the run when set
            rolling: Reuse one evolving state (True) or replay per day

        Returns:
            RangeResult with counts, errors and cancellation flag
        """
        result = RangeResult(start_date=start_date, end_date=end_date)
        total = result.total_days

        ordered = sort_transactions(transactions)
        state = self.reconstructor.new_state()
        cursor = 0

        logger.info(
            f"Calculating {total} days from {start_date} to {end_date} "
            f"({'rolling' if rolling else 'replay'} mode, {len(ordered)} transactions)"
        )

        for processed, day in enumerate(iter_dates(start_date, end_date), start=1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"Range calculation cancelled before {day}")
                break

            record: DailyPortfolioValue | None = None
            try:
                if rolling:
                    cursor = self.reconstructor.advance(state, ordered, cursor, day, accounts)
                    holdings = self.reconstructor.snapshot(state)
                else:
                    holdings = self.reconstructor.reconstruct(ordered, accounts, day)

                record = self.engine.valuate(
                    holdings,
                    day,
                    price_source,
                    realized_gain=realized_gain(day),
                )
            except Exception as e:
                self._fail(result, day, f"{day.isoformat()}: {e}")

            if record is not None:
                try:
                    persist(record)
                    result.days_calculated += 1
                    result.last_calculated_date = day
                    logger.debug(f"{day}: total_value={record.total_value}")
                except Exception as e:
                    self._fail(result, day, f"{day.isoformat()}: Failed to save - {e}")

            self._report(on_progress, progress_percent(processed, total), day)

        logger.info(f"Range calculation finished: {result.summary()}")
        return result

    @staticmethod
    def _fail(result: RangeResult, day: date, message: str) -> None:
        result.days_failed += 1
        result.failed_dates.append(day)
        result.errors.append(message)
        logger.error(f"Day failed - {message}")

    @staticmethod
    def _report(on_progress: ProgressCallback | None, percent: int, day: date) -> None:
        if on_progress is None:
            return
        try:
            on_progress(percent, day.isoformat())
        except Exception as e:
            logger.warning(f"Progress callback raised for {day}: {e}")
