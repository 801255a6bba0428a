# backend/portfolio_history/services/valuation/service.py
"""
Portfolio Value Service - single entry point for value history.

Operations:
- reconstruct_holdings(): Positions as of a date
- calculate_value_for_date(): On-demand valuation of one date (not saved)
- save_value(): Upsert one daily record
- calculate_range(): Value and persist every day of a range
- run_calculation_job() / resume_calculation_job(): Range runs tracked
  in the job ledger, with cancel and resume
- get_history() / get_performance_summary(): Read stored records

Design Principles:
- Dependency Injection: every collaborator is passed to the constructor,
  so tests substitute in-memory fakes
- No HTTP Knowledge: raises ServiceError subclasses, not HTTPException
- Only setup failures propagate; per-day failures are reported in the
  RangeResult

Usage:
    from portfolio_history.services.valuation import PortfolioValueService

    service = PortfolioValueService(
        ledger=SqlTransactionLedger(db),
        price_lookup=SqlPriceLookup(db),
        store=SqlValueHistoryStore(db),
        realized_gains=SqlRealizedGainSource(db),
        live_prices=YahooLivePriceProvider(),
        jobs=SqlCalculationJobStore(db),
    )
    job, result = service.run_calculation_job("user-1", date(2024, 1, 1), date(2024, 12, 31))
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from functools import partial

from portfolio_history.config import settings
from portfolio_history.services.exceptions import (
    AccountsNotFoundError,
    CalculationJobError,
    CalculationJobNotFoundError,
    InvalidDateRangeError,
    InvalidJobTransitionError,
    ServiceError,
)
from portfolio_history.services.protocols import (
    CalculationJobStore,
    HistoricalPriceLookup,
    LivePriceProvider,
    PriceSource,
    RealizedGainSource,
    TransactionLedger,
    ValueHistoryStore,
)
from portfolio_history.services.valuation.engine import DailyValuationEngine
from portfolio_history.services.valuation.prices import PriceCache
from portfolio_history.services.valuation.range_calculator import (
    CancelSignal,
    ProgressCallback,
    RangeCalculator,
    progress_percent,
)
from portfolio_history.services.valuation.reconstructor import (
    HoldingsReconstructor,
    cost_basis_strategy,
)
from portfolio_history.services.valuation.types import (
    AccountInfo,
    CalculationJob,
    DailyPortfolioValue,
    JobStatus,
    PerformanceSummary,
    Position,
    RangeResult,
)
from portfolio_history.utils.context import correlation_scope

logger = logging.getLogger(__name__)

_PERCENT = Decimal("0.01")


class PortfolioValueService:
    """
    Reconstructs, values and persists a user's portfolio history.

    Attributes:
        reconstructor: Ledger replay with the configured cost basis method
        engine: Single-day valuation
        range_calculator: Multi-day driver
    """

    def __init__(
            self,
            ledger: TransactionLedger,
            price_lookup: HistoricalPriceLookup,
            store: ValueHistoryStore,
            realized_gains: RealizedGainSource,
            live_prices: LivePriceProvider | None = None,
            jobs: CalculationJobStore | None = None,
            cost_basis_method: str | None = None,
            epsilon: Decimal | None = None,
    ) -> None:
        """
        Args:
            ledger: Accounts and transactions
            price_lookup: Stored historical prices
            store: Daily value persistence
            realized_gains: Cumulative realized gain source
            live_prices: Last-resort pricing tier for range runs
            jobs: Job ledger; required only for job operations
            cost_basis_method: "average" or "fifo" (default from settings)
            epsilon: Dust threshold (default from settings)
        """
        self._ledger = ledger
        self._price_lookup = price_lookup
        self._store = store
        self._realized_gains = realized_gains
        self._live_prices = live_prices
        self._jobs = jobs

        method = cost_basis_method or settings.cost_basis_method
        self.reconstructor = HoldingsReconstructor(cost_basis_strategy(method), epsilon)
        self.engine = DailyValuationEngine(epsilon)
        self.range_calculator = RangeCalculator(self.reconstructor, self.engine)

    # =========================================================================
    # SINGLE DATE
    # =========================================================================

    def reconstruct_holdings(self, user_id: str, cutoff_date: date) -> list[Position]:
        """
        Positions held at the end of cutoff_date.

        Raises:
            AccountsNotFoundError: If the user has no asset accounts
        """
        accounts = self._load_accounts(user_id)
        transactions = self._ledger.get_transactions(user_id, cutoff_date)
        return self.reconstructor.reconstruct(transactions, accounts, cutoff_date)

    def calculate_value_for_date(self, user_id: str, value_date: date) -> DailyPortfolioValue:
        """
        Replay the ledger up to value_date and value it. Nothing is saved.

        Prices come straight from the historical lookup, so gaps are
        interpolated rather than forward-filled.

        Raises:
            AccountsNotFoundError: If the user has no asset accounts
        """
        holdings = self.reconstruct_holdings(user_id, value_date)
        return self.engine.valuate(
            holdings,
            value_date,
            self._price_lookup,
            realized_gain=self._realized_gains.get_realized_gain(user_id, value_date),
        )

    def save_value(self, user_id: str, record: DailyPortfolioValue) -> None:
        """Upsert record by (user_id, value_date)."""
        self._store.upsert(user_id, record)

    def get_earliest_transaction_date(self, user_id: str) -> date | None:
        return self._ledger.get_earliest_transaction_date(user_id)

    # =========================================================================
    # RANGE
    # =========================================================================

    def calculate_range(
            self,
            user_id: str,
            start_date: date,
            end_date: date,
            on_progress: ProgressCallback | None = None,
            cancel_event: CancelSignal | None = None,
            rolling: bool = True,
    ) -> RangeResult:
        """
        Value and persist every day from start_date to end_date inclusive.

        Rolling mode (default) keeps one evolving holdings state and prices
        days from a prefetched PriceCache. Replay mode rebuilds holdings for
        each day and prices them through the historical lookup directly.

        Args:
            user_id: Owner of the ledger
            start_date: First day
            end_date: Last day
            on_progress: Receives (percent, "YYYY-MM-DD") after each day
            cancel_event: Stops the run before the next day once set
            rolling: Rolling (True) or replay (False) mode

        Returns:
            RangeResult; per-day failures are reported there, not raised

        Raises:
            InvalidDateRangeError: If the range is inverted or too long
            AccountsNotFoundError: If the user has no asset accounts
            PriceDataError: If the bulk price prefetch fails
        """
        self._validate_range(start_date, end_date)
        accounts = self._load_accounts(user_id)
        transactions = self._ledger.get_transactions(user_id, end_date)

        cache: PriceCache | None = None
        price_source: PriceSource = self._price_lookup
        if rolling:
            symbols = {txn.ticker for txn in transactions if txn.ticker}
            cache = PriceCache(
                self._price_lookup,
                symbols,
                start_date,
                end_date,
                live_prices=self._live_prices,
            )
            cache.prefetch()
            price_source = cache

        result = self.range_calculator.run(
            transactions,
            accounts,
            start_date,
            end_date,
            price_source=price_source,
            persist=partial(self.save_value, user_id),
            realized_gain=partial(self._realized_gains.get_realized_gain, user_id),
            on_progress=on_progress,
            cancel_event=cancel_event,
            rolling=rolling,
        )

        if cache is not None:
            result.price_stats = cache.stats
            logger.info(f"Price tiers for user {user_id}: {cache.stats.as_dict()}")

        return result

    # =========================================================================
    # CALCULATION JOBS
    # =========================================================================

    def run_calculation_job(
            self,
            user_id: str,
            start_date: date | None = None,
            end_date: date | None = None,
            on_progress: ProgressCallback | None = None,
            cancel_event: CancelSignal | None = None,
            rolling: bool = True,
    ) -> tuple[CalculationJob, RangeResult]:
        """
        Run a range calculation tracked in the job ledger.

        start_date defaults to the user's earliest transaction date,
        end_date to today.

        Job lifecycle:
            pending → running → completed  (no failed day)
                              → failed     (some days failed)
                              → cancelled  (cancel_event was set)

        Raises:
            InvalidDateRangeError: If the range is inverted or too long
            CalculationJobError: If the job row cannot be created
            AccountsNotFoundError: If the user has no asset accounts

        Any error raised once the job is running marks it failed, with
        resume_from_date set, before it propagates.
        """
        jobs = self._require_jobs()
        end = end_date or date.today()
        start = start_date or self.get_earliest_transaction_date(user_id) or end
        self._validate_range(start, end)

        job = jobs.create(user_id, start, end)
        logger.info(f"Created calculation job {job.id} for user {user_id}: {start} to {end}")
        return self._execute_job(job, start, on_progress, cancel_event, rolling)

    def resume_calculation_job(
            self,
            user_id: str,
            job_id: int,
            on_progress: ProgressCallback | None = None,
            cancel_event: CancelSignal | None = None,
            rolling: bool = True,
    ) -> tuple[CalculationJob, RangeResult]:
        """
        Continue a cancelled or failed job from its resume_from_date.

        Raises:
            CalculationJobNotFoundError: If the job does not exist
            InvalidJobTransitionError: If the job is not cancelled or failed
        """
        job = self.get_job(user_id, job_id)
        if not job.can_transition_to(JobStatus.RUNNING):
            raise InvalidJobTransitionError(job.id, job.status.value, JobStatus.RUNNING.value)

        start = job.resume_from_date or job.start_date
        logger.info(f"Resuming calculation job {job.id} from {start}")
        return self._execute_job(job, start, on_progress, cancel_event, rolling)

    def get_job(self, user_id: str, job_id: int) -> CalculationJob:
        """
        Raises:
            CalculationJobNotFoundError: If the job does not exist
        """
        job = self._require_jobs().get(user_id, job_id)
        if job is None:
            raise CalculationJobNotFoundError(job_id)
        return job

    def _execute_job(
            self,
            job: CalculationJob,
            start: date,
            on_progress: ProgressCallback | None,
            cancel_event: CancelSignal | None,
            rolling: bool,
    ) -> tuple[CalculationJob, RangeResult]:
        jobs = self._require_jobs()

        with correlation_scope(f"job-{job.id}"):
            self._transition(job, JobStatus.RUNNING)
            job.started_at = datetime.now(timezone.utc)
            job.completed_at = None
            job = jobs.save(job)

            try:
                result = self.calculate_range(
                    job.user_id,
                    start,
                    job.end_date,
                    on_progress=on_progress,
                    cancel_event=cancel_event,
                    rolling=rolling,
                )
            except ServiceError as e:
                logger.error(f"Calculation job {job.id} aborted: {e}")
                self._abort(job, start, str(e))
                raise
            except Exception as e:
                logger.exception(f"Calculation job {job.id} aborted by unexpected error")
                self._abort(job, start, f"Unexpected error: {e}")
                raise

            # Days before start were completed by earlier runs of this job
            already_done = (start - job.start_date).days
            job.days_calculated = already_done + result.days_calculated
            job.days_failed = result.days_failed
            total = (job.end_date - job.start_date).days + 1
            job.progress_percentage = progress_percent(job.days_calculated + job.days_failed, total)
            job.error_message = "; ".join(result.errors) or None
            job.resume_from_date = self._resume_date(start, result)

            if result.cancelled:
                target = JobStatus.CANCELLED
            elif result.days_failed:
                target = JobStatus.FAILED
            else:
                target = JobStatus.COMPLETED
            self._transition(job, target)
            job.completed_at = datetime.now(timezone.utc)
            job = jobs.save(job)

            logger.info(
                f"Calculation job {job.id} {job.status.value}: "
                f"{result.summary(settings.job_error_preview_count)}"
            )
            return job, result

    def _abort(self, job: CalculationJob, start: date, message: str) -> None:
        """Mark a running job failed so it can be resumed from start."""
        self._transition(job, JobStatus.FAILED)
        job.error_message = message
        job.resume_from_date = start
        job.completed_at = datetime.now(timezone.utc)
        self._require_jobs().save(job)

    @staticmethod
    def _resume_date(start: date, result: RangeResult) -> date | None:
        """Earliest day of the run that was not persisted, or None."""
        candidates = list(result.failed_dates)
        if result.cancelled:
            candidates.append(start + timedelta(days=result.days_calculated + result.days_failed))
        return min(candidates) if candidates else None

    @staticmethod
    def _transition(job: CalculationJob, target: JobStatus) -> None:
        if not job.can_transition_to(target):
            raise InvalidJobTransitionError(job.id, job.status.value, target.value)
        job.status = target

    def _require_jobs(self) -> CalculationJobStore:
        if self._jobs is None:
            raise CalculationJobError("No calculation job store configured")
        return self._jobs

    # =========================================================================
    # STORED HISTORY
    # =========================================================================

    def get_history(self, user_id: str, start_date: date, end_date: date) -> list[DailyPortfolioValue]:
        """Stored daily records in ascending date order."""
        self._validate_range(start_date, end_date)
        return self._store.get_range(user_id, start_date, end_date)

    def get_performance_summary(
            self,
            user_id: str,
            start_date: date,
            end_date: date,
    ) -> PerformanceSummary | None:
        """
        Summarize stored records between start_date and end_date.

        Returns:
            PerformanceSummary, or None when no records are stored
        """
        records = self.get_history(user_id, start_date, end_date)
        if not records:
            return None

        first, last = records[0], records[-1]
        high = max(records, key=lambda r: r.total_value)
        low = min(records, key=lambda r: r.total_value)

        value_change = last.total_value - first.total_value
        period_gain = last.total_gain - first.total_gain

        return PerformanceSummary(
            start_date=first.value_date,
            end_date=last.value_date,
            start_value=first.total_value,
            current_value=last.total_value,
            value_change=value_change,
            value_change_percent=_percent(value_change, first.total_value),
            all_time_high=high.total_value,
            all_time_high_date=high.value_date,
            all_time_low=low.total_value,
            all_time_low_date=low.value_date,
            period_gain=period_gain,
            period_gain_percent=_percent(period_gain, first.total_cost_basis),
            days=len(records),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _load_accounts(self, user_id: str) -> dict[int, AccountInfo]:
        accounts = self._ledger.get_accounts(user_id)
        if not accounts:
            raise AccountsNotFoundError(user_id)
        return accounts

    @staticmethod
    def _validate_range(start_date: date, end_date: date) -> None:
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)
        days = (end_date - start_date).days + 1
        if days > settings.max_range_days:
            raise InvalidDateRangeError(
                start_date,
                end_date,
                reason=f"{days} days exceeds the maximum of {settings.max_range_days}",
            )


def _percent(change: Decimal, base: Decimal) -> Decimal | None:
    if base == 0:
        return None
    return (change / base * 100).quantize(_PERCENT)
