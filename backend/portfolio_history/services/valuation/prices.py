# backend/portfolio_history/services/valuation/prices.py
"""
Price lookup adapters.

SqlPriceLookup
    Reads the price_history table. Single-date lookups fall back to
    interpolation when the exact close is missing:

        exact close on the date               quality 1.0
        only an earlier close (forward)       quality 0.7
        only a later close (backward)         quality 0.7
        closes on both sides (linear)         quality 0.5

    get_price_on_or_before returns the latest close at or before a date
    (quality 0.8 unless it falls exactly on the date).

PriceCache
    The in-memory cache a range run consults instead of the database.
    One bulk prefetch covers every symbol over the range plus a lookback
    window, then each (symbol, date) resolves through three tiers:

        1. exact hit in the prefetched data             quality 1.0
        2. forward-fill from the latest earlier close   quality 0.8
        3. live quote, only when the symbol has no
           earlier close at all (fetched once/symbol)   quality 0.5

    Each resolution, and each miss, is counted in PriceTierStats.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_history.config import settings
from portfolio_history.models import PriceHistory
from portfolio_history.services.constants import (
    QUALITY_EXACT,
    QUALITY_EXTRAPOLATED,
    QUALITY_FORWARD_FILLED,
    QUALITY_INTERPOLATED,
    QUALITY_LIVE_FALLBACK,
    QUALITY_ON_OR_BEFORE,
)
from portfolio_history.services.exceptions import PriceDataError
from portfolio_history.services.protocols import HistoricalPriceLookup, LivePriceProvider
from portfolio_history.services.valuation.types import PriceQuote, PriceTier, PriceTierStats

logger = logging.getLogger(__name__)


# =============================================================================
# SQL LOOKUP
# =============================================================================

class SqlPriceLookup:
    """HistoricalPriceLookup over the price_history table."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_price(self, symbol: str, on_date: date) -> PriceQuote | None:
        symbol = symbol.strip().upper()

        exact = self._close_on(symbol, on_date)
        if exact is not None:
            return PriceQuote(symbol, exact, QUALITY_EXACT, "exact", on_date)

        before = self._neighbour(symbol, on_date, earlier=True)
        after = self._neighbour(symbol, on_date, earlier=False)

        if before is not None and after is not None:
            (d0, p0), (d1, p1) = before, after
            fraction = Decimal((on_date - d0).days) / Decimal((d1 - d0).days)
            price = p0 + (p1 - p0) * fraction
            return PriceQuote(symbol, price, QUALITY_INTERPOLATED, "interpolated", on_date)
        if before is not None:
            return PriceQuote(symbol, before[1], QUALITY_EXTRAPOLATED, "forward", before[0])
        if after is not None:
            return PriceQuote(symbol, after[1], QUALITY_EXTRAPOLATED, "backward", after[0])
        return None

    def get_price_on_or_before(self, symbol: str, on_date: date) -> PriceQuote | None:
        symbol = symbol.strip().upper()
        stmt = (
            select(PriceHistory.price_date, PriceHistory.close_price)
            .where(PriceHistory.symbol == symbol, PriceHistory.price_date <= on_date)
            .order_by(PriceHistory.price_date.desc())
            .limit(1)
        )
        row = self._execute(stmt, symbol).first()
        if row is None:
            return None
        price_date, close = row
        quality = QUALITY_EXACT if price_date == on_date else QUALITY_ON_OR_BEFORE
        return PriceQuote(symbol, Decimal(close), quality, "on_or_before", price_date)

    def get_prices(
            self,
            symbols: Iterable[str],
            start_date: date,
            end_date: date,
    ) -> dict[tuple[str, date], Decimal]:
        wanted = sorted({s.strip().upper() for s in symbols})
        if not wanted:
            return {}

        stmt = select(
            PriceHistory.symbol, PriceHistory.price_date, PriceHistory.close_price
        ).where(
            PriceHistory.symbol.in_(wanted),
            PriceHistory.price_date >= start_date,
            PriceHistory.price_date <= end_date,
        )
        rows = self._execute(stmt, None).all()

        logger.debug(
            f"Fetched {len(rows)} prices for {len(wanted)} symbols "
            f"from {start_date} to {end_date}"
        )
        return {(symbol, price_date): Decimal(close) for symbol, price_date, close in rows}

    # -------------------------------------------------------------------------

    def _close_on(self, symbol: str, on_date: date) -> Decimal | None:
        stmt = select(PriceHistory.close_price).where(
            PriceHistory.symbol == symbol,
            PriceHistory.price_date == on_date,
        )
        value = self._execute(stmt, symbol).scalar_one_or_none()
        return Decimal(value) if value is not None else None

    def _neighbour(
            self,
            symbol: str,
            on_date: date,
            earlier: bool,
    ) -> tuple[date, Decimal] | None:
        stmt = select(PriceHistory.price_date, PriceHistory.close_price).where(
            PriceHistory.symbol == symbol
        )
        if earlier:
            stmt = stmt.where(PriceHistory.price_date < on_date).order_by(PriceHistory.price_date.desc())
        else:
            stmt = stmt.where(PriceHistory.price_date > on_date).order_by(PriceHistory.price_date.asc())
        row = self._execute(stmt.limit(1), symbol).first()
        if row is None:
            return None
        return row[0], Decimal(row[1])

    def _execute(self, stmt, symbol: str | None):
        try:
            return self._db.execute(stmt)
        except SQLAlchemyError as e:
            # Later days reuse this session; an aborted transaction would fail them all
            self._db.rollback()
            raise PriceDataError(f"Price query failed: {e}", symbol=symbol) from e


# =============================================================================
# RANGE CACHE
# =============================================================================

class PriceCache:
    """
    Prefetched prices for one range run.

    Usage:
        cache = PriceCache(lookup, {"AAPL", "MSFT"}, start, end, live_prices=live)
        cache.prefetch()
        quote = cache.get_price("AAPL", day)
        cache.stats.as_dict()

    Attributes:
        stats: Tier counters across every get_price call
    """

    def __init__(
            self,
            lookup: HistoricalPriceLookup,
            symbols: Iterable[str],
            start_date: date,
            end_date: date,
            live_prices: LivePriceProvider | None = None,
            lookback_days: int | None = None,
    ) -> None:
        self._lookup = lookup
        self._live_prices = live_prices
        self._symbols = sorted({s.strip().upper() for s in symbols})
        self._end_date = end_date
        lookback = lookback_days if lookback_days is not None else settings.price_prefetch_lookback_days
        self._fetch_start = start_date - timedelta(days=lookback)

        # symbol -> ascending dates, and the matching closes
        self._dates: dict[str, list[date]] = {}
        self._closes: dict[str, list[Decimal]] = {}
        self._exact: dict[tuple[str, date], Decimal] = {}
        self._live: dict[str, Decimal | None] = {}
        self._loaded = False

        self.stats = PriceTierStats()

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    def prefetch(self) -> None:
        """
        Load every close for the run in one bulk query, then seed each
        symbol that has no close in the window with its last earlier close.

        Raises:
            PriceDataError: If the bulk query fails (fatal for the run)
        """
        prices = self._lookup.get_prices(self._symbols, self._fetch_start, self._end_date)
        for (symbol, price_date), close in prices.items():
            self._insert(symbol, price_date, close)

        seeded = 0
        for symbol in self._symbols:
            dates = self._dates.get(symbol)
            if dates and dates[0] <= self._fetch_start:
                continue
            quote = self._lookup.get_price_on_or_before(symbol, self._fetch_start - timedelta(days=1))
            if quote is not None:
                self._insert(symbol, quote.price_date or self._fetch_start, quote.price)
                seeded += 1

        self._loaded = True
        logger.info(
            f"Price cache loaded: {len(prices)} closes for {len(self._symbols)} symbols "
            f"({self._fetch_start} to {self._end_date}), {seeded} seeded from earlier data"
        )

    def get_price(self, symbol: str, on_date: date) -> PriceQuote | None:
        if not self._loaded:
            self.prefetch()
        symbol = symbol.strip().upper()

        close = self._exact.get((symbol, on_date))
        if close is not None:
            self.stats.record(PriceTier.EXACT)
            return PriceQuote(symbol, close, QUALITY_EXACT, PriceTier.EXACT.value, on_date)

        earlier = self._latest_before(symbol, on_date)
        if earlier is not None:
            self.stats.record(PriceTier.FORWARD_FILLED)
            price_date, close = earlier
            return PriceQuote(symbol, close, QUALITY_FORWARD_FILLED, PriceTier.FORWARD_FILLED.value, price_date)

        live = self._live_price(symbol)
        if live is not None:
            self.stats.record(PriceTier.LIVE_FALLBACK)
            return PriceQuote(symbol, live, QUALITY_LIVE_FALLBACK, PriceTier.LIVE_FALLBACK.value, None)

        self.stats.record(PriceTier.MISSING)
        return None

    # -------------------------------------------------------------------------

    def _insert(self, symbol: str, price_date: date, close: Decimal) -> None:
        dates = self._dates.setdefault(symbol, [])
        closes = self._closes.setdefault(symbol, [])
        index = bisect.bisect_left(dates, price_date)
        if index < len(dates) and dates[index] == price_date:
            closes[index] = close
        else:
            dates.insert(index, price_date)
            closes.insert(index, close)
        self._exact[(symbol, price_date)] = close

    def _latest_before(self, symbol: str, on_date: date) -> tuple[date, Decimal] | None:
        dates = self._dates.get(symbol)
        if not dates:
            return None
        index = bisect.bisect_left(dates, on_date)
        if index == 0:
            return None
        return dates[index - 1], self._closes[symbol][index - 1]

    def _live_price(self, symbol: str) -> Decimal | None:
        if self._live_prices is None:
            return None
        if symbol not in self._live:
            try:
                self._live[symbol] = self._live_prices.get_current_price(symbol)
            except PriceDataError as e:
                logger.warning(f"Live price fallback failed for {symbol}: {e}")
                self._live[symbol] = None
        return self._live[symbol]
