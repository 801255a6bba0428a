# backend/portfolio_history/services/market_data/yahoo.py
"""
Yahoo Finance live quote provider.

Implements QuoteProvider with yfinance: the current price of a symbol is
the most recent daily close Yahoo reports over the last few sessions.

Limitations:
- Rate limits exist but are undocumented
- Quotes may be delayed 15-20 minutes
"""

import logging
import math
from decimal import Decimal
from typing import Any

import yfinance as yf

from portfolio_history.services.exceptions import LivePriceUnavailableError
from portfolio_history.services.market_data.base import QuoteProvider

logger = logging.getLogger(__name__)


class YahooLivePriceProvider(QuoteProvider):
    """
    Yahoo Finance implementation of QuoteProvider.

    Retry Behavior (inherited from QuoteProvider):
        - Network errors and rate limits raise LivePriceUnavailableError,
          retried with exponential backoff (1s, 2s, 4s)
        - Unknown symbols return None without retrying

    Example:
        provider = YahooLivePriceProvider()
        provider.get_current_price("AAPL")  # Decimal("189.25")
    """

    # Sessions to request; covers weekends and single-day holidays
    LOOKBACK_PERIOD: str = "5d"

    @property
    def name(self) -> str:
        return "yahoo"

    def get_current_price(self, symbol: str) -> Decimal | None:
        symbol = symbol.strip().upper()
        return self._execute_with_retry(self._fetch_current_price, symbol)

    def _fetch_current_price(self, symbol: str) -> Decimal | None:
        """Internal method to fetch the latest close (called by retry wrapper)."""
        logger.debug(f"Fetching live price for {symbol}")

        try:
            df = yf.Ticker(symbol).history(
                period=self.LOOKBACK_PERIOD,
                interval="1d",
                auto_adjust=False,
            )
        except Exception as e:
            error_str = str(e).lower()
            if "not found" in error_str or "no data" in error_str or "delisted" in error_str:
                logger.info(f"Yahoo Finance has no quote for {symbol}")
                return None
            if "rate limit" in error_str or "too many requests" in error_str:
                raise LivePriceUnavailableError(symbol, reason="rate limited") from e
            logger.error(f"Yahoo Finance error for {symbol}: {e}")
            raise LivePriceUnavailableError(symbol, reason=str(e)) from e

        if df is None or df.empty or "Close" not in df:
            logger.info(f"Yahoo Finance returned no recent closes for {symbol}")
            return None

        for value in reversed(df["Close"].tolist()):
            price = self._to_decimal(value)
            if price is not None:
                return price
        return None

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(Decimal("0.00000001"))
        except (TypeError, ValueError):
            return None
