# backend/portfolio_history/services/valuation/engine.py
"""
Daily Valuation Engine - prices one day's positions.

Given a holdings snapshot and a price source, produces a
DailyPortfolioValue with totals, gains, breakdowns and a data quality
score. The engine never touches storage and does not compute realized
gain: the caller supplies it from the realized-gain source.

Pricing rules:
- Cash positions are never priced. They feed cash_value and the asset
  class / account breakdowns, and are excluded from data quality.
- Each distinct symbol is priced once per day.
- A security without a price adds no value and no cost basis and is listed
  in missing_symbols; it does not enter the quality mean.
- data_quality is the mean quality over priced security positions; a day
  with none scores 1.0.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from portfolio_history.config import settings
from portfolio_history.services.constants import ZERO
from portfolio_history.services.protocols import PriceSource
from portfolio_history.services.valuation.types import (
    CashPosition,
    DailyPortfolioValue,
    Position,
    PriceQuote,
    TickerBreakdown,
)

logger = logging.getLogger(__name__)


class DailyValuationEngine:
    """
    Values a holdings snapshot on a single date.

    Stateless apart from epsilon; one instance can serve any number of
    days and users.
    """

    def __init__(self, epsilon: Decimal | None = None) -> None:
        self.epsilon = epsilon if epsilon is not None else settings.quantity_epsilon

    def valuate(
            self,
            holdings: Iterable[Position],
            valuation_date: date,
            price_lookup: PriceSource,
            *,
            realized_gain: Decimal = ZERO,
    ) -> DailyPortfolioValue:
        """
        Value holdings on valuation_date.

        Args:
            holdings: Cash and security positions
            valuation_date: Day to price
            price_lookup: Source of per-symbol prices
            realized_gain: Cumulative realized gain as of valuation_date

        Returns:
            DailyPortfolioValue satisfying the totals/breakdown invariants

        Raises:
            Whatever price_lookup raises; the range calculator records it
            as a failed day.
        """
        cash_value = ZERO
        invested_value = ZERO
        total_cost_basis = ZERO

        asset_class_breakdown: dict[str, Decimal] = {}
        account_breakdown: dict[str, Decimal] = {}
        ticker_values: dict[str, Decimal] = {}
        ticker_quantities: dict[str, Decimal] = {}

        quotes: dict[str, PriceQuote | None] = {}
        qualities: list[float] = []
        missing: list[str] = []

        for position in holdings:
            if isinstance(position, CashPosition):
                cash_value += position.amount
                _accumulate(asset_class_breakdown, position.asset_class, position.amount)
                _accumulate(account_breakdown, position.account_name, position.amount)
                continue

            if position.quantity <= self.epsilon:
                continue

            symbol = position.symbol
            if symbol not in quotes:
                quotes[symbol] = price_lookup.get_price(symbol, valuation_date)
            quote = quotes[symbol]

            if quote is None:
                if symbol not in missing:
                    missing.append(symbol)
                continue

            value = position.quantity * quote.price
            invested_value += value
            total_cost_basis += position.cost_basis
            qualities.append(quote.quality)

            _accumulate(ticker_values, symbol, value)
            _accumulate(ticker_quantities, symbol, position.quantity)
            _accumulate(asset_class_breakdown, position.asset_class, value)
            _accumulate(account_breakdown, position.account_name, value)

        ticker_breakdown = {
            symbol: TickerBreakdown(
                value=ticker_values[symbol],
                quantity=ticker_quantities[symbol],
                price=quotes[symbol].price,
            )
            for symbol in ticker_values
        }

        if qualities:
            data_quality = min(1.0, max(0.0, sum(qualities) / len(qualities)))
        else:
            data_quality = 1.0

        if missing:
            logger.debug(f"{valuation_date}: no price for {', '.join(missing)}")

        return DailyPortfolioValue(
            value_date=valuation_date,
            total_value=cash_value + invested_value,
            cash_value=cash_value,
            invested_value=invested_value,
            total_cost_basis=total_cost_basis,
            unrealized_gain=invested_value - total_cost_basis,
            realized_gain=realized_gain,
            asset_class_breakdown=asset_class_breakdown,
            ticker_breakdown=ticker_breakdown,
            account_breakdown=account_breakdown,
            data_quality=data_quality,
            missing_symbols=missing,
        )


def _accumulate(target: dict[str, Decimal], key: str, amount: Decimal) -> None:
    target[key] = target.get(key, ZERO) + amount
