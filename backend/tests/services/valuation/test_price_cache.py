# backend/tests/services/valuation/test_price_cache.py
"""
Unit tests for PriceCache tier resolution.

Tiers: exact (1.0) → forward-filled (0.8) → live fallback (0.5) → missing.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from portfolio_history.services.exceptions import LivePriceUnavailableError, PriceDataError
from portfolio_history.services.valuation.prices import PriceCache
from tests.conftest import FakeLivePrices, InMemoryPriceLookup

START = date(2024, 1, 1)
END = date(2024, 1, 5)


def _days():
    return [START + timedelta(days=i) for i in range((END - START).days + 1)]


class TestTiers:

    def test_live_fallback_until_first_close(self):
        """No data before day 3: days 1-2 live, day 3 exact, days 4-5 forward-filled."""
        lookup = InMemoryPriceLookup()
        lookup.add("XYZ", date(2024, 1, 3), "50")
        live = FakeLivePrices({"XYZ": Decimal("55")})
        cache = PriceCache(lookup, {"XYZ"}, START, END, live_prices=live, lookback_days=7)
        cache.prefetch()

        quotes = [cache.get_price("XYZ", day) for day in _days()]

        assert [q.source for q in quotes] == [
            "live_fallback", "live_fallback", "exact", "forward_filled", "forward_filled",
        ]
        assert [q.price for q in quotes] == [Decimal("55"), Decimal("55"), Decimal("50"), Decimal("50"), Decimal("50")]
        assert [q.quality for q in quotes] == [0.5, 0.5, 1.0, 0.8, 0.8]
        assert cache.stats.as_dict() == {
            "exact": 1,
            "forward_filled": 2,
            "live_fallback": 2,
            "missing": 0,
        }
        assert live.calls == ["XYZ"]

    def test_forward_fill_reports_source_date(self):
        lookup = InMemoryPriceLookup()
        lookup.add("AAPL", date(2024, 1, 2), "185.50")
        cache = PriceCache(lookup, ["AAPL"], START, END, lookback_days=0)

        quote = cache.get_price("AAPL", date(2024, 1, 5))

        assert quote.price == Decimal("185.50")
        assert quote.price_date == date(2024, 1, 2)

    def test_seeds_close_from_before_lookback_window(self):
        """A close older than the lookback window is found by the seed query."""
        lookup = InMemoryPriceLookup()
        lookup.add("VTI", date(2023, 11, 30), "220")
        cache = PriceCache(lookup, ["VTI"], START, END, lookback_days=7)

        quote = cache.get_price("VTI", START)

        assert quote.price == Decimal("220")
        assert quote.source == "forward_filled"
        assert lookup.bulk_calls == 1

    def test_missing_without_live_provider(self):
        cache = PriceCache(InMemoryPriceLookup(), ["GONE"], START, END)

        assert cache.get_price("GONE", START) is None
        assert cache.stats.missing == 1
        assert cache.stats.total == 1

    def test_live_failure_counts_as_missing(self):
        class FailingLive:
            def __init__(self):
                self.calls = 0

            def get_current_price(self, symbol):
                self.calls += 1
                raise LivePriceUnavailableError(symbol, reason="timeout")

        live = FailingLive()
        cache = PriceCache(InMemoryPriceLookup(), ["AAPL"], START, END, live_prices=live)

        assert cache.get_price("AAPL", START) is None
        assert cache.get_price("AAPL", END) is None
        assert live.calls == 1
        assert cache.stats.missing == 2

    def test_symbols_normalized(self):
        lookup = InMemoryPriceLookup()
        lookup.add("AAPL", START, "100")
        cache = PriceCache(lookup, [" aapl", "AAPL"], START, END)

        assert cache.symbols == ["AAPL"]
        assert cache.get_price("aapl", START).price == Decimal("100")


class TestPrefetch:

    def test_single_bulk_query(self):
        lookup = InMemoryPriceLookup()
        for day in _days():
            lookup.add("AAPL", day, "100")
            lookup.add("MSFT", day, "300")
        cache = PriceCache(lookup, ["AAPL", "MSFT"], START, END)

        for day in _days():
            cache.get_price("AAPL", day)
            cache.get_price("MSFT", day)

        assert lookup.bulk_calls == 1
        assert lookup.single_calls == 0
        assert cache.stats.exact == 10

    def test_bulk_failure_propagates(self):
        lookup = InMemoryPriceLookup()
        lookup.fail_bulk = True
        cache = PriceCache(lookup, ["AAPL"], START, END)

        with pytest.raises(PriceDataError):
            cache.prefetch()
