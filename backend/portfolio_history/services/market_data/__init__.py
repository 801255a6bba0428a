# backend/portfolio_history/services/market_data/__init__.py
"""
Live market data providers.

Usage:
    from portfolio_history.services.market_data import YahooLivePriceProvider

    provider = YahooLivePriceProvider()
    provider.get_current_price("MSFT")
"""

from portfolio_history.services.market_data.base import QuoteProvider
from portfolio_history.services.market_data.yahoo import YahooLivePriceProvider

__all__ = [
    "QuoteProvider",
    "YahooLivePriceProvider",
]
