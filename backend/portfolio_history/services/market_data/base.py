# backend/portfolio_history/services/market_data/base.py
"""
Abstract base class for live quote providers.

Providers supply the last-resort pricing tier of a range run: a symbol's
current price when no historical close has ever been stored for it.

Retry Behavior:
    `_execute_with_retry` wraps provider calls in exponential backoff.
    Subclasses tune it with class attributes:

    - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
    - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
    - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
    - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Only LivePriceUnavailableError is retried. An unknown symbol is not an
    error: providers return None for it.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TypeVar, Callable, Any

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from portfolio_history.services.exceptions import LivePriceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class QuoteProvider(ABC):
    """
    Base class for live quote providers.

    Satisfies the LivePriceProvider protocol through get_current_price.
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in logs and errors (e.g. "yahoo")."""
        pass

    @abstractmethod
    def get_current_price(self, symbol: str) -> Decimal | None:
        """
        Latest available price for symbol.

        Returns:
            Price, or None when the provider does not know the symbol

        Raises:
            LivePriceUnavailableError: Provider unreachable after retries
        """
        pass

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Call func, retrying LivePriceUnavailableError with exponential backoff.

        Raises:
            The last exception if all attempts fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(LivePriceUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
