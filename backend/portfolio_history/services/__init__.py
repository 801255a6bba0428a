# backend/portfolio_history/services/__init__.py
"""
Service layer for business logic.

Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions
- Receive their collaborators through the constructor
- Are easily testable via dependency injection

Usage:
    from portfolio_history.services import PortfolioValueService
    from portfolio_history.services import (
        AccountsNotFoundError,
        InvalidDateRangeError,
    )

Architecture:
    services/
    ├── __init__.py        # This file - main exports
    ├── exceptions.py      # Domain exceptions
    ├── constants.py       # Ledger vocabulary and quality scores
    ├── protocols.py       # Collaborator interfaces (Protocol classes)
    ├── market_data/       # Live quote providers
    │   ├── base.py        # Abstract provider with retry
    │   └── yahoo.py       # Yahoo Finance implementation
    └── valuation/         # Reconstruction, valuation, range runs
"""

from portfolio_history.services.exceptions import (
    ServiceError,
    ValidationError,
    InvalidDateRangeError,
    NotFoundError,
    AccountsNotFoundError,
    CalculationJobNotFoundError,
    PriceDataError,
    LivePriceUnavailableError,
    PersistenceError,
    CalculationJobError,
    InvalidJobTransitionError,
)
from portfolio_history.services.market_data import YahooLivePriceProvider
from portfolio_history.services.valuation import PortfolioValueService

__all__ = [
    # Services
    "PortfolioValueService",
    "YahooLivePriceProvider",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "InvalidDateRangeError",
    "NotFoundError",
    "AccountsNotFoundError",
    "CalculationJobNotFoundError",
    "PriceDataError",
    "LivePriceUnavailableError",
    "PersistenceError",
    "CalculationJobError",
    "InvalidJobTransitionError",
]
