# backend/portfolio_history/dependencies.py
"""
Dependency injection module for FastAPI services.

The live price provider is a process-wide singleton, lazily created on
first use. The value service is built per request around the request's
database session.

Usage in routers:
    from portfolio_history.dependencies import get_value_service

    @router.get("/")
    def endpoint(service: PortfolioValueService = Depends(get_value_service)):
        ...
"""

import logging
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from portfolio_history.database import get_db
from portfolio_history.services.market_data.yahoo import YahooLivePriceProvider
from portfolio_history.services.valuation import (
    PortfolioValueService,
    SqlCalculationJobStore,
    SqlPriceLookup,
    SqlRealizedGainSource,
    SqlTransactionLedger,
    SqlValueHistoryStore,
)

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETONS
# =============================================================================

@lru_cache(maxsize=1)
def get_live_price_provider() -> YahooLivePriceProvider:
    """
    Get the singleton live price provider.

    Shared by every request so retry settings apply globally.
    """
    logger.debug("Initializing singleton YahooLivePriceProvider")
    return YahooLivePriceProvider()


# =============================================================================
# PER-REQUEST SERVICES
# =============================================================================

def get_value_service(
        db: Session = Depends(get_db),
        live_prices: YahooLivePriceProvider = Depends(get_live_price_provider),
) -> PortfolioValueService:
    """Build a PortfolioValueService bound to the request session."""
    return PortfolioValueService(
        ledger=SqlTransactionLedger(db),
        price_lookup=SqlPriceLookup(db),
        store=SqlValueHistoryStore(db),
        realized_gains=SqlRealizedGainSource(db),
        live_prices=live_prices,
        jobs=SqlCalculationJobStore(db),
    )
