# backend/portfolio_history/services/constants.py
"""
Centralized constants for portfolio value history.

Tunable values (epsilon, cost basis method, prefetch window) live in
config.Settings; this module holds the fixed vocabulary: transaction type
families, price quality scores, and persistence labels.

Usage:
    from portfolio_history.services.constants import (
        BUY_TYPES,
        QUALITY_EXACT,
        CASH_SYMBOL,
    )
"""

from decimal import Decimal


# =============================================================================
# LEDGER VOCABULARY
# =============================================================================

# Label of the per-account cash position
CASH_SYMBOL: str = "CASH"

# Asset class used when an account has none
DEFAULT_ASSET_CLASS: str = "Uncategorized"

# Only accounts of this type hold portfolio value
ASSET_ACCOUNT_TYPE: str = "asset"

# Increase quantity and cost basis of a security
BUY_TYPES: frozenset[str] = frozenset({
    "buy",
    "stock_buy",
    "etf_buy",
    "crypto_buy",
    "bond_purchase",
    "option_buy_call",
    "option_buy_put",
})

# Reduce quantity and relieve cost basis of a security
SELL_TYPES: frozenset[str] = frozenset({
    "sell",
    "stock_sell",
    "etf_sell",
    "crypto_sell",
    "bond_sell",
    "option_sell_call",
    "option_sell_put",
})

# Credit the account's cash, even when a ticker is attached (dividends)
CASH_INCOME_TYPES: frozenset[str] = frozenset({
    "deposit",
    "income",
    "interest",
    "dividend",
    "stock_dividend",
    "etf_dividend",
    "bond_coupon",
})

# Debit the account's cash
CASH_OUTFLOW_TYPES: frozenset[str] = frozenset({
    "withdrawal",
    "expense",
    "fee",
})

SPLIT_TYPE: str = "stock_split"

# Move a security when a ticker is present, otherwise move cash
TRANSFER_IN_TYPE: str = "transfer_in"
TRANSFER_OUT_TYPE: str = "transfer_out"


# =============================================================================
# PRICE QUALITY
# =============================================================================

# Quality scores attached to a price, 1.0 meaning an observed close
QUALITY_EXACT: float = 1.0
QUALITY_ON_OR_BEFORE: float = 0.8
QUALITY_FORWARD_FILLED: float = 0.8
QUALITY_EXTRAPOLATED: float = 0.7
QUALITY_INTERPOLATED: float = 0.5
QUALITY_LIVE_FALLBACK: float = 0.5


# =============================================================================
# PERSISTENCE
# =============================================================================

CALCULATION_METHOD: str = "transaction_replay"

ZERO: Decimal = Decimal("0")

