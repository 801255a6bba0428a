# backend/portfolio_history/services/valuation/reconstructor.py
"""
Holdings Reconstructor - replays a ledger into positions.

Two ways to use it:

1. Point-in-time (arbitrary date):
       positions = reconstructor.reconstruct(transactions, accounts, cutoff)
   Rebuilds everything from an empty state. Used for single-date valuation
   and for replay-mode range runs.

2. Rolling state (range runs):
       state = reconstructor.new_state()
       cursor = 0
       for day in days:
           cursor = reconstructor.advance(state, txns, cursor, day, accounts)
           positions = reconstructor.snapshot(state)
   Each call applies only the transactions newly in range, so a range of D
   days over T transactions costs O(D + T) instead of O(D * T).

Ledger rules:
- Transactions are applied in ascending date order; ties keep ledger order.
- Amounts are applied by magnitude. The transaction type gives direction.
- A record with an unknown account, or without the ticker/quantity its type
  needs, is skipped and recorded as an anomaly. Never fatal.
- Selling more than is held is tolerated: recorded as an anomaly and the
  position closes at zero.
- After any reduction, a quantity at or below epsilon becomes exactly zero
  together with its cost basis.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol

from portfolio_history.config import settings
from portfolio_history.services.constants import (
    BUY_TYPES,
    SELL_TYPES,
    CASH_INCOME_TYPES,
    CASH_OUTFLOW_TYPES,
    SPLIT_TYPE,
    TRANSFER_IN_TYPE,
    TRANSFER_OUT_TYPE,
    ZERO,
)
from portfolio_history.services.valuation.types import (
    AccountInfo,
    CashPosition,
    Position,
    SecurityPosition,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATE
# =============================================================================

@dataclass
class Lot:
    """An open purchase: remaining units and their remaining cost."""
    quantity: Decimal
    cost: Decimal


@dataclass
class Holding:
    """Mutable position aggregate for one (account, symbol)."""
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO
    lots: list[Lot] = field(default_factory=list)

    def close(self) -> None:
        self.quantity = ZERO
        self.cost_basis = ZERO
        self.lots.clear()


@dataclass
class HoldingsState:
    """
    Rolling reconstruction state.

    Attributes:
        securities: (account_id, symbol) -> Holding, in first-seen order
        cash: account_id -> balance, in first-seen order
        accounts: account_id -> AccountInfo for every account seen
        anomalies: Skipped or corrected ledger records, human readable
        applied: Number of transactions applied (skipped ones included)
    """
    securities: dict[tuple[int, str], Holding] = field(default_factory=dict)
    cash: dict[int, Decimal] = field(default_factory=dict)
    accounts: dict[int, AccountInfo] = field(default_factory=dict)
    anomalies: list[str] = field(default_factory=list)
    applied: int = 0

    @property
    def symbols(self) -> set[str]:
        return {symbol for (_, symbol) in self.securities}


# =============================================================================
# COST BASIS STRATEGIES
# =============================================================================

class CostBasisStrategy(Protocol):
    """How cost enters a holding on buys and leaves it on sells."""

    name: str

    def add(self, holding: Holding, quantity: Decimal, cost: Decimal) -> None:
        ...

    def relieve(self, holding: Holding, quantity: Decimal) -> Decimal:
        """Remove quantity units; return the cost basis removed."""
        ...

    def split(self, holding: Holding, delta: Decimal) -> None:
        ...


class AverageCostStrategy:
    """
    Average-cost accounting.

    A sell of q units relieves q * (cost_basis / quantity_before), so the
    remaining units keep the same average cost.
    """

    name = "average"

    def add(self, holding: Holding, quantity: Decimal, cost: Decimal) -> None:
        holding.quantity += quantity
        holding.cost_basis += cost

    def relieve(self, holding: Holding, quantity: Decimal) -> Decimal:
        if holding.quantity <= ZERO:
            return ZERO
        relieved = quantity * (holding.cost_basis / holding.quantity)
        holding.quantity -= quantity
        holding.cost_basis -= relieved
        return relieved

    def split(self, holding: Holding, delta: Decimal) -> None:
        holding.quantity += delta


class FifoLotStrategy:
    """
    First-in-first-out lot accounting.

    Every buy opens a lot; sells consume the oldest lots first, so the
    relieved cost is the cost of the earliest purchases still open.
    """

    name = "fifo"

    def add(self, holding: Holding, quantity: Decimal, cost: Decimal) -> None:
        holding.quantity += quantity
        holding.cost_basis += cost
        holding.lots.append(Lot(quantity=quantity, cost=cost))

    def relieve(self, holding: Holding, quantity: Decimal) -> Decimal:
        remaining = quantity
        relieved = ZERO
        while remaining > ZERO and holding.lots:
            lot = holding.lots[0]
            if lot.quantity <= remaining:
                relieved += lot.cost
                remaining -= lot.quantity
                holding.lots.pop(0)
            else:
                part = lot.cost * remaining / lot.quantity
                lot.cost -= part
                lot.quantity -= remaining
                relieved += part
                remaining = ZERO
        holding.quantity -= quantity
        holding.cost_basis -= relieved
        return relieved

    def split(self, holding: Holding, delta: Decimal) -> None:
        # Lots keep their cost; units scale with the split ratio
        if holding.quantity > ZERO:
            ratio = (holding.quantity + delta) / holding.quantity
            for lot in holding.lots:
                lot.quantity *= ratio
        holding.quantity += delta


_STRATEGIES: dict[str, type[AverageCostStrategy] | type[FifoLotStrategy]] = {
    AverageCostStrategy.name: AverageCostStrategy,
    FifoLotStrategy.name: FifoLotStrategy,
}


def cost_basis_strategy(method: str) -> CostBasisStrategy:
    """
    Build the strategy named by method ("average" or "fifo").

    Raises:
        ValueError: If method is unknown
    """
    try:
        return _STRATEGIES[method.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown cost basis method: '{method}'. "
            f"Valid options: {', '.join(_STRATEGIES)}"
        ) from None


# =============================================================================
# RECONSTRUCTOR
# =============================================================================

class HoldingsReconstructor:
    """
    Replays ledger transactions into cash and security positions.

    Attributes:
        epsilon: Quantities at or below this are treated as zero
        strategy: Cost basis strategy applied on buys, sells and splits
    """

    def __init__(
            self,
            strategy: CostBasisStrategy | None = None,
            epsilon: Decimal | None = None,
    ) -> None:
        self.strategy = strategy or cost_basis_strategy(settings.cost_basis_method)
        self.epsilon = epsilon if epsilon is not None else settings.quantity_epsilon

    # -------------------------------------------------------------------------
    # Point-in-time
    # -------------------------------------------------------------------------

    def reconstruct(
            self,
            transactions: Sequence[TransactionRecord],
            accounts: Mapping[int, AccountInfo],
            cutoff_date: date,
    ) -> list[Position]:
        """
        Rebuild positions as of cutoff_date (inclusive) from an empty state.

        Args:
            transactions: Ledger entries in ledger order (any date order)
            accounts: Known accounts by id
            cutoff_date: Last transaction date to apply

        Returns:
            Positions with quantity above epsilon
        """
        ordered = sort_transactions(transactions)
        state = self.new_state()
        self.advance(state, ordered, 0, cutoff_date, accounts)
        return self.snapshot(state)

    # -------------------------------------------------------------------------
    # Rolling state
    # -------------------------------------------------------------------------

    def new_state(self) -> HoldingsState:
        return HoldingsState()

    def advance(
            self,
            state: HoldingsState,
            transactions: Sequence[TransactionRecord],
            cursor: int,
            through_date: date,
            accounts: Mapping[int, AccountInfo],
    ) -> int:
        """
        Apply transactions[cursor:] dated on or before through_date.

        Args:
            state: State to mutate
            transactions: Ledger entries already sorted by sort_transactions
            cursor: Index of the first unapplied transaction
            through_date: Inclusive cutoff
            accounts: Known accounts by id

        Returns:
            Index of the first transaction still in the future
        """
        count = len(transactions)
        while cursor < count:
            txn = transactions[cursor]
            if txn.transaction_date > through_date:
                break
            self.apply_transaction(state, txn, accounts)
            cursor += 1
        return cursor

    def apply_transaction(
            self,
            state: HoldingsState,
            txn: TransactionRecord,
            accounts: Mapping[int, AccountInfo],
    ) -> None:
        """Apply one ledger entry to state (mutates state)."""
        state.applied += 1

        account = accounts.get(txn.account_id) if txn.account_id is not None else None
        if account is None:
            self._anomaly(state, txn, f"unknown account {txn.account_id}")
            return
        state.accounts.setdefault(account.id, account)

        txn_type = (txn.transaction_type or "").strip().lower()
        ticker = _normalize_ticker(txn.ticker)
        amount = abs(txn.amount or ZERO)

        if txn_type in BUY_TYPES or (txn_type == TRANSFER_IN_TYPE and ticker):
            self._buy(state, txn, account.id, ticker, amount)
        elif txn_type in SELL_TYPES or (txn_type == TRANSFER_OUT_TYPE and ticker):
            self._sell(state, txn, account.id, ticker)
        elif txn_type in CASH_INCOME_TYPES or txn_type == TRANSFER_IN_TYPE:
            self._move_cash(state, txn, account.id, amount)
        elif txn_type in CASH_OUTFLOW_TYPES or txn_type == TRANSFER_OUT_TYPE:
            self._move_cash(state, txn, account.id, -amount)
        elif txn_type == SPLIT_TYPE:
            self._split(state, txn, account.id, ticker)
        else:
            logger.debug(f"Ignoring transaction {txn.id} of type '{txn.transaction_type}'")

    def snapshot(self, state: HoldingsState) -> list[Position]:
        """
        Current positions above epsilon: cash first, then securities,
        each in first-seen order.
        """
        positions: list[Position] = []

        for account_id, amount in state.cash.items():
            if amount > self.epsilon:
                account = state.accounts[account_id]
                positions.append(CashPosition(
                    account_id=account_id,
                    account_name=account.name,
                    asset_class=account.asset_class,
                    amount=amount,
                ))

        for (account_id, symbol), holding in state.securities.items():
            if holding.quantity > self.epsilon:
                account = state.accounts[account_id]
                positions.append(SecurityPosition(
                    account_id=account_id,
                    account_name=account.name,
                    asset_class=account.asset_class,
                    symbol=symbol,
                    quantity=holding.quantity,
                    cost_basis=holding.cost_basis,
                ))

        return positions

    # -------------------------------------------------------------------------
    # Transaction effects
    # -------------------------------------------------------------------------

    def _buy(
            self,
            state: HoldingsState,
            txn: TransactionRecord,
            account_id: int,
            ticker: str | None,
            amount: Decimal,
    ) -> None:
        quantity = abs(txn.quantity) if txn.quantity is not None else None
        if not ticker or not quantity:
            self._anomaly(state, txn, "buy without ticker or quantity")
            return

        cost = amount
        if cost == ZERO and txn.price is not None:
            cost = quantity * abs(txn.price)

        holding = state.securities.setdefault((account_id, ticker), Holding())
        self.strategy.add(holding, quantity, cost)

    def _sell(
            self,
            state: HoldingsState,
            txn: TransactionRecord,
            account_id: int,
            ticker: str | None,
    ) -> None:
        quantity = abs(txn.quantity) if txn.quantity is not None else None
        if not ticker or not quantity:
            self._anomaly(state, txn, "sell without ticker or quantity")
            return

        holding = state.securities.setdefault((account_id, ticker), Holding())
        if quantity > holding.quantity + self.epsilon:
            self._anomaly(
                state, txn,
                f"sells {quantity} {ticker} but only {holding.quantity} held; closing position",
            )
            holding.close()
            return

        self.strategy.relieve(holding, quantity)
        if holding.quantity <= self.epsilon:
            holding.close()

    def _split(
            self,
            state: HoldingsState,
            txn: TransactionRecord,
            account_id: int,
            ticker: str | None,
    ) -> None:
        if not ticker or txn.quantity is None:
            self._anomaly(state, txn, "split without ticker or quantity")
            return

        holding = state.securities.get((account_id, ticker))
        if holding is None or holding.quantity <= self.epsilon:
            self._anomaly(state, txn, f"split of {ticker} with no open position")
            return

        self.strategy.split(holding, txn.quantity)
        if holding.quantity <= self.epsilon:
            holding.close()

    def _move_cash(
            self,
            state: HoldingsState,
            txn: TransactionRecord,
            account_id: int,
            delta: Decimal,
    ) -> None:
        balance = state.cash.get(account_id, ZERO) + delta
        if balance < -self.epsilon:
            self._anomaly(state, txn, f"cash balance would drop to {balance}; flooring at zero")
        if balance <= self.epsilon:
            balance = ZERO
        state.cash[account_id] = balance

    def _anomaly(self, state: HoldingsState, txn: TransactionRecord, reason: str) -> None:
        message = f"{txn.transaction_date.isoformat()}: transaction {txn.id} ({txn.transaction_type}) {reason}"
        state.anomalies.append(message)
        logger.warning(f"Ledger anomaly - {message}")


# =============================================================================
# HELPERS
# =============================================================================

def sort_transactions(transactions: Sequence[TransactionRecord]) -> list[TransactionRecord]:
    """Ascending by date; sorted() is stable so ties keep ledger order."""
    return sorted(transactions, key=lambda txn: txn.transaction_date)


def _normalize_ticker(ticker: str | None) -> str | None:
    if ticker is None:
        return None
    ticker = ticker.strip().upper()
    return ticker or None
