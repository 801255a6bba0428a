# backend/tests/services/valuation/test_reconstructor.py
"""
Unit tests for HoldingsReconstructor.

Key Properties Tested:
1. Buys and sells keep quantity and cost basis consistent
2. Cash moves by magnitude, with the type giving direction
3. Quantities at or below epsilon collapse to zero
4. Over-sells and incomplete records are anomalies, never fatal
5. FIFO and average cost relieve different amounts on the same ledger
6. Rolling advance() matches point-in-time reconstruct()
"""

from datetime import date
from decimal import Decimal

import pytest

from portfolio_history.services.valuation.reconstructor import (
    AverageCostStrategy,
    FifoLotStrategy,
    HoldingsReconstructor,
    cost_basis_strategy,
    sort_transactions,
)
from portfolio_history.services.valuation.types import CashPosition, SecurityPosition
from tests.conftest import BROKER, SAVINGS, txn

EPS = Decimal("0.0001")
ACCOUNTS = {BROKER.id: BROKER, SAVINGS.id: SAVINGS}


def _average() -> HoldingsReconstructor:
    return HoldingsReconstructor(AverageCostStrategy(), EPS)


def _fifo() -> HoldingsReconstructor:
    return HoldingsReconstructor(FifoLotStrategy(), EPS)


def _securities(positions) -> dict[str, SecurityPosition]:
    return {p.symbol: p for p in positions if isinstance(p, SecurityPosition)}


def _cash(positions) -> list[CashPosition]:
    return [p for p in positions if isinstance(p, CashPosition)]


# =============================================================================
# BUYS AND SELLS
# =============================================================================

class TestBuySell:
    """Quantity and cost basis through buys and sells."""

    def test_partial_sell_keeps_average_cost(self):
        """Buy 10 @ 100 then sell 4 leaves 6 units with cost basis 600."""
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "1000", "AAPL", "10", "100"),
            txn(2, date(2024, 1, 10), "stock_sell", "480", "AAPL", "4", "120"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 10))

        assert len(positions) == 1
        aapl = positions[0]
        assert isinstance(aapl, SecurityPosition)
        assert aapl.symbol == "AAPL"
        assert aapl.quantity == Decimal("6")
        assert aapl.cost_basis == Decimal("600")
        assert aapl.average_cost == Decimal("100")

    def test_cutoff_excludes_later_transactions(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "1000", "AAPL", "10"),
            txn(2, date(2024, 1, 10), "stock_sell", "480", "AAPL", "4"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 9))

        assert _securities(positions)["AAPL"].quantity == Decimal("10")

    def test_buy_without_amount_uses_quantity_times_price(self):
        ledger = [txn(1, date(2024, 1, 1), "buy", "0", "MSFT", "3", "50")]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 1))

        assert _securities(positions)["MSFT"].cost_basis == Decimal("150")

    def test_ticker_is_normalized(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "100", " aapl ", "1"),
            txn(2, date(2024, 1, 2), "stock_buy", "100", "AAPL", "1"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 2))

        assert list(_securities(positions)) == ["AAPL"]
        assert _securities(positions)["AAPL"].quantity == Decimal("2")

    def test_same_symbol_in_two_accounts_stays_separate(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "100", "AAPL", "1", account_id=1),
            txn(2, date(2024, 1, 1), "stock_buy", "200", "AAPL", "2", account_id=2),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 1))

        by_account = {p.account_id: p for p in positions}
        assert by_account[1].quantity == Decimal("1")
        assert by_account[2].quantity == Decimal("2")
        assert by_account[2].account_name == "Savings"

    def test_sell_below_epsilon_closes_position(self):
        """A residual of 0.00005 units is dust and disappears with its cost."""
        reconstructor = _average()
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "100", "AAPL", "1"),
            txn(2, date(2024, 1, 2), "stock_sell", "99", "AAPL", "0.99995"),
        ]
        state = reconstructor.new_state()
        reconstructor.advance(state, ledger, 0, date(2024, 1, 2), ACCOUNTS)

        holding = state.securities[(1, "AAPL")]
        assert holding.quantity == Decimal("0")
        assert holding.cost_basis == Decimal("0")
        assert reconstructor.snapshot(state) == []

    def test_oversell_is_anomaly_and_closes_position(self):
        reconstructor = _average()
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "500", "AAPL", "5"),
            txn(2, date(2024, 1, 2), "stock_sell", "800", "AAPL", "8"),
        ]
        state = reconstructor.new_state()
        reconstructor.advance(state, ledger, 0, date(2024, 1, 2), ACCOUNTS)

        assert reconstructor.snapshot(state) == []
        assert len(state.anomalies) == 1
        assert "2024-01-02: transaction 2" in state.anomalies[0]

    def test_oversell_within_epsilon_is_not_anomaly(self):
        reconstructor = _average()
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "500", "AAPL", "5"),
            txn(2, date(2024, 1, 2), "stock_sell", "500", "AAPL", "5.00005"),
        ]
        state = reconstructor.new_state()
        reconstructor.advance(state, ledger, 0, date(2024, 1, 2), ACCOUNTS)

        assert state.anomalies == []
        assert reconstructor.snapshot(state) == []

    def test_transfers_with_ticker_move_securities(self):
        ledger = [
            txn(1, date(2024, 1, 1), "transfer_in", "300", "VTI", "3"),
            txn(2, date(2024, 1, 2), "transfer_out", "0", "VTI", "1"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 2))

        vti = _securities(positions)["VTI"]
        assert vti.quantity == Decimal("2")
        assert vti.cost_basis == Decimal("200")
        assert _cash(positions) == []


# =============================================================================
# CASH
# =============================================================================

class TestCash:
    """Cash balances per account."""

    def test_deposit_then_fee(self):
        """Deposit 500 then fee 20 leaves a 480 cash holding."""
        ledger = [
            txn(1, date(2024, 1, 1), "deposit", "500"),
            txn(2, date(2024, 1, 5), "fee", "20"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 5))

        (cash,) = _cash(positions)
        assert cash.symbol == "CASH"
        assert cash.quantity == Decimal("480")
        assert cash.cost_basis == Decimal("480")

    def test_sign_of_amount_is_ignored(self):
        ledger = [
            txn(1, date(2024, 1, 1), "deposit", "-500"),
            txn(2, date(2024, 1, 2), "withdrawal", "-100"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 2))

        assert _cash(positions)[0].amount == Decimal("400")

    def test_dividend_with_ticker_credits_cash(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "1000", "AAPL", "10"),
            txn(2, date(2024, 2, 1), "dividend", "12.50", "AAPL"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 2, 1))

        assert _cash(positions)[0].amount == Decimal("12.50")
        assert _securities(positions)["AAPL"].quantity == Decimal("10")

    def test_overdraft_floors_at_zero(self):
        reconstructor = _average()
        ledger = [
            txn(1, date(2024, 1, 1), "deposit", "50"),
            txn(2, date(2024, 1, 2), "withdrawal", "80"),
        ]
        state = reconstructor.new_state()
        reconstructor.advance(state, ledger, 0, date(2024, 1, 2), ACCOUNTS)

        assert state.cash[1] == Decimal("0")
        assert _cash(reconstructor.snapshot(state)) == []
        assert len(state.anomalies) == 1

    def test_cash_listed_before_securities(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "100", "AAPL", "1"),
            txn(2, date(2024, 1, 1), "deposit", "10"),
        ]

        positions = _average().reconstruct(ledger, ACCOUNTS, date(2024, 1, 1))

        assert isinstance(positions[0], CashPosition)
        assert isinstance(positions[1], SecurityPosition)


# =============================================================================
# ANOMALIES
# =============================================================================

class TestAnomalies:
    """Bad records are skipped and recorded, never raised."""

    @pytest.mark.parametrize("record", [
        txn(1, date(2024, 1, 1), "stock_buy", "100", None, "1"),
        txn(1, date(2024, 1, 1), "stock_buy", "100", "AAPL", None),
        txn(1, date(2024, 1, 1), "stock_sell", "100", "AAPL", None),
        txn(1, date(2024, 1, 1), "stock_split", "0", "AAPL", "1"),
        txn(1, date(2024, 1, 1), "deposit", "100", account_id=99),
        txn(1, date(2024, 1, 1), "deposit", "100", account_id=None),
    ])
    def test_record_is_skipped(self, record):
        reconstructor = _average()
        state = reconstructor.new_state()

        reconstructor.advance(state, [record], 0, date(2024, 1, 1), ACCOUNTS)

        assert len(state.anomalies) == 1
        assert state.applied == 1
        assert reconstructor.snapshot(state) == []

    def test_unknown_type_is_ignored_silently(self):
        reconstructor = _average()
        state = reconstructor.new_state()

        reconstructor.advance(
            state, [txn(1, date(2024, 1, 1), "memo", "5")], 0, date(2024, 1, 1), ACCOUNTS
        )

        assert state.anomalies == []
        assert reconstructor.snapshot(state) == []


# =============================================================================
# COST BASIS STRATEGIES
# =============================================================================

class TestCostBasisStrategies:
    """Average cost and FIFO on the same ledger."""

    LEDGER = [
        txn(1, date(2024, 1, 1), "stock_buy", "1000", "AAPL", "10"),
        txn(2, date(2024, 2, 1), "stock_buy", "2000", "AAPL", "10"),
        txn(3, date(2024, 3, 1), "stock_sell", "2700", "AAPL", "15"),
    ]

    def test_average_cost(self):
        positions = _average().reconstruct(self.LEDGER, ACCOUNTS, date(2024, 3, 1))

        aapl = _securities(positions)["AAPL"]
        assert aapl.quantity == Decimal("5")
        assert aapl.cost_basis == Decimal("750")

    def test_fifo_consumes_oldest_lot_first(self):
        positions = _fifo().reconstruct(self.LEDGER, ACCOUNTS, date(2024, 3, 1))

        aapl = _securities(positions)["AAPL"]
        assert aapl.quantity == Decimal("5")
        assert aapl.cost_basis == Decimal("1000")

    def test_split_keeps_cost_basis(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "1000", "NVDA", "10"),
            txn(2, date(2024, 6, 10), "stock_split", "0", "NVDA", "90"),
        ]

        for reconstructor in (_average(), _fifo()):
            positions = reconstructor.reconstruct(ledger, ACCOUNTS, date(2024, 6, 10))
            nvda = _securities(positions)["NVDA"]
            assert nvda.quantity == Decimal("100")
            assert nvda.cost_basis == Decimal("1000")

    def test_fifo_lots_scale_with_split(self):
        ledger = [
            txn(1, date(2024, 1, 1), "stock_buy", "1000", "NVDA", "10"),
            txn(2, date(2024, 6, 10), "stock_split", "0", "NVDA", "10"),
            txn(3, date(2024, 6, 11), "stock_sell", "0", "NVDA", "5"),
        ]

        positions = _fifo().reconstruct(ledger, ACCOUNTS, date(2024, 6, 11))

        nvda = _securities(positions)["NVDA"]
        assert nvda.quantity == Decimal("15")
        assert nvda.cost_basis == Decimal("750")

    def test_strategy_factory(self):
        assert isinstance(cost_basis_strategy("FIFO"), FifoLotStrategy)
        assert isinstance(cost_basis_strategy("average"), AverageCostStrategy)

    def test_strategy_factory_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown cost basis method"):
            cost_basis_strategy("lifo")


# =============================================================================
# ROLLING STATE
# =============================================================================

class TestRollingState:
    """advance() applies only new transactions and matches reconstruct()."""

    def test_ledger_order_kept_on_same_date(self):
        ledger = [
            txn(5, date(2024, 1, 2), "stock_sell", "0", "AAPL", "1"),
            txn(3, date(2024, 1, 1), "stock_buy", "100", "AAPL", "1"),
            txn(4, date(2024, 1, 2), "stock_buy", "100", "AAPL", "1"),
        ]

        ordered = sort_transactions(ledger)

        assert [t.id for t in ordered] == [3, 5, 4]

    def test_advance_matches_reconstruct_every_day(self):
        ledger = [
            txn(1, date(2024, 1, 1), "deposit", "1000"),
            txn(2, date(2024, 1, 2), "stock_buy", "500", "AAPL", "5"),
            txn(3, date(2024, 1, 4), "stock_sell", "300", "AAPL", "2"),
            txn(4, date(2024, 1, 4), "fee", "5"),
            txn(5, date(2024, 1, 6), "stock_buy", "200", "MSFT", "1"),
        ]
        reconstructor = _average()
        ordered = sort_transactions(ledger)
        state = reconstructor.new_state()
        cursor = 0

        for day in range(1, 8):
            on_date = date(2024, 1, day)
            cursor = reconstructor.advance(state, ordered, cursor, on_date, ACCOUNTS)
            assert reconstructor.snapshot(state) == reconstructor.reconstruct(ledger, ACCOUNTS, on_date)

        assert cursor == len(ordered)
        assert state.applied == len(ordered)
        assert state.symbols == {"AAPL", "MSFT"}
