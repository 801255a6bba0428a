# backend/tests/routers/test_value_history_api.py
"""
API layer tests for value history endpoints.

These tests verify the HTTP layer using FastAPI's TestClient:
- Correct status codes (200, 400, 404, 409, 422)
- Response JSON structure matches Pydantic schemas
- Error responses use the ErrorDetail shape

Test Methodology:
    1. Override database and live price dependencies
    2. Seed accounts, transactions and prices
    3. Make HTTP requests via TestClient
    4. Assert status codes and response structure
"""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from portfolio_history.database import get_db
from portfolio_history.dependencies import get_live_price_provider
from portfolio_history.main import app
from portfolio_history.models import Account, PriceHistory, Transaction
from tests.conftest import FakeLivePrices

USER = "user-1"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def client(db: Session):
    """TestClient bound to the test session and a fake live price provider."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_live_price_provider] = lambda: FakeLivePrices()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(db: Session):
    account = Account(user_id=USER, name="Broker", account_type="asset", asset_class="Equity")
    db.add(account)
    db.commit()

    db.add_all([
        Transaction(
            user_id=USER, account_id=account.id, transaction_date=date(2024, 1, 1),
            transaction_type="deposit", amount=Decimal("500"),
        ),
        Transaction(
            user_id=USER, account_id=account.id, transaction_date=date(2024, 1, 1),
            transaction_type="stock_buy", amount=Decimal("1000"),
            transaction_metadata={"ticker": "AAPL", "quantity": "10", "price": "100"},
        ),
    ])
    for day, close in [(1, "100"), (2, "105"), (3, "95"), (5, "110")]:
        db.add(PriceHistory(symbol="AAPL", price_date=date(2024, 1, day), close_price=Decimal(close)))
    db.commit()
    return account


def _calculate(client, **body):
    return client.post(f"/users/{USER}/value-history/calculate", json=body)


# =============================================================================
# CALCULATE
# =============================================================================

class TestCalculate:

    def test_calculate_range(self, client, seeded):
        response = _calculate(client, start_date="2024-01-01", end_date="2024-01-05")

        assert response.status_code == 200
        data = response.json()
        assert data["job"]["status"] == "completed"
        assert data["job"]["progress_percentage"] == 100
        assert data["job"]["days_calculated"] == 5
        assert data["result"]["success"] is True
        assert data["result"]["summary"] == "5 days calculated, 0 failed"
        assert data["result"]["price_stats"] == {
            "exact": 4,
            "forward_filled": 1,
            "live_fallback": 0,
            "missing": 0,
        }

    def test_calculate_replay_mode(self, client, seeded):
        response = _calculate(
            client, start_date="2024-01-01", end_date="2024-01-02", rolling=False
        )

        assert response.status_code == 200
        assert response.json()["result"]["days_calculated"] == 2

    def test_inverted_dates_rejected_by_schema(self, client, seeded):
        response = _calculate(client, start_date="2024-01-05", end_date="2024-01-01")

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_user_without_accounts(self, client):
        response = _calculate(client, start_date="2024-01-01", end_date="2024-01-05")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "AccountsNotFoundError"
        assert body["details"]["resource_type"] == "Account"

    def test_resume_completed_job_conflicts(self, client, seeded):
        job_id = _calculate(client, start_date="2024-01-01", end_date="2024-01-02").json()["job"]["id"]

        response = _calculate(client, resume_job_id=job_id)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "InvalidJobTransitionError"
        assert body["details"]["current"] == "completed"

    def test_get_job(self, client, seeded):
        job_id = _calculate(client, start_date="2024-01-01", end_date="2024-01-02").json()["job"]["id"]

        response = client.get(f"/users/{USER}/calculation-jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["start_date"] == "2024-01-01"

    def test_unknown_job(self, client):
        response = client.get(f"/users/{USER}/calculation-jobs/999")

        assert response.status_code == 404
        assert response.json()["error"] == "CalculationJobNotFoundError"


# =============================================================================
# READ
# =============================================================================

class TestHistory:

    def test_stored_history(self, client, seeded):
        _calculate(client, start_date="2024-01-01", end_date="2024-01-05")

        response = client.get(
            f"/users/{USER}/value-history",
            params={"start_date": "2024-01-02", "end_date": "2024-01-04"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert [d["value_date"] for d in data["data"]] == ["2024-01-02", "2024-01-03", "2024-01-04"]
        day2 = data["data"][0]
        assert Decimal(day2["total_value"]) == Decimal("1550")
        assert Decimal(day2["ticker_breakdown"]["AAPL"]["price"]) == Decimal("105")
        assert day2["missing_symbols"] == []

    def test_history_requires_dates(self, client):
        response = client.get(f"/users/{USER}/value-history")

        assert response.status_code == 422

    def test_history_inverted_range(self, client):
        response = client.get(
            f"/users/{USER}/value-history",
            params={"start_date": "2024-01-05", "end_date": "2024-01-01"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidDateRangeError"

    def test_performance(self, client, seeded):
        _calculate(client, start_date="2024-01-01", end_date="2024-01-05")

        response = client.get(
            f"/users/{USER}/value-history/performance",
            params={"start_date": "2024-01-01", "end_date": "2024-01-05"},
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["start_value"]) == Decimal("1500")
        assert Decimal(data["current_value"]) == Decimal("1600")
        assert Decimal(data["all_time_low"]) == Decimal("1450")
        assert data["all_time_low_date"] == "2024-01-03"
        assert data["days"] == 5

    def test_performance_without_data(self, client):
        response = client.get(
            f"/users/{USER}/value-history/performance",
            params={"start_date": "2024-01-01", "end_date": "2024-01-05"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_value_on_date_is_computed_on_demand(self, client, seeded):
        response = client.get(f"/users/{USER}/value-history/2024-01-04")

        assert response.status_code == 200
        data = response.json()
        # Interpolated between 95 (Jan 3) and 110 (Jan 5)
        assert Decimal(data["ticker_breakdown"]["AAPL"]["price"]) == Decimal("102.5")
        assert data["data_quality"] == 0.5

        stored = client.get(
            f"/users/{USER}/value-history",
            params={"start_date": "2024-01-04", "end_date": "2024-01-04"},
        )
        assert stored.json()["count"] == 0

    def test_invalid_date_path(self, client):
        response = client.get(f"/users/{USER}/value-history/not-a-date")

        assert response.status_code == 422


# =============================================================================
# HEALTH
# =============================================================================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["checks"]["database"]["database"] == "sqlite"
