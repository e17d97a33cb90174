"""
Integration tests for the Lending Engine API
Tests end-to-end workflows using FastAPI TestClient
"""

import inspect
import pytest
from datetime import date
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

import lending_core.api.deps
from lending_core.api import app
from lending_core.api.deps import LendingSystem
from lending_core.engine import LendingEngine
from lending_core.storage import InMemoryStorage


@pytest.fixture
def client():
    """Create a test client with a fresh in-memory lending system"""
    test_system = LendingSystem(
        engine=LendingEngine(InMemoryStorage(), clock=lambda: date(2025, 1, 1))
    )

    # Replace the global lending system for testing
    original_system = lending_core.api.deps.lending_system
    lending_core.api.deps.lending_system = test_system

    yield TestClient(app)

    lending_core.api.deps.lending_system = original_system


def create_daily_loan(client, installment="500.00", periods=30):
    r = client.post("/loans", json={
        "borrower_id": "BORROWER001",
        "terms": {
            "principal_amount": "10000.00",
            "installment_amount": installment,
            "period_type": "Daily",
            "total_periods": periods,
            "schedule_start": "2025-01-01"
        }
    })
    assert r.status_code == 201
    return r.json()["loan_id"]


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "endpoints" in r.json()


class TestLoanEndpoints:
    """Loan creation and read endpoints"""

    def test_create_custom_loan(self, client):
        r = client.post("/loans", json={
            "borrower_id": "BORROWER001",
            "loan_number": "LN-0001",
            "terms": {
                "principal_amount": "10000.00",
                "installment_amount": "1000.00",
                "period_type": "Monthly",
                "total_periods": 12,
                "schedule_start": "2025-01-15",
                "installment_mode": "custom",
                "final_installment_amount": "1500.00"
            }
        })
        assert r.status_code == 201
        data = r.json()
        assert data["loan_number"] == "LN-0001"
        assert data["total_contract_amount"] == "12500.00"
        assert data["aggregates"]["next_due_date"] == "2025-01-15"
        assert data["aggregates"]["status"] == "active"

        r = client.get(f"/loans/{data['loan_id']}/schedule")
        assert r.status_code == 200
        installments = r.json()["installments"]
        assert len(installments) == 12
        assert installments[-1] == {
            "installment_number": 12, "due_date": "2025-12-15", "amount": "1500.00"
        }

    def test_invalid_terms(self, client):
        r = client.post("/loans", json={
            "borrower_id": "BORROWER001",
            "terms": {
                "principal_amount": "100.00",
                "installment_amount": "0",
                "period_type": "Daily",
                "total_periods": 5,
                "schedule_start": "2025-01-01"
            }
        })
        assert r.status_code == 400

    def test_unknown_period_type(self, client):
        r = client.post("/loans", json={
            "borrower_id": "BORROWER001",
            "terms": {
                "principal_amount": "100.00",
                "installment_amount": "10",
                "period_type": "Yearly",
                "total_periods": 5,
                "schedule_start": "2025-01-01"
            }
        })
        assert r.status_code == 400

    def test_get_loan(self, client):
        loan_id = create_daily_loan(client)
        r = client.get(f"/loans/{loan_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["id"] == loan_id
        assert data["terms"]["period_type"] == "Daily"
        assert data["total_contract_amount"] == "15000.00"

    def test_unknown_loan(self, client):
        assert client.get("/loans/missing").status_code == 404
        assert client.get("/loans/missing/payments").status_code == 404
        assert client.post("/loans/missing/recompute").status_code == 404

    def test_recompute_and_behavior(self, client):
        loan_id = create_daily_loan(client)
        client.post("/payments", json={
            "loan_id": loan_id, "amount": "500", "payment_date": "2025-01-01", "status": "Paid"
        })

        r = client.post(f"/loans/{loan_id}/recompute")
        assert r.status_code == 200
        assert r.json()["aggregates"]["fully_completed_count"] == 1

        r = client.get(f"/loans/{loan_id}/behavior")
        assert r.status_code == 200
        assert r.json()["rating"] == "EXCELLENT"


class TestPaymentFlow:
    """End-to-end payment reconciliation"""

    def test_paid_payment(self, client):
        loan_id = create_daily_loan(client)

        r = client.post("/payments", json={
            "loan_id": loan_id,
            "amount": "500.00",
            "payment_date": "2025-01-01",
            "status": "Paid",
            "collector": "AGENT7"
        })
        assert r.status_code == 201
        data = r.json()
        assert data["payment"]["sequence"] == 1
        assert data["aggregates"]["fully_completed_count"] == 1
        assert data["aggregates"]["next_due_date"] == "2025-01-02"
        assert data["chain"] is None

        r = client.get(f"/loans/{loan_id}/payments")
        assert r.json()["count"] == 1

        payment_id = data["payment"]["id"]
        assert client.get(f"/payments/{payment_id}").json()["collector"] == "AGENT7"

    def test_partial_chain_flow(self, client):
        loan_id = create_daily_loan(client)

        first = client.post("/payments", json={
            "loan_id": loan_id, "amount": "200", "payment_date": "2025-01-01", "status": "Partial"
        }).json()
        chain_id = first["payment"]["chain_id"]
        assert chain_id.startswith("partial_")
        assert first["chain"]["suggested_remaining"] == "300.00"

        r = client.get(f"/payments/chains/{chain_id}")
        assert r.status_code == 200
        assert r.json()["member_count"] == 1

        r = client.post(f"/payments/chains/{chain_id}/complete", json={
            "amount": "300", "payment_date": "2025-01-01", "collector": "AGENT7"
        })
        assert r.status_code == 200
        data = r.json()
        assert data["is_chain_complete"] is True
        assert data["chain_total"] == "500.00"
        assert data["aggregates"]["fully_completed_count"] == 1

        r = client.delete(f"/payments/{first['payment']['id']}", params={"delete_chain": "true"})
        assert r.status_code == 200
        assert r.json()["deleted_count"] == 2
        assert r.json()["deleted_chain_id"] == chain_id
        assert r.json()["aggregates"]["fully_completed_count"] == 0

    def test_hinted_partial(self, client):
        loan_id = create_daily_loan(client)

        r = client.post("/payments", json={
            "loan_id": loan_id, "amount": "100", "payment_date": "2025-01-01",
            "status": "Partial", "chain": {"installment_number": 3}
        })
        assert r.status_code == 201
        assert r.json()["payment"]["expected_due_date"] == "2025-01-03"

    def test_complete_non_partial_chain(self, client):
        loan_id = create_daily_loan(client)
        paid = client.post("/payments", json={
            "loan_id": loan_id, "amount": "500", "payment_date": "2025-01-01",
            "status": "Paid", "chain": {"installment_number": 1}
        }).json()

        r = client.post(f"/payments/chains/{paid['payment']['chain_id']}/complete", json={
            "amount": "10", "payment_date": "2025-01-01"
        })
        assert r.status_code == 400

    def test_unknown_chain(self, client):
        assert client.get("/payments/chains/partial_missing").status_code == 404

    def test_advance_payments(self, client):
        loan_id = create_daily_loan(client, installment="100.00")

        r = client.post("/payments/advance", json={
            "loan_id": loan_id,
            "from_date": "2025-01-01",
            "to_date": "2025-01-04",
            "amount_per_installment": "100"
        })
        assert r.status_code == 201
        data = r.json()
        assert data["total_installments"] == 4
        assert data["total_amount"] == "400.00"
        assert [p["payment_date"] for p in data["payments"]] == [
            "2025-01-01", "2025-01-02", "2025-01-03", "2025-01-04"
        ]
        assert all(p["status"] == "Advance" for p in data["payments"])

    def test_advance_invalid_range(self, client):
        loan_id = create_daily_loan(client)
        r = client.post("/payments/advance", json={
            "loan_id": loan_id,
            "from_date": "2025-01-04",
            "to_date": "2025-01-01",
            "amount_per_installment": "100"
        })
        assert r.status_code == 400

    def test_edit_payment(self, client):
        loan_id = create_daily_loan(client)
        payment = client.post("/payments", json={
            "loan_id": loan_id, "amount": "500", "payment_date": "2025-01-01", "status": "Paid"
        }).json()["payment"]

        r = client.put(f"/payments/{payment['id']}", json={
            "amount": "250", "status": "Partial", "payment_date": "2025-01-02"
        })
        assert r.status_code == 200
        data = r.json()
        assert data["payment"]["amount"] == "250.00"
        assert data["payment"]["notes"].startswith("Edited: Amount 500.00→250.00, Status Paid→Partial")
        assert data["aggregates"]["fully_completed_count"] == 0

    def test_validation_errors(self, client):
        loan_id = create_daily_loan(client)

        r = client.post("/payments", json={
            "loan_id": loan_id, "amount": "0", "payment_date": "2025-01-01", "status": "Paid"
        })
        assert r.status_code == 400

        r = client.post("/payments", json={
            "loan_id": loan_id, "amount": "10", "payment_date": "2025-01-01", "status": "Bogus"
        })
        assert r.status_code == 400

        r = client.post("/payments", json={
            "loan_id": "missing", "amount": "10", "payment_date": "2025-01-01", "status": "Paid"
        })
        assert r.status_code == 404

    def test_missing_payment(self, client):
        assert client.get("/payments/missing").status_code == 404
        assert client.put("/payments/missing", json={"amount": "1", "status": "Paid"}).status_code == 404
        assert client.delete("/payments/missing").status_code == 404


class TestLoanQueries:
    """Loan listing, chain listing and schedule position"""

    def test_list_loans(self, client):
        first = create_daily_loan(client)
        create_daily_loan(client)

        r = client.get("/loans")
        assert r.status_code == 200
        assert r.json()["count"] == 2

        r = client.get("/loans", params={"status": "active"})
        assert r.json()["count"] == 2
        assert first in [loan["loan_id"] for loan in r.json()["loans"]]

        assert client.get("/loans", params={"status": "overdue"}).json()["count"] == 0

    def test_list_loans_unknown_status(self, client):
        assert client.get("/loans", params={"status": "closed"}).status_code == 400

    def test_loan_chains(self, client):
        loan_id = create_daily_loan(client)
        client.post("/payments", json={
            "loan_id": loan_id, "amount": "200", "payment_date": "2025-01-01", "status": "Partial"
        })

        r = client.get(f"/loans/{loan_id}/chains")
        assert r.status_code == 200
        data = r.json()
        assert data["count"] == 1
        assert data["chains"][0]["installment_number"] == 1
        assert data["chains"][0]["suggested_remaining"] == "300.00"

        assert client.get("/loans/missing/chains").status_code == 404

    def test_schedule_current_installment(self, client):
        loan_id = create_daily_loan(client)

        r = client.get(f"/loans/{loan_id}/schedule", params={"as_of": "2025-01-05"})
        assert r.json()["current_installment"] == 5

        r = client.get(f"/loans/{loan_id}/schedule")
        assert r.json()["current_installment"] is None


class TestRouteHandlers:
    """Engine calls block on locks and retries, so routes must run in the threadpool"""

    def test_resource_routes_are_synchronous(self):
        routes = [route for route in app.routes
                  if isinstance(route, APIRoute) and route.path.startswith(("/loans", "/payments"))]

        assert routes
        for route in routes:
            assert not inspect.iscoroutinefunction(route.endpoint), route.path
