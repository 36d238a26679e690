"""
Integration tests for the Student Loans API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from student_loans.api import create_app
from student_loans.api.dependencies import LoanSystem
from student_loans.storage import InMemoryStorage


@pytest.fixture
def client(system):
    """Create a test client backed by in-memory storage"""
    return TestClient(create_app(system))


def register(client, email="ada@example.edu", name="Ada Student"):
    r = client.post("/api/auth/register", json={
        "name": name,
        "email": email,
        "phone": "+441234567890",
        "password": "correct-horse",
        "university": "Example University"
    })
    assert r.status_code == 200
    return r.json()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def borrower(client):
    return register(client)


@pytest.fixture
def admin_token(client, system):
    system.user_manager.create_admin("Admin", "admin@example.edu", "-", "admin-password")
    r = client.post("/api/auth/login", json={"email": "admin@example.edu", "password": "admin-password"})
    assert r.status_code == 200
    return r.json()["token"]


def apply_for_loan(client, borrower, amount="300.00"):
    r = client.post("/api/reservations", headers=auth(borrower["token"]), json={
        "customer_id": borrower["user"]["customer_id"],
        "loan_type_id": "tuition",
        "start_date": "2026-09-01",
        "end_date": "2027-06-30",
        "amount": amount,
        "terms_agreed": True,
        "purpose": "Tuition fees"
    })
    assert r.status_code == 200
    return r.json()


@pytest.fixture
def approved_loan(client, borrower, admin_token):
    loan = apply_for_loan(client, borrower)
    r = client.put(
        f"/api/admin/reservations/{loan['loan_id']}",
        headers=auth(admin_token),
        json={"status": "approved"}
    )
    assert r.status_code == 200
    return r.json()


def repay(client, borrower, loan_id, amount, customer_id=None):
    return client.post("/api/repayments", headers=auth(borrower["token"]), json={
        "customer_id": customer_id or borrower["user"]["customer_id"],
        "loan_id": loan_id,
        "amount": amount
    })


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Student Loans API"
        assert "endpoints" in data


class TestAuthFlow:
    """Registration, login and bearer token checks"""

    def test_register_returns_token(self, client):
        data = register(client)
        assert data["token"]
        assert data["user"]["email"] == "ada@example.edu"
        assert data["user"]["role"] == "user"
        assert data["user"]["customer_id"]
        assert "password_hash" not in data["user"]

    def test_duplicate_registration(self, client, borrower):
        r = client.post("/api/auth/register", json={
            "name": "Ada", "email": "ada@example.edu", "phone": "1", "password": "another-password"
        })
        assert r.status_code == 400
        assert r.json() == {"error": "Email already exists", "category": "InvalidRequest"}

    def test_login(self, client, borrower):
        r = client.post("/api/auth/login", json={"email": "ada@example.edu", "password": "correct-horse"})
        assert r.status_code == 200
        assert r.json()["user"]["id"] == borrower["user"]["id"]

    def test_login_wrong_password(self, client, borrower):
        r = client.post("/api/auth/login", json={"email": "ada@example.edu", "password": "nope-nope"})
        assert r.status_code == 401
        assert r.json()["category"] == "AuthenticationFailed"

    def test_missing_token(self, client):
        r = client.get("/api/reservations")
        assert r.status_code == 401
        assert r.json() == {"error": "No token provided", "category": "AuthenticationFailed"}

    def test_invalid_token(self, client):
        r = client.get("/api/reservations", headers=auth("garbage"))
        assert r.status_code == 401
        assert r.json()["error"] == "Invalid token"


class TestReservationFlow:
    """Loan applications and admin review"""

    def test_loan_types(self, client):
        r = client.get("/api/loan-types")
        assert r.status_code == 200
        assert {t["id"] for t in r.json()} == {"tuition", "accommodation", "books", "living"}

    def test_create_reservation(self, client, borrower):
        loan = apply_for_loan(client, borrower)
        assert loan["status"] == "pending"
        assert loan["balance"] == "300.00"
        assert loan["customer_id"] == borrower["user"]["customer_id"]

    def test_create_reservation_for_another_customer(self, client, borrower):
        other = register(client, email="bob@example.edu", name="Bob")
        r = client.post("/api/reservations", headers=auth(borrower["token"]), json={
            "customer_id": other["user"]["customer_id"],
            "loan_type_id": "tuition",
            "start_date": "2026-09-01",
            "end_date": "2027-06-30",
            "amount": "100",
            "terms_agreed": True
        })
        assert r.status_code == 403
        assert r.json()["category"] == "Unauthorized"

    def test_create_reservation_missing_fields(self, client, borrower):
        r = client.post("/api/reservations", headers=auth(borrower["token"]), json={
            "customer_id": borrower["user"]["customer_id"]
        })
        assert r.status_code == 400
        assert r.json()["category"] == "InvalidRequest"

    def test_list_and_dashboard(self, client, borrower):
        loan = apply_for_loan(client, borrower)

        r = client.get("/api/reservations", headers=auth(borrower["token"]))
        assert r.status_code == 200
        assert [row["loan_id"] for row in r.json()] == [loan["loan_id"]]

        r = client.get("/api/user/dashboard", headers=auth(borrower["token"]))
        row = r.json()["dashboard_table"][0]
        assert row["loan_type"] == "Tuition"
        assert row["customer_name"] == "Ada Student"

    def test_admin_review(self, client, borrower, admin_token):
        loan = apply_for_loan(client, borrower)

        r = client.put(
            f"/api/admin/reservations/{loan['loan_id']}",
            headers=auth(admin_token),
            json={"status": "declined"}
        )
        assert r.status_code == 200
        assert r.json()["status"] == "declined"

        r = client.put(
            f"/api/admin/reservations/{loan['loan_id']}",
            headers=auth(admin_token),
            json={"status": "bogus"}
        )
        assert r.status_code == 400

        r = client.put("/api/admin/reservations/missing", headers=auth(admin_token),
                       json={"status": "approved"})
        assert r.status_code == 404
        assert r.json() == {"error": "Reservation not found", "category": "LoanNotFound"}

    def test_admin_endpoints_require_admin(self, client, borrower):
        headers = auth(borrower["token"])
        assert client.get("/api/admin/dashboard", headers=headers).status_code == 403
        assert client.get("/api/customers", headers=headers).status_code == 403
        r = client.put("/api/admin/reservations/x", headers=headers, json={"status": "approved"})
        assert r.status_code == 403
        assert r.json()["error"] == "Admin access required"

    def test_admin_dashboard_and_customers(self, client, borrower, admin_token):
        apply_for_loan(client, borrower)

        r = client.get("/api/admin/dashboard", headers=auth(admin_token))
        assert r.status_code == 200
        assert len(r.json()["dashboard_table"]) == 1

        r = client.get("/api/customers", headers=auth(admin_token))
        emails = {row["email"] for row in r.json()}
        assert emails == {"ada@example.edu", "admin@example.edu"}


class TestRepaymentFlow:
    """End-to-end repayment tests"""

    def test_partial_then_full_repayment(self, client, borrower, approved_loan):
        loan_id = approved_loan["loan_id"]

        r = repay(client, borrower, loan_id, "100.00")
        assert r.status_code == 200
        data = r.json()
        assert data["remaining_balance"] == "200.00"
        assert data["fully_paid"] is False
        assert data["message"] == "Repayment recorded successfully"
        assert data["payment_id"]

        r = repay(client, borrower, loan_id, 200)
        assert r.status_code == 200
        data = r.json()
        assert data["remaining_balance"] is None
        assert data["fully_paid"] is True

        r = repay(client, borrower, loan_id, "50.00")
        assert r.status_code == 404
        assert r.json() == {"error": "Loan not found or not approved", "category": "LoanNotFound"}

        r = client.get("/api/repayments", headers=auth(borrower["token"]))
        assert [p["amount"] for p in r.json()["payments"]] == ["100.00", "200.00"]

    def test_overpayment(self, client, borrower, approved_loan):
        r = repay(client, borrower, approved_loan["loan_id"], "300.01")
        assert r.status_code == 400
        assert r.json() == {
            "error": "Payment amount exceeds remaining loan balance",
            "category": "OverpaymentRejected"
        }

        r = client.get("/api/reservations", headers=auth(borrower["token"]))
        assert r.json()[0]["balance"] == "300.00"

    def test_pending_loan(self, client, borrower):
        loan = apply_for_loan(client, borrower)
        r = repay(client, borrower, loan["loan_id"], "10.00")
        assert r.status_code == 404

    def test_invalid_amount(self, client, borrower, approved_loan):
        r = repay(client, borrower, approved_loan["loan_id"], "ten pounds")
        assert r.status_code == 400
        assert r.json() == {"error": "Invalid payment amount", "category": "InvalidAmount"}

    @pytest.mark.parametrize("amount", ["1e30", "12345678901234567890123456789"])
    def test_amount_too_large(self, client, borrower, approved_loan, amount):
        r = repay(client, borrower, approved_loan["loan_id"], amount)
        assert r.status_code == 400
        assert r.json() == {
            "error": "Payment amount exceeds remaining loan balance",
            "category": "OverpaymentRejected"
        }

    @pytest.mark.parametrize("amount", ["abc5", "USD 5"])
    def test_text_before_amount(self, client, borrower, approved_loan, amount):
        r = repay(client, borrower, approved_loan["loan_id"], amount)
        assert r.status_code == 400
        assert r.json()["category"] == "InvalidAmount"

    def test_configured_precision(self, test_config, put_loan):
        """Test responses are formatted with the configured amount precision"""
        system = LoanSystem(InMemoryStorage(), test_config.model_copy(update={"amount_precision": 3}))
        client = TestClient(create_app(system))
        borrower = register(client)
        put_loan(system.storage, "L9", borrower["user"]["customer_id"], "10.000")

        r = repay(client, borrower, "L9", "1.2345")
        assert r.status_code == 200
        assert r.json()["remaining_balance"] == "8.765"

        r = client.get("/api/repayments", headers=auth(borrower["token"]))
        assert r.json()["payments"][0]["amount"] == "1.235"

    def test_missing_fields(self, client, borrower):
        r = client.post("/api/repayments", headers=auth(borrower["token"]), json={"amount": "10"})
        assert r.status_code == 400
        assert r.json() == {"error": "Missing required fields", "category": "InvalidRequest"}

    def test_customer_mismatch(self, client, borrower, approved_loan):
        r = repay(client, borrower, approved_loan["loan_id"], "10.00", customer_id="someone-else")
        assert r.status_code == 403
        assert r.json()["category"] == "Unauthorized"

    def test_repaying_another_customers_loan(self, client, borrower, approved_loan):
        other = register(client, email="bob@example.edu", name="Bob")
        r = repay(client, other, approved_loan["loan_id"], "10.00")
        assert r.status_code == 403

    def test_requires_token(self, client):
        r = client.post("/api/repayments", json={"customer_id": "c", "loan_id": "l", "amount": "1"})
        assert r.status_code == 401

    def test_unexpected_error(self, client, system, borrower, approved_loan, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(system.repayment_processor, "process_repayment", explode)

        r = repay(client, borrower, approved_loan["loan_id"], "10.00")
        assert r.status_code == 500
        assert r.json() == {"error": "Internal server error", "category": "InternalError"}
