"""
Test suite for loan applications

Tests application submission and validation, admin review, the loan-type
catalogue and the dashboard tables.
"""

import pytest
from decimal import Decimal
from datetime import date

from student_loans.audit import AuditEventType
from student_loans.exceptions import InvalidAmount, InvalidRequest, LoanNotFound
from student_loans.loans import DEFAULT_LOAN_TYPES, LoanStatus


@pytest.fixture
def customer(user_manager):
    user = user_manager.register(
        name="Ada Student",
        email="ada@example.edu",
        phone="+441234567890",
        password="correct-horse",
        university="Example University"
    )
    return user


def submit(manager, customer_id, amount="5000.00", **overrides):
    fields = dict(
        customer_id=customer_id,
        loan_type_id="tuition",
        start_date="2026-09-01",
        end_date="2027-06-30",
        amount=amount,
        terms_agreed=True,
        purpose="Tuition fees"
    )
    fields.update(overrides)
    return manager.create_application(**fields)


class TestLoanTypes:
    """Test the loan-type catalogue"""

    def test_default_types_seeded(self, reservation_manager):
        types = reservation_manager.list_loan_types()
        assert {t.id for t in types} == set(DEFAULT_LOAN_TYPES)
        assert [t.name for t in types] == sorted(DEFAULT_LOAN_TYPES.values())

    def test_seeding_is_idempotent(self, reservation_manager, storage):
        reservation_manager.ensure_default_loan_types()
        assert storage.count("loan_types") == len(DEFAULT_LOAN_TYPES)


class TestCreateApplication:
    """Test loan application submission"""

    def test_create_application(self, reservation_manager, customer):
        """Test a valid application is stored as pending"""
        loan = submit(reservation_manager, customer.customer_id)

        assert loan.status == LoanStatus.PENDING
        assert loan.balance == Decimal("5000.00")
        assert loan.requested_amount == Decimal("5000.00")
        assert loan.start_date == date(2026, 9, 1)
        assert loan.end_date == date(2027, 6, 30)
        assert loan.terms_agreed

        stored = reservation_manager.get_loan(loan.id)
        assert stored == loan

    def test_amount_is_rounded(self, reservation_manager, customer):
        loan = submit(reservation_manager, customer.customer_id, amount="1200.555")
        assert loan.balance == Decimal("1200.56")

    def test_application_audited(self, reservation_manager, customer, audit_trail):
        loan = submit(reservation_manager, customer.customer_id)

        events = audit_trail.get_events_for_entity("loan", loan.id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.RESERVATION_CREATED
        assert events[0].metadata["amount"] == "5000.00"

    @pytest.mark.parametrize("field", ["customer_id", "loan_type_id", "start_date", "end_date", "amount"])
    def test_missing_fields(self, reservation_manager, customer, field):
        with pytest.raises(InvalidRequest):
            if field == "customer_id":
                submit(reservation_manager, None)
            else:
                submit(reservation_manager, customer.customer_id, **{field: None})

    def test_terms_must_be_agreed(self, reservation_manager, customer):
        with pytest.raises(InvalidRequest):
            submit(reservation_manager, customer.customer_id, terms_agreed=False)

    @pytest.mark.parametrize("amount", ["abc", "0", "-100", "abc5", "USD 5", "1e30", 10 ** 28])
    def test_invalid_amount(self, reservation_manager, customer, amount):
        with pytest.raises(InvalidAmount):
            submit(reservation_manager, customer.customer_id, amount=amount)

    def test_unknown_customer_and_type(self, reservation_manager, customer):
        with pytest.raises(InvalidRequest):
            submit(reservation_manager, "no-such-customer")
        with pytest.raises(InvalidRequest):
            submit(reservation_manager, customer.customer_id, loan_type_id="yacht")

    def test_invalid_dates(self, reservation_manager, customer):
        with pytest.raises(InvalidRequest):
            submit(reservation_manager, customer.customer_id, start_date="01/09/2026")
        with pytest.raises(InvalidRequest):
            submit(
                reservation_manager, customer.customer_id,
                start_date="2027-01-01", end_date="2026-01-01"
            )

    def test_rejected_application_not_stored(self, reservation_manager, customer, storage):
        with pytest.raises(InvalidAmount):
            submit(reservation_manager, customer.customer_id, amount="-1")
        assert storage.count("loans") == 0


class TestReview:
    """Test admin review of applications"""

    def test_approve(self, reservation_manager, customer):
        loan = submit(reservation_manager, customer.customer_id)

        updated = reservation_manager.update_status(loan.id, "approved", user_id="admin")

        assert updated.status == LoanStatus.APPROVED
        assert updated.balance == loan.balance

    def test_decline_then_reset(self, reservation_manager, customer):
        loan = submit(reservation_manager, customer.customer_id)

        reservation_manager.update_status(loan.id, "declined")
        assert reservation_manager.get_loan(loan.id).status == LoanStatus.DECLINED

        reservation_manager.update_status(loan.id, "pending")
        assert reservation_manager.get_loan(loan.id).status == LoanStatus.PENDING

    def test_invalid_status(self, reservation_manager, customer):
        loan = submit(reservation_manager, customer.customer_id)
        with pytest.raises(InvalidRequest):
            reservation_manager.update_status(loan.id, "cancelled")
        with pytest.raises(InvalidRequest):
            reservation_manager.update_status(loan.id, None)

    def test_unknown_loan(self, reservation_manager):
        with pytest.raises(LoanNotFound):
            reservation_manager.update_status("missing", "approved")

    def test_review_audited(self, reservation_manager, customer, audit_trail):
        loan = submit(reservation_manager, customer.customer_id)
        reservation_manager.update_status(loan.id, "approved", user_id="admin")

        events = audit_trail.get_events_for_entity("loan", loan.id)
        assert events[-1].event_type == AuditEventType.RESERVATION_STATUS_CHANGED
        assert events[-1].metadata == {"status": "approved"}
        assert events[-1].user_id == "admin"


class TestDashboards:
    """Test dashboard rows"""

    def test_customer_dashboard(self, reservation_manager, customer, user_manager):
        other = user_manager.register("Bob", "bob@example.edu", "+440000000000", "password123")
        mine = submit(reservation_manager, customer.customer_id)
        submit(reservation_manager, other.customer_id)

        rows = reservation_manager.customer_dashboard(customer.customer_id)

        assert len(rows) == 1
        row = rows[0]
        assert row["loan_id"] == mine.id
        assert row["loan_type"] == "Tuition"
        assert row["customer_name"] == "Ada Student"
        assert row["customer_email"] == "ada@example.edu"
        assert row["customer_phone"] == "+441234567890"
        assert row["balance"] == "5000.00"
        assert row["status"] == "pending"

    def test_customer_dashboard_without_customer(self, reservation_manager, customer):
        submit(reservation_manager, customer.customer_id)
        assert reservation_manager.customer_dashboard(None) == []

    def test_admin_dashboard(self, reservation_manager, customer, user_manager):
        other = user_manager.register("Bob", "bob@example.edu", "+440000000000", "password123")
        submit(reservation_manager, customer.customer_id)
        submit(reservation_manager, other.customer_id, loan_type_id="books")

        rows = reservation_manager.admin_dashboard()

        assert len(rows) == 2
        assert {row["customer_name"] for row in rows} == {"Ada Student", "Bob"}
        assert {row["loan_type"] for row in rows} == {"Tuition", "Books & Supplies"}
