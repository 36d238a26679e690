"""
Shared fixtures for the student loans test suite
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from student_loans.api.dependencies import LoanSystem
from student_loans.audit import AuditTrail
from student_loans.config import LoanServiceConfig
from student_loans.loans import LoanRecord, LoanStatus, ReservationManager
from student_loans.repayments import RepaymentProcessor
from student_loans.storage import InMemoryStorage
from student_loans.users import UserManager


@pytest.fixture
def test_config():
    return LoanServiceConfig(
        database_url="memory://",
        jwt_secret="test-signing-secret-0123456789abcdef",
        password_min_length=8,
        seed_loan_types=True,
        enable_audit_logging=True
    )


@pytest.fixture
def storage():
    storage = InMemoryStorage()
    yield storage
    storage.close()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def user_manager(storage, audit_trail):
    return UserManager(storage, audit_trail)


@pytest.fixture
def reservation_manager(storage, audit_trail):
    manager = ReservationManager(storage, audit_trail)
    manager.ensure_default_loan_types()
    return manager


@pytest.fixture
def processor(storage, audit_trail):
    return RepaymentProcessor(storage, audit_trail)


@pytest.fixture
def system(test_config):
    system = LoanSystem(InMemoryStorage(), test_config)
    yield system
    system.close()


def _put_loan(storage, loan_id, customer_id, balance, status=LoanStatus.APPROVED):
    """Write a loan row directly, bypassing application review"""
    now = datetime.now(timezone.utc)
    loan = LoanRecord(
        id=loan_id,
        created_at=now,
        updated_at=now,
        customer_id=customer_id,
        loan_type_id="tuition",
        balance=Decimal("0"),
        requested_amount=Decimal("0"),
        status=status
    )
    data = loan.to_dict()
    data["status"] = status.value
    data["balance"] = balance
    data["requested_amount"] = balance
    storage.save("loans", loan_id, data)
    return data


@pytest.fixture
def put_loan():
    return _put_loan
