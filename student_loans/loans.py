"""
Loan Application Module

Handles loan applications ("reservations"): creation, lookup, listing,
admin status review, and the loan-type catalogue. Outstanding balances are
only changed by the repayment processor.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .amounts import decimal_from_value, quantize_amount, format_amount
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidAmount, InvalidRequest, LoanNotFound
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("student_loans.loans")


class LoanStatus(Enum):
    """Loan application review states"""
    PENDING = "pending"      # Submitted, awaiting review
    APPROVED = "approved"    # Approved; repayments accepted
    DECLINED = "declined"    # Rejected by an administrator


DEFAULT_LOAN_TYPES = {
    "tuition": "Tuition",
    "accommodation": "Accommodation",
    "books": "Books & Supplies",
    "living": "Living Expenses",
}


@dataclass
class LoanType(StorageRecord):
    """Catalogue entry describing what a loan is for"""
    name: str


@dataclass
class LoanRecord(StorageRecord):
    """Loan application with its outstanding balance"""
    customer_id: str
    loan_type_id: str
    balance: Decimal                    # Outstanding principal
    requested_amount: Decimal           # Amount applied for, never changes
    status: LoanStatus = LoanStatus.PENDING
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    purpose: Optional[str] = None
    employment_status: Optional[str] = None
    housing_status: Optional[str] = None
    terms_agreed: bool = False
    other_loans: Optional[str] = None
    educational_purpose: bool = False


class ReservationManager:
    """
    Manages loan applications from submission through review
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

        self.loans_table = "loans"
        self.loan_types_table = "loan_types"
        self.customers_table = "customers"

    def create_application(
        self,
        customer_id: Optional[str],
        loan_type_id: Optional[str],
        start_date: Optional[str],
        end_date: Optional[str],
        amount: Any,
        terms_agreed: bool,
        purpose: Optional[str] = None,
        employment_status: Optional[str] = None,
        housing_status: Optional[str] = None,
        other_loans: Optional[str] = None,
        educational_purpose: bool = False,
        user_id: Optional[str] = None
    ) -> LoanRecord:
        """
        Submit a new loan application

        Args:
            customer_id: Applicant customer ID
            loan_type_id: Loan type from the catalogue
            start_date: ISO date the loan period starts
            end_date: ISO date the loan period ends
            amount: Requested principal
            terms_agreed: Applicant accepted the terms

        Returns:
            Created LoanRecord in PENDING state
        """
        if not customer_id or not loan_type_id or not start_date or not end_date \
                or amount in (None, "") or not terms_agreed:
            raise InvalidRequest("Missing required fields")

        requested = decimal_from_value(amount)
        if requested is None or requested <= 0:
            raise InvalidAmount("Loan amount must be a positive number")
        try:
            requested = quantize_amount(requested)
        except InvalidOperation:
            raise InvalidAmount("Loan amount is too large")

        if not self.storage.exists(self.customers_table, str(customer_id)):
            raise InvalidRequest(f"Customer {customer_id} not found")
        if not self.storage.exists(self.loan_types_table, str(loan_type_id)):
            raise InvalidRequest(f"Loan type {loan_type_id} not found")

        try:
            start = date.fromisoformat(start_date)
            end = date.fromisoformat(end_date)
        except (TypeError, ValueError):
            raise InvalidRequest("Dates must be ISO formatted (YYYY-MM-DD)")
        if end < start:
            raise InvalidRequest("End date must not be before start date")

        now = datetime.now(timezone.utc)
        loan = LoanRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=str(customer_id),
            loan_type_id=str(loan_type_id),
            balance=requested,
            requested_amount=requested,
            status=LoanStatus.PENDING,
            start_date=start,
            end_date=end,
            purpose=purpose,
            employment_status=employment_status,
            housing_status=housing_status,
            terms_agreed=bool(terms_agreed),
            other_loans=other_loans,
            educational_purpose=bool(educational_purpose)
        )

        with self.storage.atomic():
            self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))
            self.audit_trail.log_event(
                event_type=AuditEventType.RESERVATION_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=user_id,
                metadata={
                    "customer_id": loan.customer_id,
                    "loan_type_id": loan.loan_type_id,
                    "amount": loan.requested_amount
                }
            )

        log_action(
            logger, "info", "Loan application created",
            user_id=user_id, action="create_reservation", resource=loan.id,
            extra={"customer_id": loan.customer_id, "amount": format_amount(requested)}
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[LoanRecord]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return self._loan_from_dict(loan_dict)
        return None

    def get_customer_loans(self, customer_id: str) -> List[LoanRecord]:
        """Get all loans for a customer, oldest first"""
        loans_data = self.storage.find(self.loans_table, {"customer_id": str(customer_id)})
        loans = [self._loan_from_dict(data) for data in loans_data]
        loans.sort(key=lambda x: x.created_at)
        return loans

    def list_loans(self) -> List[LoanRecord]:
        """Get every loan, oldest first"""
        loans = [self._loan_from_dict(data) for data in self.storage.load_all(self.loans_table)]
        loans.sort(key=lambda x: x.created_at)
        return loans

    def update_status(self, loan_id: str, status: Optional[str],
                      user_id: Optional[str] = None) -> LoanRecord:
        """
        Set the review status of a loan application

        Raises:
            InvalidRequest: status missing or not a known state
            LoanNotFound: no loan with that id
        """
        try:
            new_status = LoanStatus(status)
        except ValueError:
            raise InvalidRequest("Invalid or missing status")

        with self.storage.atomic():
            affected = self.storage.update_if(
                self.loans_table, loan_id, {}, {"status": new_status.value}
            )
            if affected == 0:
                raise LoanNotFound("Reservation not found")

            self.audit_trail.log_event(
                event_type=AuditEventType.RESERVATION_STATUS_CHANGED,
                entity_type="loan",
                entity_id=loan_id,
                user_id=user_id,
                metadata={"status": new_status.value}
            )

        log_action(
            logger, "info", f"Loan status set to {new_status.value}",
            user_id=user_id, action="update_reservation_status", resource=loan_id
        )
        return self.get_loan(loan_id)

    def ensure_default_loan_types(self) -> None:
        """Seed the loan-type catalogue when it is empty"""
        if self.storage.count(self.loan_types_table) > 0:
            return
        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            for type_id, name in DEFAULT_LOAN_TYPES.items():
                loan_type = LoanType(id=type_id, created_at=now, updated_at=now, name=name)
                self.storage.save(self.loan_types_table, type_id, loan_type.to_dict())

    def list_loan_types(self) -> List[LoanType]:
        types = [LoanType.from_dict(data) for data in self.storage.load_all(self.loan_types_table)]
        types.sort(key=lambda x: x.name)
        return types

    def customer_dashboard(self, customer_id: Optional[str]) -> List[Dict[str, Any]]:
        """Dashboard rows for one customer's loans"""
        if not customer_id:
            return []
        return self._dashboard_rows(self.get_customer_loans(customer_id))

    def admin_dashboard(self) -> List[Dict[str, Any]]:
        """Dashboard rows for every loan"""
        return self._dashboard_rows(self.list_loans())

    def _dashboard_rows(self, loans: List[LoanRecord]) -> List[Dict[str, Any]]:
        """Loans joined with their loan type and customer contact details"""
        type_names = {t.id: t.name for t in self.list_loan_types()}

        rows = []
        for loan in loans:
            customer = self.storage.load(self.customers_table, loan.customer_id) or {}
            row = self.loan_to_response(loan)
            row.update({
                "loan_type": type_names.get(loan.loan_type_id),
                "customer_name": customer.get("name"),
                "customer_email": customer.get("email"),
                "customer_phone": customer.get("phone"),
            })
            rows.append(row)
        return rows

    @staticmethod
    def loan_to_response(loan: LoanRecord) -> Dict[str, Any]:
        """Convert loan to a JSON-ready dictionary"""
        return {
            "loan_id": loan.id,
            "customer_id": loan.customer_id,
            "loan_type_id": loan.loan_type_id,
            "status": loan.status.value,
            "balance": format_amount(loan.balance),
            "requested_amount": format_amount(loan.requested_amount),
            "start_date": loan.start_date.isoformat() if loan.start_date else None,
            "end_date": loan.end_date.isoformat() if loan.end_date else None,
            "purpose": loan.purpose,
            "employment_status": loan.employment_status,
            "housing_status": loan.housing_status,
            "terms_agreed": loan.terms_agreed,
            "other_loans": loan.other_loans,
            "educational_purpose": loan.educational_purpose,
            "created_at": loan.created_at.isoformat(),
        }

    def _loan_to_dict(self, loan: LoanRecord) -> Dict:
        """Convert loan to dictionary"""
        result = loan.to_dict()
        result['status'] = loan.status.value
        result['balance'] = format_amount(loan.balance)
        result['requested_amount'] = format_amount(loan.requested_amount)
        for field in ['start_date', 'end_date']:
            date_value = getattr(loan, field)
            result[field] = date_value.isoformat() if date_value else None
        return result

    def _loan_from_dict(self, data: Dict) -> LoanRecord:
        """Convert dictionary to loan"""
        def get_date(field: str) -> Optional[date]:
            if data.get(field):
                return date.fromisoformat(data[field])
            return None

        return LoanRecord(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            loan_type_id=data['loan_type_id'],
            balance=Decimal(data['balance']),
            requested_amount=Decimal(data['requested_amount']),
            status=LoanStatus(data['status']),
            start_date=get_date('start_date'),
            end_date=get_date('end_date'),
            purpose=data.get('purpose'),
            employment_status=data.get('employment_status'),
            housing_status=data.get('housing_status'),
            terms_agreed=data.get('terms_agreed', False),
            other_loans=data.get('other_loans'),
            educational_purpose=data.get('educational_purpose', False)
        )
