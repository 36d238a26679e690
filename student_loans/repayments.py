"""
Repayment Module

Applies a payment against an approved loan's outstanding balance. A payment
record is inserted and the loan is either reduced or, on full payoff, removed,
all inside one storage transaction. The balance write is conditional on the
status and balance read at the start of the transaction; a write that affects
no rows means another payment got there first and the whole transaction rolls
back with WriteConflict.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .amounts import ZERO, decimal_from_value, quantize_amount, format_amount
from .audit import AuditTrail, AuditEventType
from .exceptions import (
    CorruptState, InvalidAmount, InvalidRequest, LoanNotFound,
    LoanServiceError, OverpaymentRejected, Unauthorized, WriteConflict
)
from .loans import LoanStatus
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("student_loans.repayments")

PAYMENT_STATUS_PAID = "paid"


@dataclass
class PaymentRecord(StorageRecord):
    """Record of a single repayment; never mutated once written"""
    loan_id: str
    customer_id: str
    amount: Decimal
    due_date: date
    status: str = PAYMENT_STATUS_PAID
    note: Optional[str] = None


@dataclass(frozen=True)
class RepaymentResult:
    """Outcome of a successful repayment"""
    payment_id: str
    remaining_balance: Optional[Decimal]  # None once the loan is removed
    fully_paid: bool

    @property
    def message(self) -> str:
        if self.fully_paid:
            return "Repayment recorded and loan fully paid, reservation deleted"
        return "Repayment recorded successfully"


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RepaymentProcessor:
    """
    Records repayments against approved loans
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 precision: int = 2):
        self.storage = storage
        self.audit_trail = audit_trail
        self.precision = precision

        self.loans_table = "loans"
        self.payments_table = "repayments"

    def process_repayment(
        self,
        loan_id: Optional[str],
        customer_id: Optional[str],
        amount: Any,
        note: Optional[str] = None,
        caller_customer_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> RepaymentResult:
        """
        Apply a payment to a loan

        Args:
            loan_id: Loan being repaid
            customer_id: Customer named in the request
            amount: Payment amount (Decimal, number or numeric string)
            note: Optional free-text annotation from the payer
            caller_customer_id: Customer the authenticated caller acts for
            user_id: Authenticated user, for audit and logs

        Returns:
            RepaymentResult with the new balance, or None when fully paid

        Raises:
            InvalidRequest, Unauthorized, LoanNotFound, CorruptState,
            InvalidAmount, OverpaymentRejected, WriteConflict
        """
        if _is_missing(loan_id) or _is_missing(customer_id) or _is_missing(amount):
            raise InvalidRequest("Missing required fields")
        loan_id = str(loan_id)
        customer_id = str(customer_id)

        if caller_customer_id is None or str(caller_customer_id) != customer_id:
            log_action(
                logger, "warning", "Repayment rejected: customer_id mismatch",
                user_id=user_id, action="repayment_rejected", resource=loan_id,
                extra={"caller_customer_id": caller_customer_id, "customer_id": customer_id}
            )
            raise Unauthorized("Unauthorized")

        try:
            with self.storage.atomic():
                result = self._apply_payment(loan_id, customer_id, amount, note, user_id)
        except LoanServiceError as e:
            log_action(
                logger, "warning", f"Repayment rejected: {e}",
                user_id=user_id, action="repayment_rejected", resource=loan_id,
                extra={"category": e.category, "amount": str(amount)}
            )
            raise

        log_action(
            logger, "info", result.message,
            user_id=user_id, action="repayment", resource=loan_id,
            extra={
                "payment_id": result.payment_id,
                "remaining_balance": format_amount(result.remaining_balance, self.precision)
                if result.remaining_balance is not None else None
            }
        )
        return result

    def _apply_payment(self, loan_id: str, customer_id: str, amount: Any,
                       note: Optional[str], user_id: Optional[str]) -> RepaymentResult:
        loan = self.storage.load(self.loans_table, loan_id)
        if not loan or loan.get('status') != LoanStatus.APPROVED.value:
            raise LoanNotFound("Loan not found or not approved")
        if str(loan.get('customer_id')) != customer_id:
            raise Unauthorized("Unauthorized")

        stored_balance = loan.get('balance')
        current_balance = decimal_from_value(stored_balance)
        if current_balance is None or current_balance < ZERO:
            raise CorruptState("Invalid current loan amount")
        try:
            quantize_amount(current_balance, self.precision)
        except InvalidOperation:
            raise CorruptState("Invalid current loan amount")

        payment_amount = decimal_from_value(amount)
        if payment_amount is None or payment_amount <= ZERO:
            raise InvalidAmount("Invalid payment amount")
        try:
            payment_amount = quantize_amount(payment_amount, self.precision)
        except InvalidOperation:
            # Too many digits to round; stored balances never get this large
            raise OverpaymentRejected("Payment amount exceeds remaining loan balance")
        if payment_amount <= ZERO:
            raise InvalidAmount("Invalid payment amount")

        if payment_amount > current_balance:
            raise OverpaymentRejected("Payment amount exceeds remaining loan balance")

        new_balance = quantize_amount(max(ZERO, current_balance - payment_amount), self.precision)

        now = datetime.now(timezone.utc)
        payment = PaymentRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            customer_id=customer_id,
            amount=payment_amount,
            due_date=now.date(),
            note=note or None
        )
        self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))

        # Guard on exactly what was read above
        expected = {'status': LoanStatus.APPROVED.value, 'balance': stored_balance}
        if new_balance == ZERO:
            affected = self.storage.delete_if(self.loans_table, loan_id, expected)
            if affected == 0:
                raise WriteConflict("Failed to delete reservation")
        else:
            affected = self.storage.update_if(
                self.loans_table, loan_id, expected,
                {'balance': format_amount(new_balance, self.precision)}
            )
            if affected == 0:
                raise WriteConflict("Failed to update loan amount")

        fully_paid = new_balance == ZERO
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_PAYMENT_MADE,
            entity_type="loan",
            entity_id=loan_id,
            user_id=user_id,
            metadata={
                "payment_id": payment.id,
                "amount": payment_amount,
                "remaining_balance": new_balance
            }
        )
        if fully_paid:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_PAID_OFF,
                entity_type="loan",
                entity_id=loan_id,
                user_id=user_id,
                metadata={"payment_id": payment.id}
            )

        return RepaymentResult(
            payment_id=payment.id,
            remaining_balance=None if fully_paid else new_balance,
            fully_paid=fully_paid
        )

    def get_payment_history(self, loan_id: str) -> List[PaymentRecord]:
        """Get payments recorded against a loan, oldest first"""
        payments = [
            self._payment_from_dict(data)
            for data in self.storage.find(self.payments_table, {"loan_id": loan_id})
        ]
        payments.sort(key=lambda x: x.created_at)
        return payments

    def get_customer_payments(self, customer_id: str) -> List[PaymentRecord]:
        """Get every payment made by a customer, oldest first"""
        payments = [
            self._payment_from_dict(data)
            for data in self.storage.find(self.payments_table, {"customer_id": str(customer_id)})
        ]
        payments.sort(key=lambda x: x.created_at)
        return payments

    def _payment_to_dict(self, payment: PaymentRecord) -> Dict:
        """Convert payment to dictionary"""
        result = payment.to_dict()
        result['amount'] = format_amount(payment.amount, self.precision)
        result['due_date'] = payment.due_date.isoformat()
        return result

    def _payment_from_dict(self, data: Dict) -> PaymentRecord:
        """Convert dictionary to payment"""
        return PaymentRecord(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            customer_id=data['customer_id'],
            amount=Decimal(data['amount']),
            due_date=date.fromisoformat(data['due_date']),
            status=data.get('status', PAYMENT_STATUS_PAID),
            note=data.get('note')
        )
