"""
Repayment endpoints
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .dependencies import LoanSystem, get_current_identity, get_loan_system, logger
from .schemas import PaymentHistoryResponse, PaymentModel, RepaymentRequest, RepaymentResponse
from ..amounts import format_amount
from ..exceptions import LoanServiceError
from ..logging_config import log_action
from ..tokens import Identity


router = APIRouter()


@router.post("/repayments", response_model=RepaymentResponse)
async def create_repayment(
    request: RepaymentRequest,
    identity: Identity = Depends(get_current_identity),
    system: LoanSystem = Depends(get_loan_system)
):
    """Apply a payment to one of the caller's approved loans"""
    try:
        result = system.repayment_processor.process_repayment(
            loan_id=request.loan_id,
            customer_id=request.customer_id,
            amount=request.amount,
            note=request.note,
            caller_customer_id=identity.customer_id,
            user_id=identity.user_id
        )
    except LoanServiceError:
        raise
    except Exception:
        log_action(
            logger, "error", "Repayment failed unexpectedly",
            user_id=identity.user_id, action="repayment_failed", resource="repayments",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "category": "InternalError"}
        )

    precision = system.config.amount_precision
    remaining = result.remaining_balance
    return RepaymentResponse(
        payment_id=result.payment_id,
        message=result.message,
        remaining_balance=format_amount(remaining, precision) if remaining is not None else None,
        fully_paid=result.fully_paid
    )


@router.get("/repayments", response_model=PaymentHistoryResponse)
async def list_repayments(
    identity: Identity = Depends(get_current_identity),
    system: LoanSystem = Depends(get_loan_system)
):
    """Payment history of the caller"""
    if not identity.customer_id:
        return PaymentHistoryResponse(payments=[])

    precision = system.config.amount_precision
    payments = system.repayment_processor.get_customer_payments(identity.customer_id)
    return PaymentHistoryResponse(payments=[
        PaymentModel(
            id=payment.id,
            loan_id=payment.loan_id,
            amount=format_amount(payment.amount, precision),
            status=payment.status,
            due_date=payment.due_date.isoformat(),
            note=payment.note
        )
        for payment in payments
    ])
