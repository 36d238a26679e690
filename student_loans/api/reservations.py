"""
Loan application endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import LoanSystem, get_current_identity, get_loan_system
from .schemas import CreateReservationRequest, LoanTypeModel
from ..exceptions import Unauthorized
from ..tokens import Identity


router = APIRouter()


@router.get("/loan-types")
async def list_loan_types(system: LoanSystem = Depends(get_loan_system)):
    """List the loan-type catalogue"""
    return [
        LoanTypeModel(id=loan_type.id, name=loan_type.name)
        for loan_type in system.reservation_manager.list_loan_types()
    ]


@router.post("/reservations")
async def create_reservation(
    request: CreateReservationRequest,
    identity: Identity = Depends(get_current_identity),
    system: LoanSystem = Depends(get_loan_system)
):
    """Submit a loan application for the caller"""
    if request.customer_id is not None and str(request.customer_id) != identity.customer_id:
        raise Unauthorized("Unauthorized: customer_id does not match user")

    loan = system.reservation_manager.create_application(
        customer_id=str(request.customer_id) if request.customer_id is not None else None,
        loan_type_id=str(request.loan_type_id) if request.loan_type_id is not None else None,
        start_date=request.start_date,
        end_date=request.end_date,
        amount=request.amount,
        terms_agreed=request.terms_agreed,
        purpose=request.purpose,
        employment_status=request.employment_status,
        housing_status=request.housing_status,
        other_loans=request.other_loans,
        educational_purpose=request.educational_purpose,
        user_id=identity.user_id
    )
    return system.reservation_manager.loan_to_response(loan)


@router.get("/reservations")
async def list_reservations(
    identity: Identity = Depends(get_current_identity),
    system: LoanSystem = Depends(get_loan_system)
):
    """List the caller's loan applications"""
    return system.reservation_manager.customer_dashboard(identity.customer_id)


@router.get("/user/dashboard")
async def user_dashboard(
    identity: Identity = Depends(get_current_identity),
    system: LoanSystem = Depends(get_loan_system)
):
    """Dashboard table of the caller's loans"""
    return {"dashboard_table": system.reservation_manager.customer_dashboard(identity.customer_id)}
