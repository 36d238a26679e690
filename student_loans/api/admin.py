"""
Administrator endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import LoanSystem, get_loan_system, require_admin
from .schemas import UpdateReservationStatusRequest
from ..tokens import Identity


router = APIRouter()


@router.get("/customers")
async def list_customers(
    identity: Identity = Depends(require_admin),
    system: LoanSystem = Depends(get_loan_system)
):
    """List registered users and their customer profiles"""
    return system.user_manager.list_customers()


@router.get("/admin/dashboard")
async def admin_dashboard(
    identity: Identity = Depends(require_admin),
    system: LoanSystem = Depends(get_loan_system)
):
    """Dashboard table of every loan application"""
    return {"dashboard_table": system.reservation_manager.admin_dashboard()}


@router.put("/admin/reservations/{loan_id}")
async def update_reservation_status(
    loan_id: str,
    request: UpdateReservationStatusRequest,
    identity: Identity = Depends(require_admin),
    system: LoanSystem = Depends(get_loan_system)
):
    """Approve, decline or reset a loan application"""
    loan = system.reservation_manager.update_status(
        loan_id, request.status, user_id=identity.user_id
    )
    return system.reservation_manager.loan_to_response(loan)
