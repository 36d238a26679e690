"""
Registration and login endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import LoanSystem, get_loan_system
from .schemas import AuthResponse, LoginRequest, RegisterRequest, UserModel


router = APIRouter()


@router.post("/register", response_model=AuthResponse)
async def register(
    request: RegisterRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Register a borrower and return a bearer token"""
    user = system.user_manager.register(
        name=request.name,
        email=request.email,
        phone=request.phone,
        password=request.password,
        university=request.university
    )
    return AuthResponse(
        user=UserModel(**user.public_dict()),
        token=system.token_service.issue(user)
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Authenticate with email and password"""
    user = system.user_manager.authenticate(request.email, request.password)
    return AuthResponse(
        user=UserModel(**user.public_dict()),
        token=system.token_service.issue(user)
    )
