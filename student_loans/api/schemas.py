"""
Pydantic schemas for API requests and responses

Request fields are optional at this layer so that missing fields reach the
service and come back as InvalidRequest rather than a schema error.
"""

from typing import Any, List, Optional, Union
from pydantic import BaseModel, Field


# Auth schemas
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    university: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    role: str
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    university: Optional[str] = None


class AuthResponse(BaseModel):
    user: UserModel
    token: str


# Loan application schemas
class CreateReservationRequest(BaseModel):
    customer_id: Optional[Union[str, int]] = None
    loan_type_id: Optional[Union[str, int]] = None
    start_date: Optional[str] = Field(None, description="ISO date")
    end_date: Optional[str] = Field(None, description="ISO date")
    amount: Any = Field(None, description="Requested amount as number or decimal string")
    purpose: Optional[str] = None
    employment_status: Optional[str] = None
    housing_status: Optional[str] = None
    terms_agreed: bool = False
    other_loans: Optional[str] = None
    educational_purpose: bool = False


class UpdateReservationStatusRequest(BaseModel):
    status: Optional[str] = Field(None, description="pending, approved or declined")


class LoanTypeModel(BaseModel):
    id: str
    name: str


# Repayment schemas
class RepaymentRequest(BaseModel):
    customer_id: Optional[Union[str, int]] = None
    loan_id: Optional[Union[str, int]] = None
    amount: Any = Field(None, description="Payment amount as number or decimal string")
    note: Optional[str] = None


class RepaymentResponse(BaseModel):
    payment_id: str
    message: str
    remaining_balance: Optional[str] = None
    fully_paid: bool


class PaymentModel(BaseModel):
    id: str
    loan_id: str
    amount: str
    status: str
    due_date: str
    note: Optional[str] = None


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentModel]
