"""
User and Customer Module

Registration and password login. Every user is bound to a customer profile;
the customer id is what loans and repayments are owned by. Passwords are
salted and hashed with scrypt, never stored in plaintext.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import hashlib
import hmac
import secrets
import uuid

from .audit import AuditTrail, AuditEventType
from .exceptions import AuthenticationFailed, CorruptState, InvalidRequest
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("student_loans.users")


class UserRole(Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass
class Customer(StorageRecord):
    """Borrower profile"""
    name: str
    email: str
    phone: str
    university: Optional[str] = None


@dataclass
class User(StorageRecord):
    """Login account bound to a customer profile"""
    name: str
    email: str
    role: str = UserRole.USER.value
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    university: Optional[str] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def public_dict(self) -> dict:
        """User fields safe to return to clients"""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "customer_id": self.customer_id,
            "phone": self.phone,
            "university": self.university,
        }


class UserManager:
    """
    Manages users, their customer profiles and password verification
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 password_min_length: int = 8):
        self.storage = storage
        self.audit_trail = audit_trail
        self.password_min_length = password_min_length

        self.users_table = "users"
        self.customers_table = "customers"

    def register(self, name: Optional[str], email: Optional[str], phone: Optional[str],
                 password: Optional[str], university: Optional[str] = None,
                 role: UserRole = UserRole.USER) -> User:
        """
        Register a user together with its customer profile

        Raises:
            InvalidRequest: missing fields, short password or duplicate email
        """
        if not name or not email or not phone or not password:
            raise InvalidRequest("Missing required fields")
        if len(password) < self.password_min_length:
            raise InvalidRequest(
                f"Password must be at least {self.password_min_length} characters"
            )

        email = email.strip().lower()
        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            if self.get_user_by_email(email):
                raise InvalidRequest("Email already exists")

            customer = Customer(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                name=name,
                email=email,
                phone=phone,
                university=university
            )
            self.storage.save(self.customers_table, customer.id, customer.to_dict())

            user = User(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                name=name,
                email=email,
                role=role.value,
                customer_id=customer.id,
                phone=phone,
                university=university
            )
            self._set_user_password(user, password)
            self.storage.save(self.users_table, user.id, user.to_dict())

            self.audit_trail.log_event(
                AuditEventType.USER_REGISTERED,
                'user',
                user.id,
                {'email': email, 'role': role.value, 'customer_id': customer.id},
                user.id
            )

        log_action(logger, "info", "User registered", user_id=user.id,
                   action="register", resource="auth")
        return user

    def create_admin(self, name: str, email: str, phone: str, password: str) -> User:
        """Register an administrator account"""
        return self.register(name, email, phone, password, role=UserRole.ADMIN)

    def authenticate(self, email: Optional[str], password: Optional[str]) -> User:
        """
        Verify an email and password

        Raises:
            InvalidRequest: email or password missing
            AuthenticationFailed: unknown email or wrong password
            CorruptState: the account has no customer profile
        """
        if not email or not password:
            raise InvalidRequest("Missing email or password")

        user = self.get_user_by_email(email.strip().lower())
        if not user or not self._verify_password(user, password):
            self.audit_trail.log_event(
                AuditEventType.LOGIN_FAILED,
                'user',
                user.id if user else email,
                {'reason': 'invalid_credentials'}
            )
            log_action(logger, "warning", "Login failed", action="login_failed",
                       resource="auth", extra={"email": email})
            raise AuthenticationFailed("Invalid email or password")

        if not user.customer_id:
            log_action(logger, "error", "Login failed: missing customer_id",
                       user_id=user.id, action="login_failed", resource="auth")
            raise CorruptState("User account incomplete: missing customer ID")

        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, 'user', user.id, {}, user.id)
        log_action(logger, "info", "User authenticated successfully",
                   user_id=user.id, action="login", resource="auth")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        data = self.storage.load(self.users_table, user_id)
        if not data:
            return None
        return User.from_dict(data)

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by normalized email"""
        matches = self.storage.find(self.users_table, {"email": email})
        if not matches:
            return None
        return User.from_dict(matches[0])

    def list_customers(self) -> List[dict]:
        """Users joined with their customer profile, for administrators"""
        rows = []
        users = [User.from_dict(data) for data in self.storage.load_all(self.users_table)]
        users.sort(key=lambda x: x.created_at)
        for user in users:
            row = user.public_dict()
            row["user_id"] = row.pop("id")
            rows.append(row)
        return rows

    def _set_user_password(self, user: User, password: str) -> None:
        """Set user password with a fresh salt"""
        user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, user: User, password: str) -> bool:
        """Verify password against stored hash"""
        if not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(user.password_hash, expected)
