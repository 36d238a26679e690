"""
Service container and request dependencies
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..audit import AuditTrail
from ..config import LoanServiceConfig, get_config
from ..exceptions import ConfigurationError, Unauthorized
from ..loans import ReservationManager
from ..logging_config import get_logger
from ..repayments import RepaymentProcessor
from ..storage import StorageInterface, create_storage
from ..tokens import Identity, IdentityResolver, TokenService
from ..users import UserManager


logger = get_logger("student_loans.api")

security = HTTPBearer(auto_error=False)


class LoanSystem:
    """Loan service with all components wired to one storage handle"""

    def __init__(self, storage: StorageInterface, config: Optional[LoanServiceConfig] = None):
        config = config or get_config()
        self._check_config(config)
        self.config = config
        self.storage = storage

        self.audit_trail = AuditTrail(storage, enabled=config.enable_audit_logging)
        self.user_manager = UserManager(
            storage, self.audit_trail, password_min_length=config.password_min_length
        )
        self.reservation_manager = ReservationManager(storage, self.audit_trail)
        self.repayment_processor = RepaymentProcessor(
            storage, self.audit_trail, precision=config.amount_precision
        )
        self.token_service = TokenService(
            secret=config.jwt_secret,
            algorithm=config.jwt_algorithm,
            expiry_hours=config.jwt_expiry_hours
        )
        self.identity_resolver = IdentityResolver(self.token_service, self.user_manager)

        if config.seed_loan_types:
            self.reservation_manager.ensure_default_loan_types()
        self._bootstrap_admin()

    @classmethod
    def from_config(cls, config: Optional[LoanServiceConfig] = None) -> 'LoanSystem':
        config = config or get_config()
        cls._check_config(config)
        return cls(create_storage(config.database_url), config)

    @staticmethod
    def _check_config(config: LoanServiceConfig) -> None:
        if not config.jwt_secret:
            raise ConfigurationError("STUDENT_LOANS_JWT_SECRET must be set")

    def _bootstrap_admin(self) -> None:
        email = self.config.bootstrap_admin_email
        if not email or not self.config.bootstrap_admin_password:
            return
        if self.user_manager.get_user_by_email(email.strip().lower()):
            return
        self.user_manager.create_admin(
            name="Administrator",
            email=email,
            phone="-",
            password=self.config.bootstrap_admin_password
        )
        logger.info("Bootstrap administrator created")

    def close(self) -> None:
        self.storage.close()


def get_loan_system(request: Request) -> LoanSystem:
    return request.app.state.system


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LoanSystem = Depends(get_loan_system)
) -> Identity:
    """Dependency that validates the bearer token and returns the caller"""
    token = credentials.credentials if credentials else None
    return system.identity_resolver.resolve(token)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise Unauthorized("Admin access required")
    return identity
