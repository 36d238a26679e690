"""Exception hierarchy for loan, repayment and auth operations."""


class LoanServiceError(Exception):
    """Base exception for all student loan service errors."""

    category = "InternalError"
    status_code = 500


class InvalidRequest(LoanServiceError):
    """Raised when required request fields are missing or malformed."""

    category = "InvalidRequest"
    status_code = 400


class AuthenticationFailed(LoanServiceError):
    """Raised when credentials or a bearer token cannot be verified."""

    category = "AuthenticationFailed"
    status_code = 401


class Unauthorized(LoanServiceError):
    """Raised when the caller does not own the resource it acts on."""

    category = "Unauthorized"
    status_code = 403


class LoanNotFound(LoanServiceError):
    """Raised when a loan is absent or not in a state the operation accepts."""

    category = "LoanNotFound"
    status_code = 404


class CorruptState(LoanServiceError):
    """Raised when stored data fails validation."""

    category = "CorruptState"
    status_code = 500


class InvalidAmount(LoanServiceError):
    """Raised when an amount is non-numeric or not positive."""

    category = "InvalidAmount"
    status_code = 400


class OverpaymentRejected(LoanServiceError):
    """Raised when a payment exceeds the outstanding balance."""

    category = "OverpaymentRejected"
    status_code = 400


class WriteConflict(LoanServiceError):
    """Raised when a conditional write affects no rows."""

    category = "WriteConflict"
    status_code = 409


class ConfigurationError(LoanServiceError):
    """Raised when the service settings cannot be used to start the system."""

    category = "ConfigurationError"
    status_code = 500
