"""
Bearer token signing and identity resolution.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Optional

import jwt

from .exceptions import AuthenticationFailed
from .users import User, UserManager


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of a request"""
    user_id: str
    customer_id: Optional[str]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class TokenService:
    """Signs and verifies HS256 bearer tokens"""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_hours: int = 1):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_hours = expiry_hours

    def issue(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "iat": now,
            "exp": now + timedelta(hours=self.expiry_hours)
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> str:
        """Return the user id a token was issued to"""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailed("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationFailed("Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationFailed("Invalid token")
        return user_id


class IdentityResolver:
    """Maps a bearer token to the user and customer it acts for"""

    def __init__(self, token_service: TokenService, user_manager: UserManager):
        self.token_service = token_service
        self.user_manager = user_manager

    def resolve(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthenticationFailed("No token provided")

        user_id = self.token_service.decode(token)
        user = self.user_manager.get_user(user_id)
        if not user:
            raise AuthenticationFailed("User not found")

        return Identity(user_id=user.id, customer_id=user.customer_id, role=user.role)
