"""
Credential gate: username/password check plus account eligibility.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import logging
from sqlalchemy.orm import Session
from sessionguard.core.exceptions import (
    AccountDeactivated,
    AccountLocked,
    AccountNotFound,
    InvalidCredentials,
)
from sessionguard.core.security import verify_password
from sessionguard.db.base import utcnow
from sessionguard.db.models.user import User, UserRole

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedIdentity:
    id: int
    username: str
    email: str
    roles: List[str] = field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "AuthenticatedIdentity":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            roles=resolve_roles(user),
        )

    def claims(self) -> dict:
        """Identity claims embedded in access tokens."""
        return {
            "sub": self.username,
            "user_id": self.id,
            "email": self.email,
            "roles": list(self.roles),
        }

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN.value in self.roles


def resolve_roles(user: User) -> List[str]:
    """Known role names of a user, in stable order; unknown entries are dropped."""
    assigned = set(user.roles or [])
    return [role.value for role in UserRole if role.value in assigned] or [UserRole.USER.value]


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def authenticate_user(db: Session, username: str, password: str) -> User:
    """
    Check a username/password pair and return the account it belongs to.

    Raises:
        AccountNotFound: no such user
        AccountDeactivated: user is inactive
        AccountLocked: locked_until is in the future
        InvalidCredentials: password does not match
    """
    user = get_user_by_username(db, username)
    if not user:
        raise AccountNotFound(username)

    if not user.is_active:
        logger.warning(f"Failed login attempt for inactive account: {username}")
        raise AccountDeactivated()

    if user.is_locked(utcnow()):
        logger.warning(f"Failed login attempt for locked account: {username}")
        raise AccountLocked(user.locked_until)

    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials()

    return user


def authenticate(db: Session, username: str, password: str) -> AuthenticatedIdentity:
    """Same checks as authenticate_user, reduced to the identity carried by tokens."""
    return AuthenticatedIdentity.from_user(authenticate_user(db, username, password))
