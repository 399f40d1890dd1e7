"""
Authentication orchestrator: login, refresh, logout and revocation.

Session lifecycle per user:
    anonymous -> authenticated(access, refresh) -> refreshed(access', refresh') -> ... -> terminated
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sessionguard.core.auth_events import AuthEventPublisher, AuthEventType, get_event_publisher
from sessionguard.core.credentials import (
    AuthenticatedIdentity,
    authenticate_user,
    get_user_by_username,
)
from sessionguard.core.exceptions import (
    AccountLocked,
    AccountNotFound,
    CredentialError,
    TokenCreationFailed,
    TokenNotFound,
    TokenRefreshError,
)
from sessionguard.core.refresh_tokens import LOGOUT_REASON, RefreshTokenService, token_prefix
from sessionguard.core.security import access_token_ttl, create_access_token
from sessionguard.db.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)

DEFAULT_REVOKE_REASON = "Manually revoked by user"


@dataclass
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    identity: AuthenticatedIdentity
    token_type: str = "Bearer"


@dataclass
class MessageResult:
    success: bool
    message: str


class AuthService:
    def __init__(
        self,
        db: Session,
        events: Optional[AuthEventPublisher] = None,
        access_ttl: Optional[timedelta] = None,
        refresh_ttl: Optional[timedelta] = None,
    ):
        self.db = db
        self.events = events or get_event_publisher()
        self.access_ttl = access_ttl or access_token_ttl()
        self.refresh_tokens = RefreshTokenService(db, refresh_ttl=refresh_ttl)

    def login(self, username: str, password: str, ip_address: Optional[str] = None) -> AuthTokens:
        """
        Authenticate and open a session.

        Raises:
            CredentialError: bad credentials or ineligible account (audited as a failed login)
            TokenCreationFailed: no refresh token could be issued
        """
        try:
            user = authenticate_user(self.db, username, password)
        except AccountLocked as e:
            self.events.publish(username, AuthEventType.ACCOUNT_LOCKED, e.message, ip_address)
            raise
        except CredentialError as e:
            self.events.publish(username, AuthEventType.LOGIN_FAILED, e.message, ip_address)
            raise

        identity = AuthenticatedIdentity.from_user(user)
        access_token = self._issue_access_token(identity)
        refresh_token = self.refresh_tokens.create_refresh_token(user)

        self.events.publish(identity.username, AuthEventType.LOGIN_SUCCESS, "User logged in", ip_address)
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token.token,
            expires_in=self._expires_in(),
            identity=identity,
        )

    def refresh(self, refresh_token: str, ip_address: Optional[str] = None) -> AuthTokens:
        """
        Exchange a refresh token for a new access/refresh pair.

        Raises:
            TokenRefreshError: the token is unknown, expired, used or revoked, or
                no successor could be issued
            TokenCreationFailed: the token store could not be read
        """
        username = None
        try:
            token = self.refresh_tokens.find_by_token(refresh_token, for_update=True)
            if token is None:
                raise TokenNotFound(refresh_token)
            username = token.user.username

            self.refresh_tokens.verify_expiration(token)

            identity = AuthenticatedIdentity.from_user(token.user)
            access_token = self._issue_access_token(identity)
            successor = self.refresh_tokens.rotate(token)
        except TokenRefreshError as e:
            logger.warning(f"Refresh rejected for token {token_prefix(refresh_token)}: {e.reason}")
            self.events.publish(username, AuthEventType.INVALID_TOKEN, e.reason, ip_address)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Token store failed while refreshing token {token_prefix(refresh_token)}: {str(e)}",
                exc_info=True,
            )
            raise TokenCreationFailed(refresh_token, "Refresh token storage is unavailable") from e

        self.events.publish(identity.username, AuthEventType.REFRESH_TOKEN, "Token refreshed", ip_address)
        return AuthTokens(
            access_token=access_token,
            refresh_token=successor.token,
            expires_in=self._expires_in(),
            identity=identity,
        )

    def logout(self, username: str, ip_address: Optional[str] = None) -> MessageResult:
        """Revoke every refresh token of the user. Succeeds for unknown users too."""
        user = get_user_by_username(self.db, username) if username else None
        if user:
            self.refresh_tokens.delete_by_user(user, LOGOUT_REASON)
            self.events.publish(user.username, AuthEventType.LOGOUT, "User logged out", ip_address)
        return MessageResult(success=True, message="Logout successful")

    def revoke(
        self,
        token: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        actor: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> MessageResult:
        """
        Explicitly revoke one refresh token; revoking twice reports 'already revoked'.

        With `owner` set, tokens of any other user are reported as not found.
        """
        refresh_token = self.refresh_tokens.find_by_token(token)
        if refresh_token is None or (owner is not None and refresh_token.user.username != owner):
            return MessageResult(success=False, message="Token not found")

        final_reason = reason if reason and reason.strip() else DEFAULT_REVOKE_REASON
        if not self.refresh_tokens.revoke_token(refresh_token, final_reason):
            return MessageResult(success=False, message="Token was already revoked")

        username = refresh_token.user.username
        logger.info(f"Token revoked for user: {username}, reason: {final_reason}")
        self.events.publish(
            actor or username,
            AuthEventType.INVALID_TOKEN,
            f"Token revoked: {final_reason}",
            ip_address,
        )
        return MessageResult(success=True, message="Token successfully revoked")

    def admin_revoke(
        self,
        token: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        actor: str = "admin-action",
    ) -> MessageResult:
        admin_reason = f"Admin revocation: {reason or 'No reason provided'}"
        return self.revoke(token, admin_reason, ip_address=ip_address, actor=actor)

    def revoke_all_for_user(
        self,
        username: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """
        Administrative bulk revocation.

        Raises:
            AccountNotFound: no such user
        """
        user = get_user_by_username(self.db, username)
        if not user:
            raise AccountNotFound(username)

        final_reason = f"Admin action: {reason or 'Security policy'}"
        revoked = self.refresh_tokens.delete_by_user(user, final_reason)
        self.events.publish(
            username,
            AuthEventType.INVALID_TOKEN,
            f"Admin revoked all tokens: {final_reason}",
            ip_address,
        )
        return revoked

    def purge_expired_tokens(self) -> int:
        return self.refresh_tokens.purge_expired_tokens()

    def list_active_tokens(self) -> List[RefreshToken]:
        return self.refresh_tokens.list_active_tokens()

    def list_all_tokens(self) -> List[RefreshToken]:
        return self.refresh_tokens.list_all_tokens()

    def _issue_access_token(self, identity: AuthenticatedIdentity) -> str:
        return create_access_token(identity.claims(), expires_delta=self.access_ttl)

    def _expires_in(self) -> int:
        return int(self.access_ttl.total_seconds())
