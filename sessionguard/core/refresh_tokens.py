"""
Refresh token rotation policy.

Keeps at most one active refresh token per user: every create supersedes the
user's unconsumed tokens, every refresh consumes the presented token and links
it to its successor in the same transaction.
"""
from datetime import timedelta
from typing import List, Optional
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sessionguard.core.config import settings
from sessionguard.core.exceptions import (
    StorageConflict,
    TokenAlreadyUsed,
    TokenCreationFailed,
    TokenExpired,
    TokenRefreshError,
    TokenRevoked,
)
from sessionguard.core.security import generate_refresh_token_value
from sessionguard.db.base import utcnow
from sessionguard.db.models.refresh_token import RefreshToken
from sessionguard.db.models.user import User
from sessionguard.db.refresh_token_store import RefreshTokenStore

logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "Superseded by new token"
EXPIRED_REASON = "Token expired"
LOGOUT_REASON = "User logout"


def token_prefix(value: Optional[str]) -> str:
    """Short token prefix that is safe to log."""
    return f"{value[:8]}..." if value else "<none>"


class RefreshTokenService:
    """Create, verify, consume, revoke and purge refresh tokens."""

    def __init__(self, db: Session, refresh_ttl: Optional[timedelta] = None):
        self.db = db
        self.store = RefreshTokenStore(db)
        self.refresh_ttl = refresh_ttl or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def find_by_token(self, token: str, for_update: bool = False) -> Optional[RefreshToken]:
        return self.store.find_by_token(token, for_update=for_update)

    def find_active_tokens_by_user(self, user: User) -> List[RefreshToken]:
        now = utcnow()
        return [t for t in self.store.find_unconsumed_by_user(user.id) if not t.is_expired(now)]

    def list_active_tokens(self) -> List[RefreshToken]:
        return self.store.list_active()

    def list_all_tokens(self) -> List[RefreshToken]:
        return self.store.list_all()

    def create_refresh_token(self, user: User) -> RefreshToken:
        """
        Issue a new refresh token for a user, superseding the active ones.

        A uniqueness conflict with a concurrent creator is recovered by handing
        back the user's current token instead of failing the caller.

        Raises:
            TokenCreationFailed: conflict could not be recovered or storage failed
        """
        username = user.username
        try:
            refresh_token = self._supersede_and_insert(user)
            self.store.commit()
        except StorageConflict as conflict:
            self.db.rollback()
            logger.warning(f"Could not create refresh token for user {username}: {conflict.message}")
            return self._recover_after_conflict(user, conflict)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create refresh token for user {username}: {str(e)}", exc_info=True)
            raise TokenCreationFailed(reason="Failed to create refresh token") from e

        logger.info(f"New refresh token created for user: {username}")
        return refresh_token

    def verify_expiration(self, token: RefreshToken) -> RefreshToken:
        """
        Check that a token can still be exchanged.

        An expired token is marked revoked and committed before the error is
        raised, so the stored state always reflects why a refresh failed.
        """
        if token.is_expired():
            if not token.revoked:
                token.revoked = True
                token.reason_revoked = EXPIRED_REASON
                try:
                    self.store.commit()
                except (StorageConflict, SQLAlchemyError) as e:
                    self.db.rollback()
                    logger.error(f"Could not record expiry of refresh token {token_prefix(token.token)}: {str(e)}")
            raise TokenExpired(token.token)

        if token.used:
            raise TokenAlreadyUsed(token.token)

        if token.revoked:
            raise TokenRevoked(token.token)

        return token

    def use_token(self, token: RefreshToken, replaced_by_token: str) -> RefreshToken:
        """Mark a token consumed by its successor. Only call once the successor exists."""
        value = token.token
        try:
            self._consume(token, replaced_by_token)
            self.store.commit()
        except TokenRefreshError:
            self.db.rollback()
            raise
        except (StorageConflict, SQLAlchemyError) as e:
            self.db.rollback()
            raise TokenCreationFailed(value, "Could not mark refresh token as used") from e
        return token

    def rotate(self, token: RefreshToken) -> RefreshToken:
        """
        Exchange a verified token for its successor in one unit of work.

        Either the successor exists and the token is consumed, or nothing
        changed. Losing a race for the same token raises TokenAlreadyUsed.
        """
        value = token.token
        user = token.user
        try:
            successor = self._supersede_and_insert(user)
            self._consume(token, successor.token)
            self.store.commit()
        except StorageConflict as conflict:
            self.db.rollback()
            logger.warning(
                f"Storage conflict rotating refresh token for user {user.username}: {conflict.message}"
            )
            return self._rotate_after_conflict(token, value, conflict)
        except TokenRefreshError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to rotate refresh token for user {user.username}: {str(e)}", exc_info=True)
            raise TokenCreationFailed(value, "Could not create new refresh token") from e

        logger.info(f"Refresh token rotated for user: {user.username}")
        return successor

    def revoke_token(self, token: RefreshToken, reason: str) -> bool:
        """Revoke one token. Returns False, leaving the stored reason alone, when it was already revoked."""
        if token.revoked:
            return False
        token.revoked = True
        token.reason_revoked = reason
        self.store.commit()
        logger.debug(f"Refresh token revoked for user: {token.user.username}, reason: {reason}")
        return True

    def delete_by_user(self, user: User, reason: str = LOGOUT_REASON) -> int:
        """Revoke (not delete) every token of a user; physical deletion is left to the purge job."""
        updated = self.store.revoke_all_for_user(user.id, reason)
        self.store.commit()
        logger.info(f"Revoked {updated} refresh tokens for user: {user.username}")
        return updated

    def purge_expired_tokens(self) -> int:
        """Hard-delete every token past its expiry, whatever its used/revoked state."""
        deleted = self.store.delete_expired(utcnow())
        self.store.commit()
        if deleted > 0:
            logger.info(f"Purged {deleted} expired refresh tokens")
        return deleted

    def _new_expiry(self):
        return utcnow() + self.refresh_ttl

    def _supersede_and_insert(self, user: User) -> RefreshToken:
        """Revoke the user's unconsumed tokens and insert their successor. Does not commit."""
        new_value = generate_refresh_token_value()

        previous = self.store.find_unconsumed_by_user(user.id)
        for token in previous:
            token.revoked = True
            token.reason_revoked = SUPERSEDED_REASON
            if token.replaced_by_token is None:
                token.replaced_by_token = new_value
        if previous:
            # Retire predecessors before the insert so the one-active index never sees two
            self.store.flush()
            logger.debug(f"Revoked {len(previous)} previous active tokens for user: {user.username}")

        return self.store.add(RefreshToken(
            user_id=user.id,
            token=new_value,
            expiry_date=self._new_expiry(),
            used=False,
            revoked=False,
        ))

    def _consume(self, token: RefreshToken, replaced_by_token: str) -> None:
        if not self.store.mark_used(token, replaced_by_token):
            raise TokenAlreadyUsed(token.token)

    def _revive(self, token: RefreshToken) -> None:
        token.used = False
        token.revoked = False
        token.reason_revoked = None
        token.expiry_date = self._new_expiry()

    def _recover_after_conflict(self, user: User, conflict: StorageConflict) -> RefreshToken:
        # TODO: replace catch-and-recover with an upsert under a per-user row lock
        tokens = self.store.find_by_user(user.id)
        if not tokens:
            logger.error(f"No refresh token to fall back on for user {user.username}")
            raise TokenCreationFailed(reason="Failed to create refresh token") from conflict

        now = utcnow()
        active = [t for t in tokens if t.is_active(now)]
        if active:
            return active[-1]

        latest = tokens[-1]
        logger.warning(f"Reviving refresh token {token_prefix(latest.token)} for user {user.username}")
        self._revive(latest)
        try:
            self.store.commit()
        except (StorageConflict, SQLAlchemyError) as e:
            self.db.rollback()
            raise TokenCreationFailed(reason="Failed to create refresh token") from e
        return latest

    def _rotate_after_conflict(self, token: RefreshToken, value: str, conflict: StorageConflict) -> RefreshToken:
        # The racer may have consumed or revoked the presented token meanwhile
        self.db.refresh(token)
        self.verify_expiration(token)

        candidates = [t for t in self.store.find_by_user(token.user_id) if t.id != token.id]
        if not candidates:
            raise TokenCreationFailed(
                value, "Could not create new refresh token due to constraint violation"
            ) from conflict

        now = utcnow()
        active = [t for t in candidates if t.is_active(now)]
        successor = active[-1] if active else candidates[-1]
        try:
            self._consume(token, successor.token)
            if not successor.is_active(now):
                logger.warning(f"Reviving refresh token {token_prefix(successor.token)} as successor")
                self._revive(successor)
                self.store.flush()
            self.store.commit()
        except TokenRefreshError:
            self.db.rollback()
            raise
        except (StorageConflict, SQLAlchemyError) as e:
            self.db.rollback()
            raise TokenCreationFailed(
                value, "Could not create new refresh token due to constraint violation"
            ) from e
        return successor
