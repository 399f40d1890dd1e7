"""
Storage contract for refresh tokens.

The store never commits on its own: the caller owns the unit of work, so a
rotation can retire the predecessor and insert the successor in one
transaction. Integrity errors surface as StorageConflict.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from sessionguard.core.exceptions import StorageConflict
from sessionguard.db.base import utcnow
from sessionguard.db.models.refresh_token import RefreshToken


class RefreshTokenStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_token(self, token: str, for_update: bool = False) -> Optional[RefreshToken]:
        """Look a token up by value; `for_update` row-locks it on backends that support it."""
        query = self.db.query(RefreshToken).filter(RefreshToken.token == token)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def find_by_user(self, user_id: int) -> List[RefreshToken]:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at, RefreshToken.id)
            .all()
        )

    def find_unconsumed_by_user(self, user_id: int) -> List[RefreshToken]:
        """Tokens neither revoked nor used (expiry not considered)."""
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.used == False,  # noqa: E712
            )
            .all()
        )

    def list_all(self) -> List[RefreshToken]:
        return (
            self.db.query(RefreshToken)
            .options(joinedload(RefreshToken.user))
            .order_by(RefreshToken.created_at.desc())
            .all()
        )

    def list_active(self, now: Optional[datetime] = None) -> List[RefreshToken]:
        now = now or utcnow()
        return (
            self.db.query(RefreshToken)
            .options(joinedload(RefreshToken.user))
            .filter(
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.used == False,  # noqa: E712
                RefreshToken.expiry_date >= now,
            )
            .order_by(RefreshToken.created_at.desc())
            .all()
        )

    def flush(self) -> None:
        try:
            self.db.flush()
        except IntegrityError as e:
            raise StorageConflict(str(e.orig), original=e) from e

    def commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            raise StorageConflict(str(e.orig), original=e) from e

    def add(self, refresh_token: RefreshToken) -> RefreshToken:
        self.db.add(refresh_token)
        self.flush()
        return refresh_token

    def mark_used(self, refresh_token: RefreshToken, replaced_by_token: str) -> bool:
        """
        Compare-and-swap the used flag.

        Returns False when another transaction consumed the token first. An
        existing replaced_by_token link is never overwritten.
        """
        self.flush()
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == refresh_token.id, RefreshToken.used == False)  # noqa: E712
            .values(
                used=True,
                replaced_by_token=func.coalesce(RefreshToken.replaced_by_token, replaced_by_token),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.expire(refresh_token, ["used", "replaced_by_token", "updated_at"])
        return True

    def revoke_all_for_user(self, user_id: int, reason: str) -> int:
        """Bulk-revoke every not-yet-revoked token of a user. Earlier revocation reasons are kept."""
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
            )
            .update(
                {"revoked": True, "reason_revoked": reason, "updated_at": utcnow()},
                synchronize_session="evaluate",
            )
        )

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expiry_date < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
