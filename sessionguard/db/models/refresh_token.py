"""
Refresh token model.

One row per issued long-lived credential. Rows are never updated back to an
active state except by the conflict recovery path in the rotation policy,
and are hard-deleted only by the purge job once expired.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Integer, Index, false
from sqlalchemy.orm import relationship
import uuid
from sessionguard.db.base import Base, utcnow


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(255), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expiry_date = Column(DateTime, nullable=False, index=True)

    used = Column(Boolean, default=False, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    replaced_by_token = Column(String(255), nullable=True)
    reason_revoked = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        # At most one active (unused, unrevoked) token per user
        Index(
            "uq_refresh_tokens_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=(used == false()) & (revoked == false()),
            sqlite_where=(used == false()) & (revoked == false()),
        ),
    )

    def is_expired(self, now=None) -> bool:
        return (now or utcnow()) > self.expiry_date

    def is_active(self, now=None) -> bool:
        return not self.revoked and not self.used and not self.is_expired(now)

    def __repr__(self):
        return (
            f"<RefreshToken(id={self.id}, user_id={self.user_id}, "
            f"used={self.used}, revoked={self.revoked})>"
        )
