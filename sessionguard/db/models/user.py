from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
import enum
from sessionguard.db.base import Base, utcnow


class UserRole(str, enum.Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class User(Base):
    """Account record. Owned by user management; the token subsystem only reads it."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    roles = Column(JSON, nullable=False, default=lambda: [UserRole.USER.value])
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        passive_deletes=True,
    )

    def is_locked(self, now=None) -> bool:
        now = now or utcnow()
        return self.locked_until is not None and self.locked_until > now

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, active={self.is_active})>"
