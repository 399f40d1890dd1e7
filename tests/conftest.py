"""
Shared fixtures.

Settings are read at import time, so the environment is prepared before any
sessionguard module is imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./sessionguard-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-automation-only")
os.environ["TOKEN_PURGE_ENABLED"] = "false"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sessionguard.core.auth_events import AuthEventPublisher, get_event_publisher
from sessionguard.core.auth_service import AuthService
from sessionguard.core.security import get_password_hash
from sessionguard.db import session as db_session
from sessionguard.db.base import Base, utcnow
from sessionguard.db.models import RefreshToken, User, UserRole
from sessionguard.db.session import get_db

PASSWORD = "CorrectHorse42!"
# Hashing is deliberately slow; every test user shares one hash
PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several sessions can interleave on the same data."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'auth.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    # Code that opens its own sessions (the purge job) uses the test database too
    monkeypatch.setattr(db_session, "_engine", engine)
    monkeypatch.setattr(db_session, "_SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make_user(username="alice", roles=None, is_active=True, locked_until=None):
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=PASSWORD_HASH,
            full_name=username.title(),
            is_active=is_active,
            locked_until=locked_until,
            roles=roles or [UserRole.USER.value],
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user("root", roles=[UserRole.USER.value, UserRole.ADMIN.value])


@pytest.fixture
def make_token(db):
    """Insert a token row directly, bypassing the rotation policy."""
    counter = {"n": 0}

    def _make_token(owner, expires_in=timedelta(days=1), used=False, revoked=False, created_offset=None):
        counter["n"] += 1
        now = utcnow()
        token = RefreshToken(
            user_id=owner.id,
            token=f"{owner.username}-token-{counter['n']}",
            expiry_date=now + expires_in,
            used=used,
            revoked=revoked,
            created_at=now + (created_offset or timedelta(seconds=counter["n"])),
        )
        db.add(token)
        db.commit()
        return token
    return _make_token


class RecordingListener:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def kinds(self):
        return [event.event_type for event in self.events]


@pytest.fixture
def audit():
    return RecordingListener()


@pytest.fixture
def publisher(audit):
    publisher = AuthEventPublisher([audit])
    yield publisher
    publisher.shutdown(wait=True)


@pytest.fixture
def auth_service(db, publisher):
    return AuthService(db, events=publisher)


@pytest.fixture
def client(session_factory, publisher):
    from sessionguard.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def active_tokens():
    """Rows of a user that satisfy is_active, read fresh from the database."""
    def _active_tokens(session, owner):
        session.expire_all()
        now = utcnow()
        return [
            t for t in session.query(RefreshToken).filter(RefreshToken.user_id == owner.id).all()
            if t.is_active(now)
        ]
    return _active_tokens
