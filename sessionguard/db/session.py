from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sessionguard.core.config import settings

# Lazy initialization so importing the package never opens a connection
_engine = None
_SessionLocal = None


def normalize_database_url(url: str) -> str:
    """Convert postgres:// or postgresql:// to postgresql+psycopg:// for psycopg3."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _connect_args(database_url: str) -> dict:
    """Bound every store call by DB_STATEMENT_TIMEOUT_MS."""
    timeout_ms = settings.DB_STATEMENT_TIMEOUT_MS
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={timeout_ms}"}
    if database_url.startswith("sqlite"):
        # Busy timeout: how long a writer waits on another writer's lock
        return {"timeout": timeout_ms / 1000, "check_same_thread": False}
    return {}


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        database_url = normalize_database_url(settings.DATABASE_URL)
        _engine = create_engine(
            database_url,
            pool_pre_ping=True,
            connect_args=_connect_args(database_url),
        )
    return _engine


def get_session_local():
    """Get or create session maker."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def get_db():
    """Dependency to get database session."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
