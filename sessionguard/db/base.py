from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the format every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
