from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt
import secrets
import uuid
import bcrypt
from sessionguard.core.config import settings
from sessionguard.core.exceptions import TokenInvalid

# Use bcrypt directly to avoid passlib compatibility issues with bcrypt 5.0.0


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a bcrypt hash."""
    if not plain_password or not isinstance(plain_password, str):
        return False

    if not hashed_password or not isinstance(hashed_password, str):
        return False

    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.
    Bcrypt has a 72-byte limit for passwords.
    """
    if not password or not isinstance(password, str):
        raise ValueError("Password must be a non-empty string")

    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        raise ValueError("Password is too long. Maximum length is 72 bytes.")

    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def access_token_ttl() -> timedelta:
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed, short-lived JWT access token.

    Args:
        data: Identity claims (sub, user_id, email, roles)
        expires_delta: Token lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES
    """
    to_encode = data.copy()
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta if expires_delta is not None else access_token_ttl())

    to_encode.update({
        "exp": expire,
        "iat": issued_at,
        "type": "access",
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Verify signature, expiry and token type without touching storage.

    Raises:
        TokenInvalid: token is expired, malformed, mis-signed or not an access token
    """
    if not token or not isinstance(token, str):
        raise TokenInvalid("Missing access token")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenInvalid("Access token has expired")
    except JWTError:
        raise TokenInvalid("Could not validate credentials")

    if payload.get("type") != "access":
        raise TokenInvalid("Wrong token type")
    if not payload.get("sub"):
        raise TokenInvalid("Invalid token payload")
    return payload


def generate_refresh_token_value() -> str:
    """Opaque refresh token value, generated before the row exists so predecessors can link to it."""
    return secrets.token_urlsafe(48)
