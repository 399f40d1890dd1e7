from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from sessionguard.core.auth_events import AuthEventPublisher, get_event_publisher
from sessionguard.core.auth_service import AuthService
from sessionguard.core.credentials import AuthenticatedIdentity
from sessionguard.core.security import verify_access_token
from sessionguard.db.session import get_db

# Note: tokenUrl is only used for OpenAPI docs; login itself takes a JSON body
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login")


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, else the peer address."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


def get_auth_service(
    db: Session = Depends(get_db),
    events: AuthEventPublisher = Depends(get_event_publisher),
) -> AuthService:
    return AuthService(db, events=events)


def get_current_identity(token: str = Depends(oauth2_scheme)) -> AuthenticatedIdentity:
    """
    Identity carried by the bearer access token.
    Verified from the signature alone, the database is never consulted.
    """
    payload = verify_access_token(token)
    return AuthenticatedIdentity(
        id=payload.get("user_id"),
        username=payload["sub"],
        email=payload.get("email"),
        roles=list(payload.get("roles") or []),
    )


def require_admin(
    identity: AuthenticatedIdentity = Depends(get_current_identity)
) -> AuthenticatedIdentity:
    """Verify that the caller holds the admin role."""
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin role required."
        )
    return identity
