from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from typing import List, Optional
from sessionguard.api.v1.auth import MessageResponse, RevokeTokenRequest
from sessionguard.api.v1.dependencies import get_auth_service, get_client_ip, require_admin
from sessionguard.core.auth_service import AuthService
from sessionguard.core.credentials import AuthenticatedIdentity
from sessionguard.core.exceptions import AccountNotFound
from sessionguard.db.base import utcnow
from sessionguard.db.models.refresh_token import RefreshToken

router = APIRouter()


class TokenInfo(BaseModel):
    id: str
    username: str
    active: bool
    used: bool
    revoked: bool
    expiry_date: datetime
    created_at: datetime
    reason_revoked: Optional[str] = None


class PurgeResponse(BaseModel):
    deleted: int
    message: str


class RevokeAllResponse(BaseModel):
    username: str
    revoked: int
    message: str


def to_token_info(token: RefreshToken, now: datetime) -> TokenInfo:
    return TokenInfo(
        id=token.id,
        username=token.user.username,
        active=token.is_active(now),
        used=token.used,
        revoked=token.revoked,
        expiry_date=token.expiry_date,
        created_at=token.created_at,
        reason_revoked=token.reason_revoked,
    )


@router.get("/tokens", response_model=List[TokenInfo])
def list_tokens(
    active_only: bool = Query(False, description="Only tokens that are unused, unrevoked and unexpired"),
    admin: AuthenticatedIdentity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service)
):
    """List refresh tokens, newest first. Token values are never returned."""
    tokens = auth_service.list_active_tokens() if active_only else auth_service.list_all_tokens()
    now = utcnow()
    return [to_token_info(token, now) for token in tokens]


@router.post("/tokens/revoke", response_model=MessageResponse)
def revoke_token(
    revoke_data: RevokeTokenRequest,
    request: Request,
    admin: AuthenticatedIdentity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service)
):
    result = auth_service.admin_revoke(
        revoke_data.token,
        revoke_data.reason,
        ip_address=get_client_ip(request),
        actor=admin.username,
    )
    return MessageResponse(success=result.success, message=result.message)


@router.post("/tokens/purge", response_model=PurgeResponse)
def purge_tokens(
    admin: AuthenticatedIdentity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Delete every expired refresh token now instead of waiting for the nightly job."""
    deleted = auth_service.purge_expired_tokens()
    return PurgeResponse(deleted=deleted, message=f"Purged {deleted} expired refresh tokens")


@router.post("/users/{username}/revoke-tokens", response_model=RevokeAllResponse)
def revoke_user_tokens(
    username: str,
    request: Request,
    reason: Optional[str] = Query(None, max_length=200),
    admin: AuthenticatedIdentity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service)
):
    try:
        revoked = auth_service.revoke_all_for_user(username, reason, ip_address=get_client_ip(request))
    except AccountNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return RevokeAllResponse(
        username=username,
        revoked=revoked,
        message=f"Revoked {revoked} refresh tokens for user {username}",
    )
