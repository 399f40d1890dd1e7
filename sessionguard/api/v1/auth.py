from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from typing import List, Optional
from sessionguard.api.v1.dependencies import get_auth_service, get_client_ip, get_current_identity
from sessionguard.core.auth_service import AuthService, AuthTokens
from sessionguard.core.credentials import AuthenticatedIdentity

router = APIRouter()


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int  # Access token expiration time in seconds
    id: int
    username: str
    email: str
    roles: List[str]


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    username: str


class RevokeTokenRequest(BaseModel):
    token: str = Field(..., min_length=1)
    reason: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool
    message: str


def to_token_response(tokens: AuthTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
        id=tokens.identity.id,
        username=tokens.identity.username,
        email=tokens.identity.email,
        roles=tokens.identity.roles,
    )


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Authenticate with username and password.
    Returns a short-lived access token and a refresh token; any earlier
    refresh token of the user stops working.
    """
    tokens = auth_service.login(
        credentials.username,
        credentials.password,
        ip_address=get_client_ip(request),
    )
    return to_token_response(tokens)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    refresh_data: RefreshTokenRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Exchange a refresh token for a new access/refresh pair.
    The presented refresh token is consumed and cannot be used again.
    """
    tokens = auth_service.refresh(refresh_data.refresh_token, ip_address=get_client_ip(request))
    return to_token_response(tokens)


@router.post("/logout", response_model=MessageResponse)
def logout(
    logout_data: LogoutRequest,
    request: Request,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Revoke every refresh token of the signed-in user.
    The username must match the bearer token; an admin may log anyone out.
    """
    if logout_data.username != identity.username and not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot log out another user"
        )
    result = auth_service.logout(logout_data.username, ip_address=get_client_ip(request))
    return MessageResponse(success=result.success, message=result.message)


@router.post("/revoke", response_model=MessageResponse)
def revoke_token(
    revoke_data: RevokeTokenRequest,
    request: Request,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Revoke one of the caller's own refresh tokens."""
    result = auth_service.revoke(
        revoke_data.token,
        revoke_data.reason,
        ip_address=get_client_ip(request),
        owner=identity.username,
    )
    return MessageResponse(success=result.success, message=result.message)
