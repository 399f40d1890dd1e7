"""
Translate authentication errors into JSON responses.

Body shape: {"error": <code>, "message": <text>, "status": <http status>}
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sessionguard.core.exceptions import (
    AccountNotFound,
    AuthError,
    InvalidCredentials,
    TokenCreationFailed,
    TokenInvalid,
    TokenRefreshError,
)
from sessionguard.core.refresh_tokens import token_prefix

logger = logging.getLogger(__name__)

REFRESH_FAILED_MESSAGE = "Refresh token is invalid or expired. Please sign in again."


def error_response(status_code: int, error_code: str, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "message": message, "status": status_code},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for the authentication error hierarchy."""

    @app.exception_handler(TokenRefreshError)
    async def handle_token_refresh_error(request: Request, exc: TokenRefreshError):
        # Clients never learn whether the token was expired, used or revoked
        logger.warning(
            f"Token refresh failed on {request.method} {request.url.path} "
            f"for token {token_prefix(exc.token)}: {exc.reason}"
        )
        if isinstance(exc, TokenCreationFailed):
            return error_response(exc.status_code, exc.error_code, exc.message)
        return error_response(TokenRefreshError.status_code, TokenRefreshError.error_code, REFRESH_FAILED_MESSAGE)

    @app.exception_handler(AccountNotFound)
    async def handle_account_not_found(request: Request, exc: AccountNotFound):
        # Same answer as a wrong password
        return error_response(exc.status_code, exc.error_code, InvalidCredentials().message)

    @app.exception_handler(TokenInvalid)
    async def handle_token_invalid(request: Request, exc: TokenInvalid):
        return error_response(
            exc.status_code,
            exc.error_code,
            exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.error_code, exc.message)
