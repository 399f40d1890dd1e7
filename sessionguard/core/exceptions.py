"""
Error taxonomy for the authentication subsystem.

Every error carries an HTTP status and a stable error code so the API layer
can translate it without knowing the storage details behind it.
"""
from datetime import datetime
from typing import Optional


class AuthError(Exception):
    """Base class for all caller-visible authentication errors."""

    status_code: int = 400
    error_code: str = "auth_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Credential Gate

class CredentialError(AuthError):
    status_code = 401
    error_code = "invalid_credentials"


class InvalidCredentials(CredentialError):
    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class AccountNotFound(CredentialError):
    """Unknown username. Reported to clients like a bad password."""

    def __init__(self, username: str):
        super().__init__(f"User not found with username: {username}")
        self.username = username


class AccountDeactivated(CredentialError):
    status_code = 403
    error_code = "account_deactivated"

    def __init__(self, message: str = "Account is deactivated"):
        super().__init__(message)


class AccountLocked(CredentialError):
    status_code = 423
    error_code = "account_locked"

    def __init__(self, locked_until: datetime):
        super().__init__(f"Account is temporarily locked until {locked_until.isoformat()}")
        self.locked_until = locked_until


# Access tokens

class TokenInvalid(AuthError):
    status_code = 401
    error_code = "token_invalid"

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


# Refresh tokens

class TokenRefreshError(AuthError):
    """
    Any failure of the refresh chain.

    Carries the presented token value and the precise reason; the API layer
    shows clients a generalized message and logs the reason.
    """

    status_code = 403
    error_code = "token_refresh_failed"

    def __init__(self, token: Optional[str], reason: str):
        super().__init__(reason)
        self.token = token
        self.reason = reason


class TokenNotFound(TokenRefreshError):
    error_code = "token_not_found"

    def __init__(self, token: Optional[str]):
        super().__init__(token, "Refresh token not found in database")


class TokenExpired(TokenRefreshError):
    error_code = "token_expired"

    def __init__(self, token: str):
        super().__init__(token, "Refresh token was expired. Please sign in again.")


class TokenAlreadyUsed(TokenRefreshError):
    error_code = "token_already_used"

    def __init__(self, token: str):
        super().__init__(token, "Refresh token was already used. Please sign in again.")


class TokenRevoked(TokenRefreshError):
    error_code = "token_revoked"

    def __init__(self, token: str):
        super().__init__(token, "Refresh token was revoked. Please sign in again.")


class TokenCreationFailed(TokenRefreshError):
    """Unrecoverable failure while issuing a refresh token; the caller must retry the whole request."""

    status_code = 500
    error_code = "token_creation_failed"

    def __init__(self, token: Optional[str] = None, reason: str = "Could not create or find valid refresh token"):
        super().__init__(token, reason)


# Storage

class StorageConflict(AuthError):
    """A uniqueness constraint rejected a write. Recovered internally whenever possible."""

    status_code = 409
    error_code = "conflict"

    def __init__(self, message: str = "Refresh token storage conflict", original: Optional[Exception] = None):
        super().__init__(message)
        self.original = original
