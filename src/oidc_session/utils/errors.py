"""Custom exceptions for the OIDC session manager.

This module provides structured error handling with specific exception types
for the different ways a session can fail. All exceptions inherit from AuthError.
"""
from dataclasses import dataclass
from typing import Optional


class AuthError(Exception):
    """Base exception for all oidc-session errors.

    Attributes:
        message: Human-readable error description.
        code: Stable machine-readable error code.
    """

    code = "auth_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.message = message
        if code:
            self.code = code
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message with its code."""
        return f"{self.message} ({self.code})"


class ConfigurationError(AuthError):
    """Raised when the issuer domain or client id is not configured."""

    code = "configuration_error"


class MissingRefreshToken(AuthError):
    """Raised when a refresh is attempted with no persisted refresh token."""

    code = "missing_refresh_token"

    def __init__(self, message: str = "No refresh token is stored") -> None:
        super().__init__(message)


class AuthorizationDenied(AuthError):
    """Raised when the provider returns an error result during login."""

    code = "authorization_denied"


class TokenExchangeFailure(AuthError):
    """Raised when the token endpoint rejects a code or refresh-token exchange.

    Attributes:
        status_code: HTTP status returned by the token endpoint, when known.
        oauth_error: OAuth error code (e.g. ``invalid_grant``), when known.
    """

    code = "token_exchange_failure"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        oauth_error: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.oauth_error = oauth_error
        super().__init__(message)

    def format_message(self) -> str:
        details = []
        if self.oauth_error:
            details.append(self.oauth_error)
        if self.status_code:
            details.append(f"HTTP {self.status_code}")
        if details:
            return f"{self.message} ({self.code}: {', '.join(details)})"
        return super().format_message()


class StorageFailure(AuthError):
    """Raised when the persisted refresh token cannot be read, written or deleted.

    Never surfaced to callers of login or refresh; reported and logged only.
    """

    code = "storage_failure"

    def __init__(self, message: str, operation: str) -> None:
        self.operation = operation
        super().__init__(message)


class DecodeFailure(AuthError):
    """Raised when an identity token is malformed."""

    code = "decode_failure"


class StaleSessionError(AuthError):
    """Raised to callers of a refresh that finished after the session was reset."""

    code = "stale_session"

    def __init__(self, message: str = "Session was reset while the refresh was in flight") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ErrorInfo:
    """Immutable snapshot of an error, as kept in the session state."""

    code: str
    message: str

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        if isinstance(error, AuthError):
            return cls(code=error.code, message=error.message)
        return cls(code=AuthError.code, message=str(error) or type(error).__name__)


def format_error(action: str, error: Exception) -> str:
    """Format an error message consistently.

    Args:
        action: The action that failed (e.g., "Login", "Logout").
        error: The exception that occurred.

    Returns:
        Formatted error string.
    """
    if isinstance(error, AuthError):
        return f"{action} failed: {error.message}"
    return f"{action} failed: {str(error)}"
