"""
Error kinds raised by the authentication core.

Every failure carries a stable kind, an HTTP status, a machine-readable
code and a user-facing message. Structured errors propagate unchanged
through the auth service; anything else is wrapped into an
operation-scoped InternalFailure by wrap_failures().
"""

import functools
import logging
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    AUTH = "auth_error"
    TEMPORARILY_LOCKED = "temporarily_locked"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    NOT_FOUND = "not_found"
    INTERNAL = "internal_failure"


class AuthServiceError(Exception):
    """Base class for structured failures mapped to HTTP responses."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Something went wrong. Please try again."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        self.details = details or {}


class ValidationError(AuthServiceError):
    """Malformed input or a business-rule violation (400)."""
    kind = ErrorKind.VALIDATION
    status_code = 400
    code = "INVALID_INPUT"
    default_message = "Invalid request data"


class InvalidCode(ValidationError):
    """Submitted OTP does not match the active code."""
    code = "INVALID_OTP"

    def __init__(self, attempts_left: int) -> None:
        super().__init__(
            f"Incorrect OTP. {attempts_left} attempts left",
            details={"attempts_left": attempts_left},
        )
        self.attempts_left = attempts_left


class AuthError(AuthServiceError):
    """
    Credential or authorization failure (401).

    The message is fixed so that callers cannot tell an unknown account
    from a wrong password.
    """
    kind = ErrorKind.AUTH
    status_code = 401
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"

    def __init__(self, *, code: Optional[str] = None) -> None:
        super().__init__(code=code)


class TemporarilyLocked(AuthServiceError):
    """A lock, spam lock or cooldown is active for the identity (429)."""
    kind = ErrorKind.TEMPORARILY_LOCKED
    status_code = 429
    code = "TEMPORARILY_LOCKED"
    default_message = "Requests are temporarily locked. Please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, code=code, details=details)
        self.retry_after = retry_after


class TooManyAttempts(TemporarilyLocked):
    """Attempt budget exhausted; the caller should back off (429)."""
    kind = ErrorKind.TOO_MANY_ATTEMPTS
    code = "TOO_MANY_ATTEMPTS"
    default_message = "Too many attempts. Please try again later."


class NotFoundError(AuthServiceError):
    """Expired or never-issued OTP or pending record (404)."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class InvalidSession(NotFoundError):
    """Pending registration vanished between OTP verification and account creation."""
    code = "INVALID_SESSION"
    default_message = "Registration session expired or invalid. Please register again."


class InternalFailure(AuthServiceError):
    """Opaque failure; never exposes internal detail."""
    kind = ErrorKind.INTERNAL
    status_code = 500
    code = "INTERNAL_ERROR"


class RegistrationFailed(InternalFailure):
    code = "REGISTRATION_FAILED"
    default_message = "Registration failed. Please try again."


class VerificationFailed(InternalFailure):
    code = "VERIFICATION_FAILED"
    default_message = "Verification failed. Please try again."


class LoginFailed(InternalFailure):
    code = "LOGIN_FAILED"
    default_message = "Login failed. Please try again."


class PasswordResetFailed(InternalFailure):
    code = "PASSWORD_RESET_FAILED"
    default_message = "Password reset failed. Please try again."


class TokenRefreshFailed(InternalFailure):
    code = "TOKEN_REFRESH_FAILED"
    default_message = "Could not refresh session. Please log in again."


def wrap_failures(failure_cls):
    """
    Decorate an auth operation so unexpected exceptions surface as failure_cls.

    AuthServiceError subclasses pass through untouched; the original
    exception is chained as __cause__ for development diagnostics.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except AuthServiceError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in {func.__name__}: {e}")
                raise failure_cls() from e
        return wrapper
    return decorator
