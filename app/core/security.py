"""
Security utilities for JWT issuance and password hashing.

Access and refresh tokens are signed with HS256 using two distinct
secrets, so a leaked refresh secret cannot mint access tokens.
Passwords are hashed using bcrypt.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.core.config import settings

# Password hashing context (bcrypt)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
DEFAULT_ROLE = "user"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    # Bcrypt has a 72-byte limit - truncate if necessary
    password_bytes = plain_password.encode('utf-8')[:72]
    return pwd_context.verify(password_bytes, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Bcrypt has a 72-byte limit. Passwords longer than 72 bytes
    are automatically truncated to comply with this limitation.
    """
    password_bytes = password.encode('utf-8')[:72]
    return pwd_context.hash(password_bytes)


@lru_cache
def _dummy_password_hash() -> str:
    return get_password_hash(secrets.token_urlsafe(16))


def verify_dummy_password(plain_password: str) -> bool:
    """
    Run a bcrypt check against a throwaway hash.

    Used when no account matches, so an unknown email costs the same
    time as a wrong password. Always returns False.
    """
    verify_password(plain_password, _dummy_password_hash())
    return False


def _encode(subject: str, role: str, token_type: str, expires_delta: timedelta, secret: str) -> str:
    to_encode = {
        "sub": subject,
        "role": role,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_access_token(subject: str, role: str = DEFAULT_ROLE, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        subject: User id the token is issued for
        role: Role claim
        expires_delta: Optional lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token as a string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(subject, role, ACCESS_TOKEN_TYPE, expires_delta, settings.ACCESS_TOKEN_SECRET)


def create_refresh_token(subject: str, role: str = DEFAULT_ROLE) -> str:
    """Create a JWT refresh token with longer expiration."""
    expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(subject, role, REFRESH_TOKEN_TYPE, expires_delta, settings.REFRESH_TOKEN_SECRET)


def issue_tokens(subject: str, role: str = DEFAULT_ROLE) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(subject, role),
        refresh_token=create_refresh_token(subject, role),
    )


def _decode(token: str, secret: str, token_type: str) -> dict:
    payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    if payload.get("type") != token_type or not payload.get("sub"):
        raise JWTError(f"Not a valid {token_type} token")
    return payload


def decode_access_token(token: str) -> dict:
    """
    Decode and validate an access token.

    Raises:
        JWTError: If token is invalid, expired, or not an access token
    """
    return _decode(token, settings.ACCESS_TOKEN_SECRET, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict:
    """
    Decode and validate a refresh token.

    Raises:
        JWTError: If token is invalid, expired, or not a refresh token
    """
    return _decode(token, settings.REFRESH_TOKEN_SECRET, REFRESH_TOKEN_TYPE)
