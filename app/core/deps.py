"""
FastAPI dependencies for authentication.

These dependencies wire the auth service to its collaborators and
extract the current user from the access token.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.cookies import ACCESS_COOKIE
from app.core.database import get_db
from app.core.errors import AuthError
from app.core.state_store import StateStore, get_state_store
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.email_service import Mailer, get_mailer

# Bearer header is optional; the access cookie is the primary transport
security = HTTPBearer(auto_error=False)


def get_auth_service(
    db: Session = Depends(get_db),
    store: StateStore = Depends(get_state_store),
    mailer: Mailer = Depends(get_mailer),
) -> AuthService:
    return AuthService(db=db, store=store, mailer=mailer)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Resolve the current user from the access-token cookie or a Bearer header.

    Raises:
        AuthError: If no token is present, it is invalid, or the user is gone
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if not token and credentials:
        token = credentials.credentials
    if not token:
        raise AuthError(code="INVALID_ACCESS_TOKEN")

    return auth_service.get_user_from_access_token(token)
