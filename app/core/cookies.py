"""
Session cookie transport for issued tokens.

Both cookies are Secure, HttpOnly and SameSite=None so that the API can
sit on a different origin than the frontend.
"""

from fastapi import Response

from app.core.config import settings
from app.core.security import TokenPair

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

ACCESS_COOKIE_MAX_AGE = 15 * 60
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60


def set_secure_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="none",
    )


def set_auth_cookies(response: Response, tokens: TokenPair) -> None:
    set_secure_cookie(response, ACCESS_COOKIE, tokens.access_token, ACCESS_COOKIE_MAX_AGE)
    set_secure_cookie(response, REFRESH_COOKIE, tokens.refresh_token, REFRESH_COOKIE_MAX_AGE)


def clear_auth_cookies(response: Response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, secure=settings.COOKIE_SECURE, httponly=True, samesite="none")
