"""
Authentication endpoints for OTP-gated registration, login and password reset.

- POST /register: Mail a registration OTP and hold the pending account
- POST /verify-registration: Confirm the OTP and create the account
- POST /login: Authenticate and receive access/refresh cookies
- POST /refresh: Rotate cookies using the refresh token
- POST /logout: Clear session cookies
- GET /me: Current user profile
- POST /forgot-password: Mail a password-reset OTP
- POST /verify-forgot-password: Confirm the reset OTP
- POST /reset-password: Set a new password

Failures are raised as AuthServiceError subclasses and rendered by
app.api.error_handlers.
"""

import logging
from fastapi import APIRouter, Depends, Request, Response, status

from app.core.cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from app.core.deps import get_auth_service, get_current_user
from app.core.errors import AuthError
from app.models.user import User
from app.schemas.user import (
    ForgotPasswordRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    UserLoginRequest,
    UserRegisterRequest,
    UserResponse,
)
from app.schemas.verification import VerifyOtpRequest
from app.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


@router.post("/register", response_model=MessageResponse)
def register(
    request: UserRegisterRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Start registration.

    Sends a 4-digit OTP to the email; the account is created only once
    the OTP is verified via /verify-registration.
    """
    message = auth_service.register(request.name, request.email, request.password)
    return MessageResponse(message=message)


@router.post("/verify-registration", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
def verify_registration(
    request: VerifyOtpRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Verify the registration OTP and create the user account."""
    user = auth_service.verify_registration(request.email, request.otp)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=LoginResponse)
def login(
    request: UserLoginRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Authenticate user and set session cookies.

    Access token cookie lives 15 minutes, refresh token cookie 7 days.
    """
    result = auth_service.login(request.email, request.password)
    set_auth_cookies(response, result.tokens)

    return LoginResponse(
        message="Login successful",
        user=UserResponse.model_validate(result.user)
    )


@router.post("/refresh", response_model=LoginResponse)
def refresh_token(
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Issue a fresh cookie pair from the refresh token cookie."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise AuthError(code="INVALID_REFRESH_TOKEN")

    result = auth_service.refresh_tokens(token)
    set_auth_cookies(response, result.tokens)

    return LoginResponse(
        message="Session refreshed",
        user=UserResponse.model_validate(result.user)
    )


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def get_current_user_profile(
    current_user: User = Depends(get_current_user)
):
    """
    Get current authenticated user's profile.

    Requires a valid access token cookie or Bearer header.
    """
    return current_user


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Send a password reset OTP.

    Always returns the same message for unknown emails to prevent
    email enumeration attacks.
    """
    message = auth_service.request_password_reset(request.email)
    return MessageResponse(message=message)


@router.post("/verify-forgot-password", response_model=MessageResponse)
def verify_forgot_password(
    request: VerifyOtpRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    message = auth_service.verify_password_reset_otp(request.email, request.otp)
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    request: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Reset password after the reset OTP was verified.

    The verification grant is single-use and expires after 15 minutes.
    """
    message = auth_service.reset_password(request.email, request.new_password)
    return MessageResponse(message=message)
