"""
Auth orchestration: registration, login and password reset.

Composes the lockout engine, the OTP engine, the credential store and
the token issuer. This module owns the ordering of checks and the
mapping of failures: structured AuthServiceError subclasses propagate
unchanged, anything unexpected becomes the operation's InternalFailure.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from functools import partial
from typing import Callable

from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import crud
from app.core import keys
from app.core.errors import (
    AuthError,
    InternalFailure,
    InvalidSession,
    LoginFailed,
    PasswordResetFailed,
    RegistrationFailed,
    TokenRefreshFailed,
    ValidationError,
    VerificationFailed,
    wrap_failures,
)
from app.core.rate_limiter import RateLimiter
from app.core.security import (
    TokenPair,
    decode_access_token,
    decode_refresh_token,
    get_password_hash,
    issue_tokens,
    verify_dummy_password,
    verify_password,
)
from app.core.state_store import StateStore
from app.core.verification import OtpEngine, OtpPurpose
from app.models.user import User
from app.schemas.user import PendingRegistration
from app.services.email_service import Mailer

logger = logging.getLogger(__name__)

PENDING_REGISTRATION_TTL_SECONDS = 15 * 60
CHANGE_PASSWORD_GRANT_TTL_SECONDS = 15 * 60

REGISTRATION_OTP_SENT = "OTP sent to email. Please verify your account."
RESET_OTP_SENT = "If an account with that email exists, an OTP has been sent."
RESET_ALREADY_VERIFIED = "OTP already verified. You can now reset your password."
RESET_OTP_VERIFIED = "OTP verified. You can now reset your password."
PASSWORD_RESET_DONE = "Password reset successfully. You can now log in with your new password."

# Independent side effects (mail, counters, pending record) run on this pool
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="auth_side_effects")


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair


def run_concurrently(*calls: Callable[[], object]) -> None:
    """
    Run independent calls in parallel and wait for all of them.

    There is no rollback: if any call failed, the first failure (in
    argument order) is re-raised once every call has finished.
    """
    futures = [_executor.submit(call) for call in calls]
    wait(futures)
    for future in futures:
        error = future.exception()
        if error is not None:
            raise error


class AuthService:
    def __init__(self, db: Session, store: StateStore, mailer: Mailer):
        self.db = db
        self.store = store
        self.rate_limiter = RateLimiter(store)
        self.otp = OtpEngine(store, mailer)

    @wrap_failures(RegistrationFailed)
    def register(self, name: str, email: str, password: str) -> str:
        """
        Start a registration: mail an OTP and park the hashed credentials.

        No account exists until verify_registration() succeeds.

        Raises:
            ValidationError: EMAIL_EXISTS
            TemporarilyLocked: OTP lock, spam lock or cooldown active
            RegistrationFailed: any unexpected failure
        """
        email = keys.normalize_email(email)

        if crud.user.get_by_email(self.db, email):
            raise ValidationError("User already exists with this email", code="EMAIL_EXISTS")

        self.rate_limiter.check_otp_restrictions(email)

        pending = PendingRegistration(name=name, password_hash=get_password_hash(password))
        run_concurrently(
            partial(self.otp.send_otp, email, name, OtpPurpose.REGISTRATION),
            partial(self.rate_limiter.track_otp_request, email),
            partial(
                self.store.set,
                keys.pending_registration(email),
                pending.model_dump_json(),
                PENDING_REGISTRATION_TTL_SECONDS,
            ),
        )

        logger.info(f"Registration started for {email}")
        return REGISTRATION_OTP_SENT

    @wrap_failures(VerificationFailed)
    def verify_registration(self, email: str, otp: str) -> User:
        """
        Confirm the registration OTP and create the account.

        Raises:
            InvalidCode / TooManyAttempts / TemporarilyLocked / NotFoundError: OTP failures
            InvalidSession: OTP was valid but the pending registration expired
            ValidationError: EMAIL_EXISTS if the email was taken meanwhile
        """
        email = keys.normalize_email(email)

        self.otp.verify_otp(email, otp).raise_for_outcome()

        pending_key = keys.pending_registration(email)
        raw = self.store.get(pending_key)
        if raw is None:
            logger.warning(f"OTP verified but no pending registration for {email}")
            raise InvalidSession()

        pending = PendingRegistration.model_validate_json(raw)
        try:
            user = crud.user.create(
                self.db,
                name=pending.name,
                email=email,
                hashed_password=pending.password_hash,
            )
        except IntegrityError:
            raise ValidationError("User already exists with this email", code="EMAIL_EXISTS")

        self.store.delete(pending_key)
        self.rate_limiter.clear_otp_requests(email)

        logger.info(f"New user registered: {user.email} (tenant_id: {user.tenant_id})")
        return user

    @wrap_failures(LoginFailed)
    def login(self, email: str, password: str) -> LoginResult:
        """
        Authenticate with email and password.

        Unknown email, wrong password and inactive account all count as a
        failed attempt and raise the same AuthError.

        Raises:
            TooManyAttempts: 5 or more recent failures
            AuthError: credentials rejected
        """
        email = keys.normalize_email(email)

        self.rate_limiter.check_login_rate_limit(email)

        user = crud.user.get_by_email(self.db, email)
        if user is None:
            password_ok = verify_dummy_password(password)
        else:
            password_ok = verify_password(password, user.hashed_password)

        if not password_ok or not user.is_active:
            self.rate_limiter.track_failed_login(email)
            raise AuthError()

        self.rate_limiter.clear_login_attempts(email)
        tokens = issue_tokens(str(user.id), user.role)
        crud.user.touch_last_login(self.db, user)

        logger.info(f"User logged in: {user.email}")
        return LoginResult(user=user, tokens=tokens)

    @wrap_failures(PasswordResetFailed)
    def request_password_reset(self, email: str) -> str:
        """
        Mail a password-reset OTP.

        Unknown emails get the same message as known ones.

        Raises:
            TemporarilyLocked: OTP lock, spam lock or cooldown active
        """
        email = keys.normalize_email(email)

        user = crud.user.get_by_email(self.db, email)
        if not user:
            logger.info(f"Password reset requested for non-existent email: {email}")
            return RESET_OTP_SENT

        if self.store.get(keys.change_password(email)) is not None:
            return RESET_ALREADY_VERIFIED

        self.rate_limiter.check_otp_restrictions(email)

        run_concurrently(
            partial(self.otp.send_otp, email, user.name, OtpPurpose.PASSWORD_RESET),
            partial(self.rate_limiter.track_otp_request, email),
        )

        logger.info(f"Password reset OTP sent to {email}")
        return RESET_OTP_SENT

    @wrap_failures(PasswordResetFailed)
    def verify_password_reset_otp(self, email: str, otp: str) -> str:
        """Confirm the reset OTP and grant one password change."""
        email = keys.normalize_email(email)

        self.otp.verify_otp(email, otp).raise_for_outcome()
        self.store.set(keys.change_password(email), "true", CHANGE_PASSWORD_GRANT_TTL_SECONDS)

        return RESET_OTP_VERIFIED

    @wrap_failures(PasswordResetFailed)
    def reset_password(self, email: str, new_password: str) -> str:
        """
        Set a new password; consumes the change-password grant.

        Raises:
            AuthError: no grant (OTP not verified, expired, or already used)
            ValidationError: SAME_PASSWORD
        """
        email = keys.normalize_email(email)
        grant_key = keys.change_password(email)

        if self.store.get(grant_key) is None:
            raise AuthError(code="RESET_NOT_AUTHORIZED")

        user = crud.user.get_by_email(self.db, email)
        if not user:
            raise AuthError(code="RESET_NOT_AUTHORIZED")

        if verify_password(new_password, user.hashed_password):
            raise ValidationError(
                "New password cannot be the same as the old password",
                code="SAME_PASSWORD",
            )

        crud.user.update_password(self.db, email, get_password_hash(new_password))
        self.store.delete(grant_key)
        self.rate_limiter.clear_login_attempts(email)

        logger.info(f"Password successfully reset for user: {email}")
        return PASSWORD_RESET_DONE

    @wrap_failures(TokenRefreshFailed)
    def refresh_tokens(self, refresh_token: str) -> LoginResult:
        """
        Issue a new token pair from a valid refresh token.

        Raises:
            AuthError: token invalid/expired, or user missing/inactive
        """
        user = self._user_from_token(refresh_token, decode_refresh_token, "INVALID_REFRESH_TOKEN")
        return LoginResult(user=user, tokens=issue_tokens(str(user.id), user.role))

    @wrap_failures(InternalFailure)
    def get_user_from_access_token(self, access_token: str) -> User:
        return self._user_from_token(access_token, decode_access_token, "INVALID_ACCESS_TOKEN")

    def _user_from_token(self, token: str, decode: Callable[[str], dict], error_code: str) -> User:
        try:
            payload = decode(token)
            user_id = uuid.UUID(payload["sub"])
        except (JWTError, KeyError, ValueError):
            raise AuthError(code=error_code)

        user = crud.user.get_by_id(self.db, user_id)
        if not user or not user.is_active:
            raise AuthError(code=error_code)
        return user
