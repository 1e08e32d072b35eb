"""
Core OTP issuance and verification logic.

Per identity the OTP state is a small state machine:

    NO_CODE --send--> CODE_ACTIVE(attempts)
    CODE_ACTIVE --correct code--> NO_CODE (code and attempts deleted)
    CODE_ACTIVE --wrong code, attempts < 2--> CODE_ACTIVE(attempts + 1)
    CODE_ACTIVE --3rd wrong code--> LOCKED (15 min, code deleted)
    LOCKED --TTL elapses--> NO_CODE

verify_otp() returns an OtpVerification result instead of raising, so the
caller decides how each outcome is surfaced.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core import keys
from app.core.errors import InvalidCode, NotFoundError, TemporarilyLocked, TooManyAttempts
from app.core.state_store import StateStore
from app.services.email_service import EmailDeliveryError, Mailer

logger = logging.getLogger(__name__)


# Security constants
OTP_TTL_SECONDS = 5 * 60
OTP_COOLDOWN_SECONDS = 60
OTP_LOCK_SECONDS = 15 * 60
OTP_ATTEMPTS_TTL_SECONDS = 15 * 60
MAX_FAILED_ATTEMPTS = 2  # the 3rd wrong code locks
OTP_MIN = 1000
OTP_MAX = 9999
OTP_SUBJECT = "Your OTP Code"


class OtpPurpose(str, Enum):
    """Why an OTP is issued; the value is the mail template name."""
    REGISTRATION = "user-activation-mail"
    PASSWORD_RESET = "forgot-password-user-mail"


class OtpStatus(str, Enum):
    NO_CODE = "no_code"
    CODE_ACTIVE = "code_active"
    LOCKED = "locked"


@dataclass(frozen=True)
class OtpState:
    status: OtpStatus
    attempts: int = 0
    retry_after: Optional[int] = None


class OtpOutcome(str, Enum):
    VERIFIED = "verified"
    INVALID_CODE = "invalid_code"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    LOCKED = "locked"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OtpVerification:
    """Result of a verification attempt."""
    outcome: OtpOutcome
    attempts_left: Optional[int] = None
    retry_after: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is OtpOutcome.VERIFIED

    def raise_for_outcome(self) -> None:
        """Raise the structured error matching a failed outcome; no-op when verified."""
        if self.outcome is OtpOutcome.VERIFIED:
            return
        if self.outcome is OtpOutcome.INVALID_CODE:
            raise InvalidCode(self.attempts_left)
        if self.outcome is OtpOutcome.TOO_MANY_ATTEMPTS:
            raise TooManyAttempts(
                "Too many failed attempts. OTP requests are temporarily locked.",
                code="OTP_ATTEMPTS_EXCEEDED",
                retry_after=self.retry_after,
            )
        if self.outcome is OtpOutcome.LOCKED:
            raise TemporarilyLocked(
                "OTP verification is temporarily locked",
                code="OTP_LOCKED",
                retry_after=self.retry_after,
            )
        raise NotFoundError("OTP expired or not found", code="OTP_NOT_FOUND")


def generate_otp() -> str:
    """
    Generate a 4-digit code in the inclusive range 1000-9999.

    Uses the secrets module so codes cannot be predicted.
    """
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


class OtpEngine:
    def __init__(self, store: StateStore, mailer: Mailer):
        self.store = store
        self.mailer = mailer

    def state(self, email: str) -> OtpState:
        """Current verification state; an active lock supersedes any code."""
        lock_key = keys.otp_lock(email)
        if self.store.get(lock_key) is not None:
            return OtpState(status=OtpStatus.LOCKED, retry_after=self.store.ttl(lock_key))

        if self.store.get(keys.otp(email)) is None:
            return OtpState(status=OtpStatus.NO_CODE)

        attempts = int(self.store.get(keys.otp_attempts(email)) or 0)
        return OtpState(status=OtpStatus.CODE_ACTIVE, attempts=attempts)

    def send_otp(self, email: str, name: str, purpose: OtpPurpose) -> None:
        """
        Generate a code, mail it, then store it with a resend cooldown.

        The code is stored only after the mailer accepts the message, so a
        delivery failure never leaves a verifiable code behind.

        Raises:
            EmailDeliveryError: If the mailer reports failure
        """
        code = generate_otp()

        sent = self.mailer.send_email(
            to_email=email,
            subject=OTP_SUBJECT,
            template_name=purpose.value,
            context={"name": name, "email": email, "otp": code},
        )
        if not sent:
            raise EmailDeliveryError(f"Failed to send {purpose.value} to {email}")

        self.store.set(keys.otp(email), code, OTP_TTL_SECONDS)
        self.store.set(keys.otp_cooldown(email), "true", OTP_COOLDOWN_SECONDS)
        logger.info(f"OTP issued for {keys.normalize_email(email)} ({purpose.name.lower()})")

    def verify_otp(self, email: str, submitted_code: str) -> OtpVerification:
        """
        Check a submitted code against the active one.

        Returns:
            OtpVerification: VERIFIED, INVALID_CODE (with attempts left),
            TOO_MANY_ATTEMPTS (lock just set), LOCKED or NOT_FOUND
        """
        state = self.state(email)

        if state.status is OtpStatus.LOCKED:
            return OtpVerification(OtpOutcome.LOCKED, retry_after=state.retry_after)

        if state.status is OtpStatus.NO_CODE:
            return OtpVerification(OtpOutcome.NOT_FOUND)

        code_key = keys.otp(email)
        attempts_key = keys.otp_attempts(email)
        stored_code = self.store.get(code_key)

        if stored_code is None:
            # expired between the state read and now
            return OtpVerification(OtpOutcome.NOT_FOUND)

        # compare_digest rejects non-ASCII str; bytes make any such input a plain mismatch
        if not secrets.compare_digest(stored_code.encode("utf-8"), str(submitted_code).encode("utf-8")):
            if state.attempts >= MAX_FAILED_ATTEMPTS:
                self.store.set(keys.otp_lock(email), "1", OTP_LOCK_SECONDS)
                self.store.delete(attempts_key)
                self.store.delete(code_key)
                logger.warning(f"OTP locked for {keys.normalize_email(email)} after repeated failures")
                return OtpVerification(OtpOutcome.TOO_MANY_ATTEMPTS, retry_after=OTP_LOCK_SECONDS)

            self.store.incr(attempts_key)
            self.store.expire(attempts_key, OTP_ATTEMPTS_TTL_SECONDS)
            return OtpVerification(
                OtpOutcome.INVALID_CODE,
                attempts_left=MAX_FAILED_ATTEMPTS - state.attempts,
            )

        self.store.delete(code_key)
        self.store.delete(attempts_key)
        return OtpVerification(OtpOutcome.VERIFIED)
