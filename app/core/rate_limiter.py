"""
Per-identity rate limiting and lockouts for OTP requests and logins.

OTP requests are gated by three independent, TTL-bound markers:
- otp_lock:      set by the OTP engine after too many wrong codes (15 min)
- otp_spam_lock: set on the 3rd OTP request inside the counting window (1 hour)
- otp_cooldown:  set after every OTP send (60 s)

Failed logins are counted per identity for 15 minutes; 5 failures block
further attempts until the counter expires or a login succeeds.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core import keys
from app.core.errors import TemporarilyLocked, TooManyAttempts
from app.core.state_store import StateStore

logger = logging.getLogger(__name__)


# OTP request limits
OTP_SPAM_LOCK_SECONDS = 60 * 60
OTP_REQUEST_WINDOW_SECONDS = 10 * 60
OTP_REQUESTS_BEFORE_SPAM_LOCK = 2

# Login limits
MAX_FAILED_LOGINS = 5
LOGIN_ATTEMPT_WINDOW_SECONDS = 15 * 60


class OtpGate(str, Enum):
    CLEAR = "clear"
    LOCKED = "locked"
    SPAM_LOCKED = "spam_locked"
    COOLDOWN = "cooldown"


_GATE_ERRORS = {
    OtpGate.LOCKED: ("OTP_LOCKED", "OTP requests are temporarily locked"),
    OtpGate.SPAM_LOCKED: ("OTP_SPAM_LOCKED", "Too many OTP requests. 1 hour lock applied."),
    OtpGate.COOLDOWN: ("OTP_COOLDOWN", "Please wait before requesting another OTP."),
}


@dataclass(frozen=True)
class OtpGateState:
    """Request-gate state for one identity; retry_after is the governing key's TTL."""
    gate: OtpGate
    retry_after: Optional[int] = None

    @property
    def is_clear(self) -> bool:
        return self.gate is OtpGate.CLEAR


class RateLimiter:
    """
    Lockout engine over the ephemeral state store.

    Checks are plain reads; each marker only becomes more restrictive
    until it expires, so the reads need not be atomic with each other.
    """

    def __init__(self, store: StateStore):
        self.store = store

    def otp_gate(self, email: str) -> OtpGateState:
        """
        Compute the OTP request gate. Precedence: lock, then spam lock, then cooldown.
        """
        for gate, key in (
            (OtpGate.LOCKED, keys.otp_lock(email)),
            (OtpGate.SPAM_LOCKED, keys.otp_spam_lock(email)),
            (OtpGate.COOLDOWN, keys.otp_cooldown(email)),
        ):
            if self.store.get(key) is not None:
                return OtpGateState(gate=gate, retry_after=self.store.ttl(key))
        return OtpGateState(gate=OtpGate.CLEAR)

    def check_otp_restrictions(self, email: str) -> None:
        """
        Raise TemporarilyLocked if any OTP lock, spam lock or cooldown is active.

        Raises:
            TemporarilyLocked: with a distinct code/message per gate
        """
        state = self.otp_gate(email)
        if state.is_clear:
            return

        code, message = _GATE_ERRORS[state.gate]
        logger.info(f"OTP request blocked for {keys.normalize_email(email)}: {state.gate.value}")
        raise TemporarilyLocked(message, code=code, retry_after=state.retry_after)

    def track_otp_request(self, email: str) -> int:
        """
        Count an OTP send for the identity.

        The 3rd request inside the window sets a 1 hour spam lock and restarts
        the counter, so from then on the lock governs further requests.

        Returns:
            int: the counter value after this request
        """
        counter_key = keys.otp_requests(email)
        current = int(self.store.get(counter_key) or 0)

        if current >= OTP_REQUESTS_BEFORE_SPAM_LOCK:
            self.store.set(keys.otp_spam_lock(email), "1", OTP_SPAM_LOCK_SECONDS)
            self.store.delete(counter_key)
            logger.warning(f"OTP spam lock applied to {keys.normalize_email(email)}")

        count = self.store.incr(counter_key)
        self.store.expire(counter_key, OTP_REQUEST_WINDOW_SECONDS)
        return count

    def clear_otp_requests(self, email: str) -> None:
        self.store.delete(keys.otp_requests(email))

    def login_attempts(self, email: str) -> int:
        return int(self.store.get(keys.login_attempts(email)) or 0)

    def check_login_rate_limit(self, email: str) -> None:
        """
        Raises:
            TooManyAttempts: if the identity has 5 or more recent failed logins
        """
        if self.login_attempts(email) >= MAX_FAILED_LOGINS:
            raise TooManyAttempts(
                "Too many login attempts. Please try again later.",
                code="LOGIN_ATTEMPTS_EXCEEDED",
                retry_after=self.store.ttl(keys.login_attempts(email)),
            )

    def track_failed_login(self, email: str) -> int:
        key = keys.login_attempts(email)
        count = self.store.incr(key)
        self.store.expire(key, LOGIN_ATTEMPT_WINDOW_SECONDS)
        logger.info(f"Failed login {count}/{MAX_FAILED_LOGINS} for {keys.normalize_email(email)}")
        return count

    def clear_login_attempts(self, email: str) -> None:
        self.store.delete(keys.login_attempts(email))
