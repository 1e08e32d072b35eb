"""
Ephemeral state key namespace.

Every key is scoped to a single normalized email so that counters and
locks never leak between identities.
"""


def normalize_email(email: str) -> str:
    """Canonical identity used for both ephemeral keys and credential lookups."""
    return email.strip().lower()


def otp(email: str) -> str:
    return f"otp:{normalize_email(email)}"


def otp_attempts(email: str) -> str:
    return f"otp_attempts:{normalize_email(email)}"


def otp_lock(email: str) -> str:
    return f"otp_lock:{normalize_email(email)}"


def otp_spam_lock(email: str) -> str:
    return f"otp_spam_lock:{normalize_email(email)}"


def otp_cooldown(email: str) -> str:
    return f"otp_cooldown:{normalize_email(email)}"


def otp_requests(email: str) -> str:
    return f"otp_requests_count:{normalize_email(email)}"


def pending_registration(email: str) -> str:
    return f"pending:{normalize_email(email)}"


def change_password(email: str) -> str:
    return f"change_password:{normalize_email(email)}"


def login_attempts(email: str) -> str:
    return f"login_attempts:{normalize_email(email)}"
