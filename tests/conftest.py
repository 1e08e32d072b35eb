"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown (in-memory SQLite)
- Ephemeral state store driven by a fake clock
- A recording mailer in place of AWS SES
- FastAPI test client with all three dependencies overridden
"""

import os

# Settings are read at import time; configure before importing the app
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-0123456789abcdefghijklmnop")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-0123456789abcdefghijklmnop")
os.environ["STATE_STORE_BACKEND"] = "memory"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["DB_AUTO_CREATE"] = "false"
os.environ["JSON_LOGS"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.security import get_password_hash
from app.core.state_store import InMemoryStateStore, get_state_store
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.email_service import get_mailer
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailer:
    """Mailer that records every message and can be switched to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_email(self, to_email, subject, template_name, context):
        if self.fail:
            return False
        self.sent.append({
            "to": to_email,
            "subject": subject,
            "template": template_name,
            "context": dict(context),
        })
        return True

    def last_otp(self, email: str) -> str:
        for message in reversed(self.sent):
            if message["to"] == email:
                return message["context"]["otp"]
        raise AssertionError(f"No OTP was sent to {email}")


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def auth_service(db_session, store, mailer):
    return AuthService(db=db_session, store=store, mailer=mailer)


@pytest.fixture
def client(db_session, store, mailer):
    """
    FastAPI test client with overridden database, state store and mailer.

    Uses an https base URL so Secure cookies round-trip.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_store] = lambda: store
    app.dependency_overrides[get_mailer] = lambda: mailer

    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def existing_user(db_session):
    """A registered, active user with password 'TestPass123!'"""
    user = User(
        name="Existing User",
        email="existing@example.com",
        hashed_password=get_password_hash("TestPass123!"),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user
