"""
Endpoint tests for authentication.

Tests:
- Registration + OTP verification
- Login, cookies, refresh, logout and /me
- Password reset flow
- Error envelope and input validation
"""

import pytest

from app.core import keys

API = "/api/v1/auth"


def register(client, email="test@example.com", password="SecurePass123!", name="Test User"):
    return client.post(f"{API}/register", json={"name": name, "email": email, "password": password})


class TestUserRegistration:
    """Test registration and verification endpoints"""

    def test_register_and_verify(self, client, mailer, store):
        response = register(client)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert mailer.sent[-1]["to"] == "test@example.com"

        response = client.post(
            f"{API}/verify-registration",
            json={"email": "test@example.com", "otp": mailer.last_otp("test@example.com")}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "test@example.com"
        assert data["name"] == "Test User"
        assert "hashed_password" not in data
        assert store.get(keys.pending_registration("test@example.com")) is None

    def test_register_duplicate_email(self, client, existing_user):
        response = register(client, email=existing_user.email)

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "validation_error"
        assert body["code"] == "EMAIL_EXISTS"

    def test_register_weak_password(self, client):
        response = register(client, password="weak")

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_INPUT"
        assert any(err["field"] == "password" for err in body["details"])

    def test_register_invalid_email(self, client):
        response = register(client, email="not-an-email")
        assert response.status_code == 400

    def test_register_short_name(self, client):
        response = register(client, name="A")
        assert response.status_code == 400

    def test_register_cooldown_returns_429_with_retry_after(self, client):
        register(client)
        response = register(client)

        assert response.status_code == 429
        assert response.json()["code"] == "OTP_COOLDOWN"
        assert response.headers["Retry-After"] == "60"

    def test_verify_wrong_otp_sequence(self, client, mailer):
        register(client)
        code = mailer.last_otp("test@example.com")
        bad = "1000" if code != "1000" else "1001"

        def verify(otp):
            return client.post(f"{API}/verify-registration", json={"email": "test@example.com", "otp": otp})

        first = verify(bad)
        assert first.status_code == 400
        assert first.json()["details"]["attempts_left"] == 2

        second = verify(bad)
        assert second.json()["details"]["attempts_left"] == 1

        third = verify(bad)
        assert third.status_code == 429
        assert third.json()["kind"] == "too_many_attempts"

        fourth = verify(code)
        assert fourth.status_code == 429
        assert fourth.json()["kind"] == "temporarily_locked"

    def test_verify_without_otp_is_not_found(self, client):
        response = client.post(f"{API}/verify-registration", json={"email": "test@example.com", "otp": "1234"})

        assert response.status_code == 404
        assert response.json()["code"] == "OTP_NOT_FOUND"

    def test_verify_otp_must_be_four_digits(self, client):
        response = client.post(f"{API}/verify-registration", json={"email": "test@example.com", "otp": "12a4"})
        assert response.status_code == 400

    @pytest.mark.parametrize("path", ["/verify-registration", "/verify-forgot-password"])
    def test_verify_rejects_non_ascii_digits(self, client, store, path):
        register(client)

        response = client.post(f"{API}{path}", json={"email": "test@example.com", "otp": "１２３４"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"
        assert store.get(keys.otp_attempts("test@example.com")) is None


class TestUserLogin:
    """Test user login endpoint"""

    def test_login_success_sets_cookies(self, client, existing_user):
        response = client.post(f"{API}/login", json={"email": existing_user.email, "password": "TestPass123!"})

        assert response.status_code == 200
        assert response.json()["user"]["email"] == existing_user.email

        set_cookie = response.headers.get_list("set-cookie")
        access = next(c for c in set_cookie if c.startswith("access_token="))
        refresh = next(c for c in set_cookie if c.startswith("refresh_token="))
        for cookie in (access, refresh):
            lowered = cookie.lower()
            assert "httponly" in lowered
            assert "secure" in lowered
            assert "samesite=none" in lowered
        assert "Max-Age=900" in access
        assert "Max-Age=604800" in refresh

    def test_login_enumeration_resistance(self, client, existing_user):
        unknown = client.post(f"{API}/login", json={"email": "ghost@example.com", "password": "TestPass123!"})
        wrong = client.post(f"{API}/login", json={"email": existing_user.email, "password": "WrongPass123!"})

        assert unknown.status_code == wrong.status_code == 401
        for field in ("error", "kind", "code"):
            assert unknown.json()[field] == wrong.json()[field]

    def test_login_locked_after_five_failures(self, client, existing_user):
        for _ in range(5):
            client.post(f"{API}/login", json={"email": existing_user.email, "password": "WrongPass123!"})

        response = client.post(f"{API}/login", json={"email": existing_user.email, "password": "TestPass123!"})

        assert response.status_code == 429
        assert response.json()["code"] == "LOGIN_ATTEMPTS_EXCEEDED"

    def test_me_refresh_and_logout(self, client, existing_user):
        client.post(f"{API}/login", json={"email": existing_user.email, "password": "TestPass123!"})

        me = client.get(f"{API}/me")
        assert me.status_code == 200
        assert me.json()["id"] == str(existing_user.id)

        refreshed = client.post(f"{API}/refresh")
        assert refreshed.status_code == 200

        client.post(f"{API}/logout")
        client.cookies.clear()
        assert client.get(f"{API}/me").status_code == 401

    def test_me_accepts_bearer_header(self, client, existing_user):
        response = client.post(f"{API}/login", json={"email": existing_user.email, "password": "TestPass123!"})
        token = response.cookies.get("access_token")
        client.cookies.clear()

        me = client.get(f"{API}/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200

    def test_refresh_without_cookie(self, client):
        response = client.post(f"{API}/refresh")
        assert response.status_code == 401


class TestPasswordReset:
    def test_reset_flow(self, client, existing_user, mailer):
        email = existing_user.email

        response = client.post(f"{API}/forgot-password", json={"email": email})
        assert response.status_code == 200

        response = client.post(f"{API}/verify-forgot-password", json={"email": email, "otp": mailer.last_otp(email)})
        assert response.status_code == 200

        response = client.post(f"{API}/reset-password", json={"email": email, "new_password": "BrandNew123!"})
        assert response.status_code == 200

        login = client.post(f"{API}/login", json={"email": email, "password": "BrandNew123!"})
        assert login.status_code == 200

        again = client.post(f"{API}/reset-password", json={"email": email, "new_password": "AnotherOne123!"})
        assert again.status_code == 401
        assert again.json()["kind"] == "auth_error"

    def test_forgot_password_unknown_email_matches_known(self, client, existing_user):
        unknown = client.post(f"{API}/forgot-password", json={"email": "ghost@example.com"})
        known = client.post(f"{API}/forgot-password", json={"email": existing_user.email})

        assert unknown.status_code == known.status_code == 200
        assert unknown.json()["message"] == known.json()["message"]

    def test_reset_same_password(self, client, existing_user, store):
        store.set(keys.change_password(existing_user.email), "true", 900)

        response = client.post(
            f"{API}/reset-password",
            json={"email": existing_user.email, "new_password": "TestPass123!"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SAME_PASSWORD"


class TestErrorEnvelope:
    def test_envelope_fields(self, client):
        response = client.post(f"{API}/login", json={"email": "ghost@example.com", "password": "x"})
        body = response.json()

        assert body["success"] is False
        assert body["status_code"] == 401
        assert body["path"] == f"{API}/login"
        assert body["timestamp"].endswith("Z")
        assert "stack" not in body

    def test_stack_only_in_development(self, client, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "ENVIRONMENT", "development")
        response = client.post(f"{API}/login", json={"email": "ghost@example.com", "password": "x"})

        assert "stack" in response.json()


@pytest.mark.parametrize("path", ["/health", "/health/detailed"])
def test_health(client, path):
    response = client.get(path)
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
