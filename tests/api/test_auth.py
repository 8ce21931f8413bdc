"""Tests for the authentication endpoints."""

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from postforge.core.db import parse_timestamp

TEST_EMAIL = "jane@example.com"
TEST_PASSWORD = "Sup3rSecret"


def get_auth_header(access_token: str) -> dict:
    """Helper to create Authorization header."""
    return {"Authorization": f"Bearer {access_token}"}


def extract_code(text: str) -> str:
    return next(word for word in text.split() if word.isdigit() and len(word) == 6)


def extract_reset_token(text: str) -> str:
    url = next(line for line in text.splitlines() if "reset-password?token=" in line)
    return url.split("token=", 1)[1].strip()


class TestRegisterEndpoint:
    """Tests for POST /auth/register."""

    def test_register_success(self, test_app: TestClient, db_query):
        """Test registration stores a bcrypt hash and opens a 7-day session."""
        before = datetime.now(timezone.utc)
        response = test_app.post(
            "/auth/register",
            json={"email": "Jane@Example.com", "password": TEST_PASSWORD, "name": "Jane Doe"},
            headers={"User-Agent": "pytest-agent"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == TEST_EMAIL
        assert data["user"]["name"] == "Jane Doe"
        assert data["user"]["email_verified"] is False
        assert data["tokens"]["token_type"] == "bearer"
        assert "password_hash" not in data["user"]

        user = db_query("SELECT * FROM users WHERE email = ?", (TEST_EMAIL,))[0]
        assert user["password_hash"].startswith("$2b$")
        assert TEST_PASSWORD not in user["password_hash"]

        sessions = db_query("SELECT * FROM sessions WHERE user_id = ?", (user["id"],))
        assert len(sessions) == 1
        assert sessions[0]["token"] == data["tokens"]["refresh_token"]
        assert sessions[0]["user_agent"] == "pytest-agent"
        expires_at = parse_timestamp(sessions[0]["expires_at"])
        assert before + timedelta(days=7) <= expires_at <= datetime.now(timezone.utc) + timedelta(days=7)

    def test_register_duplicate_email(self, test_app: TestClient, register_user):
        register_user()
        response = test_app.post(
            "/auth/register",
            json={"email": "JANE@example.com", "password": TEST_PASSWORD},
            headers={"X-Real-IP": "198.51.100.2"},
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "conflict"
        assert response.json()["detail"] == "User with this email already exists"

    def test_register_weak_password(self, test_app: TestClient):
        """Test password policy violations return 400 without echoing the password."""
        response = test_app.post(
            "/auth/register",
            json={"email": TEST_EMAIL, "password": "alllowercase1"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error_type"] == "validation_error"
        assert body["errors"][0]["loc"][-1] == "password"
        assert "alllowercase1" not in response.text

    def test_register_invalid_email(self, test_app: TestClient):
        response = test_app.post(
            "/auth/register",
            json={"email": "not-an-email", "password": TEST_PASSWORD},
        )
        assert response.status_code == 400

    def test_register_rate_limited(self, test_app: TestClient):
        """Test the fourth registration within an hour from one client is refused."""
        statuses = [
            test_app.post(
                "/auth/register",
                json={"email": f"user{i}@example.com", "password": TEST_PASSWORD},
                headers={"X-Real-IP": "203.0.113.9"},
            ).status_code
            for i in range(4)
        ]
        assert statuses == [201, 201, 201, 429]


class TestLoginEndpoint:
    """Tests for POST /auth/login."""

    def test_login_success(self, test_app: TestClient, register_user, db_query):
        register_user()
        response = test_app.post("/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["email"] == TEST_EMAIL
        assert data["user"]["last_login_at"] is not None
        assert db_query("SELECT id FROM sessions WHERE token = ?", (data["tokens"]["refresh_token"],))

    def test_login_email_is_case_insensitive(self, test_app: TestClient, register_user):
        register_user()
        response = test_app.post("/auth/login", json={"email": "JANE@EXAMPLE.COM", "password": TEST_PASSWORD})
        assert response.status_code == 200

    def test_login_errors_are_identical(self, test_app: TestClient, register_user):
        """Test unknown email and wrong password produce the same response."""
        register_user()
        wrong_password = test_app.post("/auth/login", json={"email": TEST_EMAIL, "password": "Wr0ngPassword"})
        unknown_email = test_app.post(
            "/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD}
        )

        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["detail"] == "Invalid email or password"

    def test_sixth_attempt_rate_limited(self, test_app: TestClient, register_user):
        """Test the sixth attempt in 15 minutes gets 429 even with the right password."""
        register_user()
        headers = {"X-Forwarded-For": "203.0.113.50, 10.0.0.1"}

        for password in ["Wr0ng1", "Wr0ng2", TEST_PASSWORD, "Wr0ng3", "Wr0ng4"]:
            response = test_app.post(
                "/auth/login", json={"email": TEST_EMAIL, "password": password}, headers=headers
            )
            assert response.status_code in (200, 401)

        response = test_app.post(
            "/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD}, headers=headers
        )

        assert response.status_code == 429
        assert response.json()["error_type"] == "rate_limited"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert 0 < int(response.headers["Retry-After"]) <= 900
        assert response.json()["retry_after"] == int(response.headers["Retry-After"])
        assert datetime.fromisoformat(response.headers["X-RateLimit-Reset"]) > datetime.now(timezone.utc)

        # Another client is unaffected
        other = test_app.post(
            "/auth/login",
            json={"email": TEST_EMAIL, "password": TEST_PASSWORD},
            headers={"X-Forwarded-For": "198.51.100.77"},
        )
        assert other.status_code == 200

    def test_malformed_requests_count_against_limit(self, test_app: TestClient):
        headers = {"X-Real-IP": "203.0.113.60"}
        for _ in range(5):
            assert test_app.post("/auth/login", json={}, headers=headers).status_code == 400
        assert test_app.post("/auth/login", json={}, headers=headers).status_code == 429


class TestSessionEndpoints:
    """Tests for refresh, logout and /auth/me."""

    def test_refresh_rotates_token(self, test_app: TestClient, register_user, db_query):
        tokens = register_user()["tokens"]

        response = test_app.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 200
        new_tokens = response.json()["tokens"]
        assert new_tokens["refresh_token"] != tokens["refresh_token"]
        assert not db_query("SELECT id FROM sessions WHERE token = ?", (tokens["refresh_token"],))

        reused = test_app.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert reused.status_code == 401

        again = test_app.post("/auth/refresh", json={"refresh_token": new_tokens["refresh_token"]})
        assert again.status_code == 200

    def test_refresh_with_access_token_rejected(self, test_app: TestClient, register_user):
        tokens = register_user()["tokens"]
        response = test_app.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401

    def test_logout(self, test_app: TestClient, register_user):
        tokens = register_user()["tokens"]

        response = test_app.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 204

        refresh = test_app.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401

    def test_logout_without_body(self, test_app: TestClient):
        assert test_app.post("/auth/logout").status_code == 204

    def test_me(self, test_app: TestClient, register_user):
        tokens = register_user()["tokens"]

        response = test_app.get("/auth/me", headers=get_auth_header(tokens["access_token"]))

        assert response.status_code == 200
        assert response.json()["email"] == TEST_EMAIL

    def test_me_requires_token(self, test_app: TestClient):
        response = test_app.get("/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_me_rejects_refresh_token(self, test_app: TestClient, register_user):
        tokens = register_user()["tokens"]
        response = test_app.get("/auth/me", headers=get_auth_header(tokens["refresh_token"]))
        assert response.status_code == 401


class TestEmailVerificationEndpoints:
    """Tests for send-otp and verify-otp."""

    def test_send_and_verify(self, test_app: TestClient, register_user, email_sender, db_query):
        register_user()

        response = test_app.post("/auth/send-otp", json={"email": TEST_EMAIL})
        assert response.status_code == 200
        assert response.json()["expires_in"] == 600

        code = extract_code(email_sender.last_to(TEST_EMAIL).text)
        response = test_app.post("/auth/verify-otp", json={"email": TEST_EMAIL, "otp": code})

        assert response.status_code == 200
        assert response.json() == {"message": "Email verified successfully!", "email_verified": True}
        user = db_query("SELECT * FROM users WHERE email = ?", (TEST_EMAIL,))[0]
        assert user["email_verified"] == 1
        assert user["email_verification_otp"] is None

        again = test_app.post("/auth/send-otp", json={"email": TEST_EMAIL})
        assert again.status_code == 400
        assert again.json()["detail"] == "Email already verified"

    def test_verify_wrong_code(self, test_app: TestClient, register_user, email_sender):
        register_user()
        test_app.post("/auth/send-otp", json={"email": TEST_EMAIL})
        code = extract_code(email_sender.last_to(TEST_EMAIL).text)
        wrong = "100000" if code != "100000" else "100001"

        response = test_app.post("/auth/verify-otp", json={"email": TEST_EMAIL, "otp": wrong})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid verification code"

    def test_verify_expired_code(self, test_app: TestClient, register_user, email_sender, db_execute):
        register_user()
        test_app.post("/auth/send-otp", json={"email": TEST_EMAIL})
        code = extract_code(email_sender.last_to(TEST_EMAIL).text)
        expired = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        db_execute("UPDATE users SET otp_expires_at = ? WHERE email = ?", (expired, TEST_EMAIL))

        response = test_app.post("/auth/verify-otp", json={"email": TEST_EMAIL, "otp": code})

        assert response.status_code == 400
        assert response.json()["error_type"] == "expired"
        assert "expired" in response.json()["detail"]

    def test_verify_without_code_sent(self, test_app: TestClient, register_user):
        register_user()
        response = test_app.post("/auth/verify-otp", json={"email": TEST_EMAIL, "otp": "123456"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "expired"

    def test_verify_malformed_code(self, test_app: TestClient, register_user):
        register_user()
        response = test_app.post("/auth/verify-otp", json={"email": TEST_EMAIL, "otp": "12345"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"

    def test_send_otp_unknown_email(self, test_app: TestClient):
        response = test_app.post("/auth/send-otp", json={"email": "nobody@example.com"})
        assert response.status_code == 404


class TestPasswordResetEndpoints:
    """Tests for forgot-password and reset-password."""

    def test_forgot_password_same_answer_for_unknown_email(self, test_app: TestClient, register_user):
        register_user()

        known = test_app.post("/auth/forgot-password", json={"email": TEST_EMAIL})
        unknown = test_app.post("/auth/forgot-password", json={"email": "nobody@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_revokes_all_sessions(self, test_app: TestClient, register_user, email_sender, db_query):
        """Test a reset signs the user out everywhere and old refresh tokens stop working."""
        first = register_user()["tokens"]
        second = test_app.post(
            "/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD}
        ).json()["tokens"]
        user_id = db_query("SELECT id FROM users WHERE email = ?", (TEST_EMAIL,))[0]["id"]
        assert len(db_query("SELECT id FROM sessions WHERE user_id = ?", (user_id,))) == 2

        test_app.post("/auth/forgot-password", json={"email": TEST_EMAIL})
        token = extract_reset_token(email_sender.last_to(TEST_EMAIL).text)

        response = test_app.post("/auth/reset-password", json={"token": token, "password": "N3wPassword"})

        assert response.status_code == 200
        assert db_query("SELECT id FROM sessions WHERE user_id = ?", (user_id,)) == []
        for tokens in (first, second):
            refresh = test_app.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
            assert refresh.status_code == 401

        old_login = test_app.post("/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
        assert old_login.status_code == 401
        new_login = test_app.post("/auth/login", json={"email": TEST_EMAIL, "password": "N3wPassword"})
        assert new_login.status_code == 200

        reused = test_app.post("/auth/reset-password", json={"token": token, "password": "An0therPass"})
        assert reused.status_code == 400

    def test_reset_expired_token(self, test_app: TestClient, register_user, db_query, db_execute):
        register_user()
        test_app.post("/auth/forgot-password", json={"email": TEST_EMAIL})
        user = db_query("SELECT * FROM users WHERE email = ?", (TEST_EMAIL,))[0]

        expired = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        db_execute("UPDATE users SET reset_token_expires_at = ? WHERE id = ?", (expired, user["id"]))

        response = test_app.post(
            "/auth/reset-password", json={"token": user["reset_token"], "password": "N3wPassword"}
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "expired"

    def test_reset_weak_password(self, test_app: TestClient):
        response = test_app.post("/auth/reset-password", json={"token": "abc", "password": "short"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"
