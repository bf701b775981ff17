from datetime import datetime, timedelta

from throttled import Throttled, RateLimiterType, store, rate_limiter

from conftest import latest_code, sign_in
from core import config
from models.auth_session import AuthSession
from models.credential import Credential
from models.user_security import EmailOTPCode


class TestSignUp:
    def test_sign_up_stays_on_auth(self, client, identity):
        r = client.post("/api/auth/signup", json={"email": "New@Example.com", "password": "secret123"})
        assert r.status_code == 200
        body = r.json()
        assert body["next"] == "/auth"
        assert body["message"] == "Account created successfully. Please verify your email."
        assert "new@example.com" in identity.users
        assert "session_token" not in body

    def test_duplicate_email_surfaces_provider_message(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = client.post("/api/auth/signup", json={"email": "user@example.com", "password": "secret123"})
        assert r.status_code == 400
        assert r.json() == {"error": "User already registered"}

    def test_short_password_rejected(self, client):
        r = client.post("/api/auth/signup", json={"email": "user@example.com", "password": "123"})
        assert r.status_code == 400
        assert "at least 6" in r.json()["error"]

    def test_invalid_email_rejected(self, client):
        r = client.post("/api/auth/signup", json={"email": "not-an-email", "password": "secret123"})
        assert r.status_code == 400
        assert r.json()["error"] == "Invalid email format"


class TestSignIn:
    def test_wrong_password_stays_put(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = sign_in(client, password="wrong-password")
        assert r.status_code == 400
        assert r.json() == {"error": "Invalid login credentials"}
        assert client.get("/api/auth/session").json() == {"authenticated": False}

    def test_email_factor_goes_to_verify_otp(self, client, identity, db):
        identity.add_user("user@example.com", "secret123")
        r = sign_in(client)
        assert r.status_code == 200
        body = r.json()
        assert body["next"] == "/verify-otp"
        assert body["factor"] == "email"
        assert body["title"] == "Verification code sent"
        assert body["session"]["otp_verified"] is False

        session = client.get("/api/auth/session").json()
        assert session["authenticated"] is True
        assert session["pending_factor"] == "email"

        code = latest_code("user@example.com")
        assert code is not None and len(code) == 6 and code.isdigit()

    def test_no_second_factor_goes_straight_to_passwords(self, client, identity, monkeypatch):
        monkeypatch.setattr(config, "SECOND_FACTOR", "none")
        identity.add_user("user@example.com", "secret123")
        r = sign_in(client)
        assert r.status_code == 200
        assert r.json()["next"] == "/passwords"
        assert client.get("/api/auth/session").json()["otp_verified"] is True

    def test_unconfirmed_email_is_rejected(self, client, identity, monkeypatch):
        monkeypatch.setattr(config, "SECOND_FACTOR", "none")
        identity.add_user("user@example.com", "secret123", verified=False)
        r = sign_in(client)
        assert r.status_code == 400
        assert r.json() == {"error": "Email not confirmed"}
        assert client.get("/api/auth/session").json() == {"authenticated": False}

    def test_missing_fields(self, client):
        r = client.post("/api/auth/signin", json={"email": "", "password": ""})
        assert r.status_code == 400
        assert r.json()["error"] == "Email and password are required"


class TestEmailOTP:
    def test_correct_code_verifies_session(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        r = client.post("/api/auth/otp/verify", json={"code": latest_code("user@example.com")})
        assert r.status_code == 200
        body = r.json()
        assert body["next"] == "/passwords"
        assert body["message"] == "Email verified successfully"
        session = client.get("/api/auth/session").json()
        assert session["otp_verified"] is True
        assert session["pending_factor"] is None

    def test_wrong_code_counts_attempts(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        code = latest_code("user@example.com")
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(config.OTP_MAX_ATTEMPTS - 1):
            r = client.post("/api/auth/otp/verify", json={"code": wrong})
            assert r.status_code == 400
            assert r.json()["error"] == "Verification code is incorrect"

        r = client.post("/api/auth/otp/verify", json={"code": wrong})
        assert r.status_code == 429

        # The code is burnt even if the right value arrives now
        r = client.post("/api/auth/otp/verify", json={"code": code})
        assert r.status_code == 400
        assert client.get("/api/auth/session").json()["otp_verified"] is False

    def test_expired_code(self, client, identity, db):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        code = latest_code("user@example.com")
        rec = db.query(EmailOTPCode).filter(EmailOTPCode.code == code).first()
        rec.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        r = client.post("/api/auth/otp/verify", json={"code": code})
        assert r.status_code == 410

    def test_resend_invalidates_previous_code(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        first = latest_code("user@example.com")

        r = client.post("/api/auth/otp/resend")
        assert r.status_code == 200
        second = latest_code("user@example.com")

        if first != second:
            r = client.post("/api/auth/otp/verify", json={"code": first})
            assert r.status_code == 400
        r = client.post("/api/auth/otp/verify", json={"code": second})
        assert r.status_code == 200

    def test_verify_without_session(self, client):
        r = client.post("/api/auth/otp/verify", json={"code": "123456"})
        assert r.status_code == 401
        assert r.json()["error"] == "Missing email information. Please log in again."

    def test_empty_code(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        r = client.post("/api/auth/otp/verify", json={"code": ""})
        assert r.status_code == 400
        assert r.json()["error"] == "Please enter the verification code"

    def test_non_ascii_code_is_rejected(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        for code in ("１２３４５６", "é"):
            r = client.post("/api/auth/otp/verify", json={"code": code})
            assert r.status_code == 400
            assert r.json()["error"] == "Invalid code format"
        assert client.get("/api/auth/session").json()["otp_verified"] is False

    def test_send_limit_is_per_user(self, client, identity, monkeypatch):
        from utils import auth_flow

        def fresh_throttle(limit):
            return Throttled(
                using=RateLimiterType.FIXED_WINDOW.value,
                quota=rate_limiter.per_duration(timedelta(minutes=10), limit=limit),
                store=store.MemoryStore(),
            )

        monkeypatch.setattr(config, "RATE_LIMIT_ENABLED", True)
        monkeypatch.setattr(auth_flow, "login_throttle", fresh_throttle(10))
        monkeypatch.setattr(auth_flow, "otp_send_throttle", fresh_throttle(5))
        identity.add_user("user@example.com", "secret123")

        assert sign_in(client).status_code == 200
        for _ in range(4):
            assert client.post("/api/auth/otp/resend").status_code == 200
        r = client.post("/api/auth/otp/resend")
        assert r.status_code == 429
        assert r.json()["error"] == "Too many codes requested. Please try again later."

        # A fresh session for the same user shares the quota
        client.post("/api/auth/signout")
        r = sign_in(client)
        assert r.status_code == 429
        assert client.get("/api/auth/session").json() == {"authenticated": False}


class TestSession:
    def test_sign_out_deletes_session(self, signed_in, db):
        assert db.query(AuthSession).count() == 1
        r = signed_in.post("/api/auth/signout")
        assert r.status_code == 200
        assert r.json()["next"] == "/"
        assert db.query(AuthSession).count() == 0
        assert signed_in.get("/api/auth/session").json() == {"authenticated": False}

    def test_expired_session_is_dropped(self, signed_in, db):
        sess = db.query(AuthSession).first()
        sess.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.commit()
        assert signed_in.get("/api/auth/session").json() == {"authenticated": False}
        db.expire_all()
        assert db.query(AuthSession).count() == 0

    def test_bearer_token_is_accepted(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        token = sign_in(client).json()["session_token"]
        client.cookies.clear()
        r = client.get("/api/auth/session", headers={"Authorization": f"Bearer {token}"})
        assert r.json()["authenticated"] is True


class TestPasswordReset:
    def test_reset_link_continues_to_update_password(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = client.post("/api/auth/password/reset", json={"email": "user@example.com"})
        assert r.status_code == 200
        assert identity.reset_requests[0][1].endswith("/update-password")

    def test_unknown_email_looks_like_success(self, client, identity):
        r = client.post("/api/auth/password/reset", json={"email": "ghost@example.com"})
        assert r.status_code == 200
        assert identity.reset_requests == []

    def test_update_with_oob_code(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        client.post("/api/auth/password/reset", json={"email": "user@example.com"})
        oob = next(iter(identity.oob_codes))

        r = client.post("/api/auth/password/update", json={
            "password": "newsecret", "confirm_password": "newsecret", "oob_code": oob,
        })
        assert r.status_code == 200
        assert r.json()["next"] == "/auth"
        assert identity.users["user@example.com"]["password"] == "newsecret"

    def test_passwords_must_match(self, client):
        r = client.post("/api/auth/password/update", json={
            "password": "newsecret", "confirm_password": "other", "oob_code": "oob-1",
        })
        assert r.status_code == 400
        assert r.json()["error"] == "Passwords don't match"

    def test_missing_confirmation_does_not_match(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        client.post("/api/auth/password/reset", json={"email": "user@example.com"})
        oob = next(iter(identity.oob_codes))
        r = client.post("/api/auth/password/update", json={"password": "newsecret", "oob_code": oob})
        assert r.status_code == 400
        assert r.json()["error"] == "Passwords don't match"
        assert identity.users["user@example.com"]["password"] == "secret123"

    def test_invalid_oob_code(self, client, identity):
        r = client.post("/api/auth/password/update", json={
            "password": "newsecret", "confirm_password": "newsecret", "oob_code": "bogus",
        })
        assert r.status_code == 400

    def test_update_requires_code_or_verified_session(self, client):
        r = client.post("/api/auth/password/update", json={"password": "newsecret", "confirm_password": "newsecret"})
        assert r.status_code == 401

    def test_verified_session_can_change_password(self, signed_in, identity):
        r = signed_in.post("/api/auth/password/update", json={"password": "changed1", "confirm_password": "changed1"})
        assert r.status_code == 200
        assert identity.users["user@example.com"]["password"] == "changed1"


class TestDeleteAccount:
    def test_delete_removes_everything(self, signed_in, identity, db):
        r = signed_in.post("/api/credentials", json={
            "website_url": "https://example.com", "username": "me", "password": "pw",
        })
        assert r.status_code == 201

        r = signed_in.post("/api/account/delete")
        assert r.status_code == 200
        assert identity.deleted == ["uid-1"]
        assert db.query(Credential).count() == 0
        assert db.query(AuthSession).count() == 0
        assert db.query(EmailOTPCode).count() == 0

    def test_delete_requires_verified_session(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        r = client.post("/api/account/delete")
        assert r.status_code == 401
        assert identity.deleted == []
