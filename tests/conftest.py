import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="securevault-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECOND_FACTOR"] = "email"
os.environ["CREDENTIALS_ENCRYPTION_SECRET"] = "test-secret"
os.environ["SMTP_HOST"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""

import pytest
from fastapi.testclient import TestClient

from core import config
from core.database import Base, engine, SessionLocal
from core.identity import IdentityError, IdentityUser, get_identity
from main import app
from models.user_security import EmailOTPCode


class FakeIdentity:
    """In-memory stand-in for the Firebase identity client."""

    def __init__(self):
        self.users = {}
        self.oob_codes = {}
        self.reset_requests = []
        self.deleted = []

    def add_user(self, email: str, password: str, verified: bool = True) -> str:
        uid = f"uid-{len(self.users) + 1}"
        self.users[email] = {"uid": uid, "password": password, "verified": verified}
        return uid

    async def sign_up(self, email, password):
        if email in self.users:
            raise IdentityError("User already registered", code="EMAIL_EXISTS")
        uid = self.add_user(email, password)
        return IdentityUser(uid=uid, email=email)

    async def sign_in_with_password(self, email, password):
        user = self.users.get(email)
        if not user or user["password"] != password:
            raise IdentityError("Invalid login credentials", code="INVALID_LOGIN_CREDENTIALS")
        return IdentityUser(uid=user["uid"], email=email, email_verified=user["verified"])

    async def send_password_reset(self, email, continue_url=None):
        if email not in self.users:
            raise IdentityError("Invalid login credentials", code="EMAIL_NOT_FOUND")
        code = f"oob-{len(self.oob_codes) + 1}"
        self.oob_codes[code] = email
        self.reset_requests.append((email, continue_url))

    async def confirm_password_reset(self, oob_code, new_password):
        email = self.oob_codes.pop(oob_code, None)
        if not email:
            raise IdentityError("Password reset link is invalid or has already been used", code="INVALID_OOB_CODE")
        self.users[email]["password"] = new_password
        return email

    def _by_uid(self, uid):
        for email, user in self.users.items():
            if user["uid"] == uid:
                return email, user
        raise IdentityError("User not found", status_code=404, code="USER_NOT_FOUND")

    def update_password(self, uid, password):
        _, user = self._by_uid(uid)
        user["password"] = password

    def delete_user(self, uid):
        email, _ = self._by_uid(uid)
        del self.users[email]
        self.deleted.append(uid)


class FakeVerifyService:
    """Twilio Verify double: accepts a single fixed code."""

    def __init__(self, code: str = "123456"):
        self.code = code
        self.sent = []
        self.checked = []

    def send_code(self, to, channel="sms"):
        self.sent.append((to, channel))
        return "pending"

    def check_code(self, to, code):
        self.checked.append((to, code))
        ok = code == self.code
        return ("approved" if ok else "pending"), ok


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def client(identity, monkeypatch):
    monkeypatch.setattr(config, "SECOND_FACTOR", "email")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_identity] = lambda: identity
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def verify_service(monkeypatch):
    from utils import sms

    service = FakeVerifyService()
    monkeypatch.setattr(sms, "get_verify_service", lambda: service)
    return service


def latest_code(email: str) -> str:
    session = SessionLocal()
    try:
        rec = (
            session.query(EmailOTPCode)
            .filter(EmailOTPCode.email == email, EmailOTPCode.used == False)  # noqa: E712
            .order_by(EmailOTPCode.id.desc())
            .first()
        )
        return rec.code if rec else None
    finally:
        session.close()


def sign_in(client, email="user@example.com", password="secret123"):
    return client.post("/api/auth/signin", json={"email": email, "password": password})


@pytest.fixture
def signed_in(client, identity):
    """A client holding a verified session for user@example.com."""
    identity.add_user("user@example.com", "secret123")
    r = sign_in(client)
    assert r.status_code == 200
    r = client.post("/api/auth/otp/verify", json={"code": latest_code("user@example.com")})
    assert r.status_code == 200
    return client
