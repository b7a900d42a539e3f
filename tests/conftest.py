from __future__ import annotations

import os
import tempfile

# Configure before any `app.*` import: the engine is created at import time.
_TMP = tempfile.mkdtemp(prefix="urgent-sales-tests-")
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_BACKEND"] = "console"
os.environ["SMS_BACKEND"] = "console"
os.environ["WHATSAPP_BACKEND"] = "console"
os.environ["SESSION_COOKIE_SECURE"] = "0"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ.pop("SEED_ADMIN_PASSWORD", None)
os.environ.pop("ALLOWED_HOSTS", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from app.db import ENGINE, session_scope  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base, OneTimeCode, User  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from app.security import hash_password  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def _fresh_state(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_SESSION_PATH", str(tmp_path / "session.json"))
    Base.metadata.create_all(ENGINE)
    limiter.reset()
    yield
    Base.metadata.drop_all(ENGINE)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user():
    def _make(username: str, *, role: str = "buyer", email_verified: bool = False, phone: str = "") -> int:
        with session_scope() as db:
            u = User(
                username=username,
                email=f"{username}@example.com",
                phone=phone,
                name=username.title(),
                role=role,
                email_verified=email_verified,
                password_hash=hash_password(PASSWORD),
            )
            db.add(u)
            db.flush()
            return u.id

    return _make


@pytest.fixture
def login(client):
    def _login(username: str, password: str = PASSWORD) -> dict:
        resp = client.post("/api/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login


@pytest.fixture
def latest_code():
    def _latest(user_id: int, channel: str = "email") -> str:
        with session_scope() as db:
            otp = (
                db.execute(
                    select(OneTimeCode)
                    .where((OneTimeCode.user_id == user_id) & (OneTimeCode.channel == channel))
                    .order_by(OneTimeCode.id.desc())
                )
                .scalars()
                .first()
            )
            assert otp is not None
            return otp.code

    return _latest
