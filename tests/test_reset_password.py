from __future__ import annotations

from sqlalchemy import select

from app.db import session_scope
from app.models import OneTimeCode
from app.otp import RESET_CHANNEL


def _reset_token(user_id: int) -> str:
    with session_scope() as db:
        rec = db.execute(
            select(OneTimeCode).where((OneTimeCode.user_id == user_id) & (OneTimeCode.channel == RESET_CHANNEL))
        ).scalar_one()
        return rec.code


def test_unknown_email_still_succeeds(client):
    resp = client.post("/api/forgot-password", json={"email": "ghost@example.com"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_reset_flow(client, make_user):
    uid = make_user("tina")
    assert client.post("/api/forgot-password", json={"email": "tina@example.com"}).status_code == 200
    token = _reset_token(uid)
    assert len(token) == 64

    resp = client.post("/api/reset-password", json={"token": token, "newPassword": "brand-new-pass"})
    assert resp.status_code == 200

    old = client.post("/api/login", json={"username": "tina", "password": "secret123"})
    assert old.status_code == 401
    new = client.post("/api/login", json={"username": "tina", "password": "brand-new-pass"})
    assert new.status_code == 200

    reuse = client.post("/api/reset-password", json={"token": token, "newPassword": "another-pass"})
    assert reuse.status_code == 400


def test_bad_token(client):
    resp = client.post("/api/reset-password", json={"token": "f" * 64, "newPassword": "whatever1"})
    assert resp.status_code == 400
