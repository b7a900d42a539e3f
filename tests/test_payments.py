from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import requests
from sqlalchemy import select

from app import payments
from app.db import session_scope
from app.models import CheckoutSession, Notification, Property


class FakeResponse:
    def __init__(self, status_code: int, data: dict) -> None:
        self.status_code = status_code
        self._data = data
        self.text = json.dumps(data)

    def json(self):
        return self._data


class FakeStripe:
    """Stands in for `requests.request` inside app.payments."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict | None]] = []
        self.created = FakeResponse(200, {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"})
        self.retrieved = FakeResponse(200, {"id": "cs_test_1", "status": "open", "payment_status": "unpaid"})

    def __call__(self, method, url, auth=None, data=None, timeout=None):
        self.calls.append((method, url, data))
        return self.created if method == "POST" else self.retrieved


@pytest.fixture
def stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(payments.requests, "request", fake)
    return fake


@pytest.fixture
def seller(client, make_user, login):
    make_user("sam", role="seller", email_verified=True)
    login("sam")
    resp = client.post("/api/properties", json={"title": "Sea view flat", "price": 4500000, "city": "Chennai"})
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _checkout(client, level: str, property_id: int | None = None):
    body = {
        "level": level,
        "successUrl": "http://localhost:5000/dashboard?payment=success",
        "cancelUrl": "http://localhost:5000/dashboard?payment=cancelled",
    }
    if property_id is not None:
        body["propertyId"] = property_id
    return client.post("/api/create-checkout-session", json=body)


def _signed(event: dict, *, secret: str = "whsec_test", ts: int | None = None) -> tuple[bytes, str]:
    payload = json.dumps(event).encode("utf-8")
    ts = int(time.time()) if ts is None else ts
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return payload, f"t={ts},v1={sig}"


def _completed(session_id: str = "cs_test_1", amount: int = 30000) -> dict:
    return {
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "status": "complete", "payment_status": "paid", "amount_total": amount}},
    }


def _property(pid: int) -> Property:
    with session_scope() as db:
        return db.get(Property, pid)


def test_tier_catalog_is_public(client):
    resp = client.get("/api/subscription-tiers")
    assert resp.status_code == 200
    tiers = {t["id"]: t for t in resp.json()["tiers"]}
    assert tiers["free"]["price"] == 0
    assert tiers["paid"]["title"] == "Enhanced Listing"
    assert tiers["paid"]["price"] == 300
    assert tiers["premium"]["price"] == 500


def test_checkout_creates_pending_session_without_entitlement(client, stripe, seller):
    resp = _checkout(client, "paid", seller)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["sessionId"] == "cs_test_1"
    assert body["url"].startswith("https://checkout.stripe.com/")
    assert "session_id={CHECKOUT_SESSION_ID}" in body["successUrl"]

    method, url, data = stripe.calls[0]
    assert method == "POST"
    assert url.endswith("/v1/checkout/sessions")
    assert data["line_items[0][price_data][unit_amount]"] == 30000
    assert data["line_items[0][price_data][currency]"] == "inr"
    assert data["line_items[0][price_data][product_data][name]"] == "Enhanced Listing"
    assert data["line_items[0][quantity]"] == 1
    assert data["mode"] == "payment"

    prop = _property(seller)
    assert prop.subscription_level == "free"
    assert prop.featured is False
    with session_scope() as db:
        rec = db.execute(select(CheckoutSession)).scalar_one()
        assert rec.status == "pending"
        assert rec.amount == 30000
        assert rec.property_id == seller


def test_premium_amount(client, stripe, seller):
    assert _checkout(client, "premium", seller).status_code == 200
    data = stripe.calls[0][2]
    assert data["line_items[0][price_data][unit_amount]"] == 50000
    assert data["line_items[0][price_data][product_data][name]"] == "Premium Listing"


@pytest.mark.parametrize("level", ["gold", "free", ""])
def test_invalid_tier_never_reaches_provider(client, stripe, seller, level):
    resp = _checkout(client, level, seller)
    assert resp.status_code == 400
    assert stripe.calls == []


def test_provider_failure_is_502_and_leaves_nothing(client, seller, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(payments.requests, "request", boom)
    resp = _checkout(client, "paid", seller)
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Payment failed, please try again"
    with session_scope() as db:
        assert db.execute(select(CheckoutSession)).first() is None
    assert _property(seller).subscription_level == "free"


def test_provider_http_error_is_502(client, stripe, seller):
    stripe.created = FakeResponse(402, {"error": {"message": "card_declined"}})
    assert _checkout(client, "paid", seller).status_code == 502


def test_missing_secret_key_is_502(client, stripe, seller, monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY")
    assert _checkout(client, "paid", seller).status_code == 502
    assert stripe.calls == []


def test_unverified_user_cannot_checkout(client, stripe, make_user, login):
    make_user("ursula")
    login("ursula")
    resp = _checkout(client, "paid")
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "verification_required"
    assert stripe.calls == []


def test_checkout_for_someone_elses_property(client, stripe, seller, make_user, login):
    make_user("mallory", email_verified=True)
    login("mallory")
    assert _checkout(client, "paid", seller).status_code == 403


def test_webhook_applies_entitlement_once(client, stripe, seller):
    assert _checkout(client, "paid", seller).status_code == 200
    payload, header = _signed(_completed())

    for _ in range(2):
        resp = client.post("/api/stripe/webhook", content=payload, headers={"Stripe-Signature": header})
        assert resp.status_code == 200
        assert resp.json() == {"received": True}

    prop = _property(seller)
    assert prop.subscription_level == "paid"
    assert prop.subscription_amount == 300
    assert prop.featured is True
    assert prop.premium is False
    assert prop.subscription_expires_at is not None
    with session_scope() as db:
        activated = db.execute(
            select(Notification).where(Notification.title == "Enhanced Listing activated")
        ).scalars().all()
        assert len(activated) == 1
        assert db.execute(select(CheckoutSession)).scalar_one().status == "paid"


def test_webhook_rejects_bad_signature(client, stripe, seller):
    assert _checkout(client, "paid", seller).status_code == 200
    payload, header = _signed(_completed(), secret="whsec_wrong")
    resp = client.post("/api/stripe/webhook", content=payload, headers={"Stripe-Signature": header})
    assert resp.status_code == 400
    assert _property(seller).subscription_level == "free"


def test_webhook_amount_mismatch_fails_session(client, stripe, seller):
    assert _checkout(client, "paid", seller).status_code == 200
    payload, header = _signed(_completed(amount=100))
    assert client.post("/api/stripe/webhook", content=payload, headers={"Stripe-Signature": header}).status_code == 200
    assert _property(seller).subscription_level == "free"
    with session_scope() as db:
        assert db.execute(select(CheckoutSession)).scalar_one().status == "failed"


def test_webhook_expired_session(client, stripe, seller):
    assert _checkout(client, "paid", seller).status_code == 200
    event = {"type": "checkout.session.expired", "data": {"object": {"id": "cs_test_1", "status": "expired"}}}
    payload, header = _signed(event)
    assert client.post("/api/stripe/webhook", content=payload, headers={"Stripe-Signature": header}).status_code == 200
    with session_scope() as db:
        assert db.execute(select(CheckoutSession)).scalar_one().status == "expired"


def test_confirm_endpoint_polls_provider(client, stripe, seller):
    assert _checkout(client, "premium", seller).status_code == 200

    pending = client.post("/api/checkout-sessions/cs_test_1/confirm")
    assert pending.status_code == 200
    assert pending.json()["status"] == "pending"
    assert _property(seller).subscription_level == "free"

    stripe.retrieved = FakeResponse(
        200, {"id": "cs_test_1", "status": "complete", "payment_status": "paid", "amount_total": 50000}
    )
    paid = client.post("/api/checkout-sessions/cs_test_1/confirm")
    assert paid.status_code == 200
    body = paid.json()
    assert body["status"] == "paid"
    assert body["property"]["subscriptionLevel"] == "premium"
    assert body["property"]["premium"] is True

    calls_before = len(stripe.calls)
    again = client.post("/api/checkout-sessions/cs_test_1/confirm")
    assert again.json()["status"] == "paid"
    assert len(stripe.calls) == calls_before


def test_confirm_unknown_session(client, stripe, seller):
    assert client.post("/api/checkout-sessions/cs_nope/confirm").status_code == 404


def test_free_tier_applies_without_payment(client, stripe, seller):
    resp = client.post(f"/api/properties/{seller}/subscription", json={"level": "free"})
    assert resp.status_code == 200
    assert resp.json()["subscriptionLevel"] == "free"
    assert stripe.calls == []


def test_free_tier_does_not_replace_active_paid_tier(client, stripe, seller):
    assert _checkout(client, "premium", seller).status_code == 200
    payload, header = _signed(_completed(amount=50000))
    assert client.post("/api/stripe/webhook", content=payload, headers={"Stripe-Signature": header}).status_code == 200

    resp = client.post(f"/api/properties/{seller}/subscription", json={"level": "free"})
    assert resp.status_code == 409
    assert "active premium tier" in resp.json()["detail"]

    prop = _property(seller)
    assert prop.subscription_level == "premium"
    assert prop.subscription_expires_at is not None
    assert prop.featured is True
    assert prop.premium is True


def test_paid_tier_direct_selection_requires_payment(client, stripe, seller):
    resp = client.post(f"/api/properties/{seller}/subscription", json={"level": "premium"})
    assert resp.status_code == 402
    assert resp.json()["detail"]["checkout"] == "/api/create-checkout-session"
    assert _property(seller).subscription_level == "free"


# -----------------------
# Signature verification
# -----------------------
def test_signature_roundtrip():
    payload, header = _signed({"type": "ping"}, ts=1_700_000_000)
    event = payments.verify_webhook_signature(payload, header, "whsec_test", now=1_700_000_010)
    assert event == {"type": "ping"}


def test_signature_outside_tolerance():
    payload, header = _signed({"type": "ping"}, ts=1_700_000_000)
    with pytest.raises(payments.WebhookSignatureError):
        payments.verify_webhook_signature(payload, header, "whsec_test", now=1_700_000_000 + 301)


@pytest.mark.parametrize("header", ["", "t=abc,v1=00", "v1=deadbeef", "t=1700000000"])
def test_signature_malformed_header(header):
    with pytest.raises(payments.WebhookSignatureError):
        payments.verify_webhook_signature(b"{}", header, "whsec_test", now=1_700_000_000)


def test_signature_requires_secret():
    payload, header = _signed({"type": "ping"})
    with pytest.raises(payments.WebhookSignatureError):
        payments.verify_webhook_signature(payload, header, "")
