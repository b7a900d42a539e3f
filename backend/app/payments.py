"""
Payment bridge to Stripe Checkout.

Checkout sessions are created through the Stripe REST API. A paid tier is
never applied when the session is created: the listing is stamped only when
Stripe reports the session as paid, either through the signed webhook or the
success-page confirm call. Both paths go through `confirm_checkout`, which
moves a session from ``pending`` to ``paid`` with a conditional update so
the entitlement is applied once.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import requests
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.config import payment_currency, stripe_api_base, stripe_secret_key
from app.entitlements import apply_entitlement, get_paid_tier
from app.models import CheckoutSession, Property, User
from app.notifications import notify

logger = logging.getLogger(__name__)

SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"
WEBHOOK_TOLERANCE_SECONDS = 300


class PaymentProviderError(RuntimeError):
    pass


class PaymentNotConfigured(PaymentProviderError):
    pass


class WebhookSignatureError(ValueError):
    pass


@dataclass
class CheckoutHandle:
    session_id: str
    url: str
    success_url: str
    cancel_url: str
    record: CheckoutSession


def _stripe_request(method: str, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    key = stripe_secret_key()
    if not key:
        raise PaymentNotConfigured("STRIPE_SECRET_KEY not configured")
    url = f"{stripe_api_base()}/v1/{path.lstrip('/')}"
    try:
        resp = requests.request(method, url, auth=(key, ""), data=data, timeout=15)
    except requests.RequestException as e:
        raise PaymentProviderError(f"Stripe request failed: {e}") from e
    if not (200 <= int(resp.status_code) < 300):
        raise PaymentProviderError(f"Stripe HTTP {resp.status_code}: {resp.text[:300]}")
    try:
        return dict(resp.json() or {})
    except ValueError as e:
        raise PaymentProviderError("Stripe returned a non-JSON response") from e


def _validate_callback_url(url: str, name: str) -> str:
    url = (url or "").strip()
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ValueError(f"{name} must be an absolute http(s) URL")
    return url


def _with_session_placeholder(success_url: str) -> str:
    # The success page needs the session id to call the confirm endpoint.
    if SESSION_ID_PLACEHOLDER in success_url:
        return success_url
    sep = "&" if "?" in success_url else "?"
    return f"{success_url}{sep}session_id={SESSION_ID_PLACEHOLDER}"


def create_checkout(
    db: Session,
    *,
    user: User,
    level: str,
    success_url: str,
    cancel_url: str,
    prop: Property | None = None,
) -> CheckoutHandle:
    tier = get_paid_tier(level)
    success_url = _with_session_placeholder(_validate_callback_url(success_url, "successUrl"))
    cancel_url = _validate_callback_url(cancel_url, "cancelUrl")
    currency = payment_currency()

    payload: dict[str, Any] = {
        "mode": "payment",
        "payment_method_types[0]": "card",
        "line_items[0][price_data][currency]": currency,
        "line_items[0][price_data][product_data][name]": tier.title,
        "line_items[0][price_data][unit_amount]": tier.amount_minor,
        "line_items[0][quantity]": 1,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": str(user.id),
        "metadata[user_id]": str(user.id),
        "metadata[level]": tier.id,
    }
    if prop is not None:
        payload["metadata[property_id]"] = str(prop.id)

    data = _stripe_request("POST", "checkout/sessions", payload)
    session_id = str(data.get("id") or "").strip()
    if not session_id:
        raise PaymentProviderError("Stripe response did not include a session id")

    rec = CheckoutSession(
        session_id=session_id,
        user_id=user.id,
        property_id=prop.id if prop is not None else None,
        level=tier.id,
        amount=tier.amount_minor,
        currency=currency,
        status="pending",
    )
    db.add(rec)
    db.flush()
    logger.info("Created checkout %s for user_id=%s level=%s", session_id, user.id, tier.id)
    return CheckoutHandle(
        session_id=session_id,
        url=str(data.get("url") or ""),
        success_url=success_url,
        cancel_url=cancel_url,
        record=rec,
    )


def fetch_checkout_session(session_id: str) -> dict[str, Any]:
    return _stripe_request("GET", f"checkout/sessions/{session_id}")


def get_checkout_record(db: Session, session_id: str) -> CheckoutSession | None:
    return db.execute(
        select(CheckoutSession).where(CheckoutSession.session_id == session_id)
    ).scalar_one_or_none()


def _set_status(db: Session, rec: CheckoutSession, *, to: str, now: dt.datetime) -> bool:
    result = db.execute(
        update(CheckoutSession)
        .where((CheckoutSession.id == rec.id) & (CheckoutSession.status == "pending"))
        .values(status=to, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.refresh(rec)
    return result.rowcount == 1


def confirm_checkout(db: Session, rec: CheckoutSession, *, now: dt.datetime | None = None) -> bool:
    """Apply the paid entitlement. Returns False if the session was already settled."""
    now = now or dt.datetime.now(dt.timezone.utc)
    if not _set_status(db, rec, to="paid", now=now):
        return False

    if rec.property_id is not None:
        prop = db.get(Property, rec.property_id)
        if prop is not None:
            apply_entitlement(db, prop, rec.level, now=now)
            return True
        logger.warning("Checkout %s paid for missing property_id=%s", rec.session_id, rec.property_id)

    user = db.get(User, rec.user_id)
    if user is not None:
        user.subscription_level = rec.level
        db.add(user)
        notify(
            db,
            user_id=user.id,
            title="Payment received",
            message=f"Your {rec.level} subscription is active.",
            type="system",
        )
    db.flush()
    return True


def settle_from_provider(db: Session, rec: CheckoutSession, session: dict[str, Any], *, now: dt.datetime | None = None) -> str:
    """
    Reconcile a local checkout record with the processor's view of the session.

    Returns the resulting local status.
    """
    now = now or dt.datetime.now(dt.timezone.utc)
    if rec.status != "pending":
        return rec.status

    status = str(session.get("status") or "")
    payment_status = str(session.get("payment_status") or "")
    amount_total = session.get("amount_total")

    if payment_status == "paid":
        if amount_total is not None and int(amount_total) != int(rec.amount):
            logger.error(
                "Checkout %s amount mismatch: expected %s got %s", rec.session_id, rec.amount, amount_total
            )
            _set_status(db, rec, to="failed", now=now)
            return rec.status
        confirm_checkout(db, rec, now=now)
        db.refresh(rec)
        return rec.status

    if status == "expired":
        _set_status(db, rec, to="expired", now=now)
    return rec.status


def verify_webhook_signature(
    payload: bytes,
    header: str,
    secret: str,
    *,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Validate a `Stripe-Signature` header (``t=<ts>,v1=<hex>[,v1=...]``) and decode the event.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    timestamp = ""
    signatures: list[str] = []
    for part in (header or "").split(","):
        k, _, v = part.strip().partition("=")
        if k == "t":
            timestamp = v
        elif k == "v1":
            signatures.append(v)
    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError("Malformed signature timestamp") from e

    signed = timestamp.encode("utf-8") + b"." + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise WebhookSignatureError("Signature mismatch")
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    try:
        return dict(json.loads(payload.decode("utf-8")))
    except (UnicodeDecodeError, ValueError) as e:
        raise WebhookSignatureError("Invalid JSON payload") from e


def handle_event(db: Session, event: dict[str, Any]) -> str:
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    session_id = str(obj.get("id") or "")
    if not event_type.startswith("checkout.session.") or not session_id:
        return "ignored"

    rec = get_checkout_record(db, session_id)
    if rec is None:
        logger.warning("Webhook %s for unknown checkout %s", event_type, session_id)
        return "ignored"

    if event_type in {"checkout.session.completed", "checkout.session.async_payment_succeeded"}:
        return settle_from_provider(db, rec, obj)
    if event_type == "checkout.session.expired":
        _set_status(db, rec, to="expired", now=dt.datetime.now(dt.timezone.utc))
        return rec.status
    if event_type == "checkout.session.async_payment_failed":
        _set_status(db, rec, to="failed", now=dt.datetime.now(dt.timezone.utc))
        return rec.status
    return "ignored"


def checkout_out(rec: CheckoutSession) -> dict[str, Any]:
    return {
        "sessionId": rec.session_id,
        "level": rec.level,
        "amount": rec.amount,
        "currency": rec.currency,
        "status": rec.status,
        "propertyId": rec.property_id,
        "completedAt": rec.completed_at,
    }
