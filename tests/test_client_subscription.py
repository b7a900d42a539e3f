from __future__ import annotations

import pytest

from frontend_app.payment import PAYMENT_FAILED_MESSAGE, PaymentFailed, checkout_urls, start_checkout
from frontend_app.subscription import InvalidTransition, SelectorState, SubscriptionSelector
from frontend_app.utils.api import ApiError


class StubApi:
    def __init__(self, *, checkout_error=None, status="paid"):
        self.checkout_error = checkout_error
        self.status = status
        self.checkouts = []
        self.confirms = []
        self.free_calls = []

    def create_checkout_session(self, *, level, success_url, cancel_url, property_id=None):
        self.checkouts.append((level, success_url, cancel_url, property_id))
        if self.checkout_error is not None:
            raise self.checkout_error
        return {"sessionId": "cs_1", "url": "https://checkout.example/cs_1", "successUrl": success_url, "cancelUrl": cancel_url}

    def confirm_checkout(self, session_id):
        self.confirms.append(session_id)
        return {"sessionId": session_id, "status": self.status, "level": "premium"}

    def set_property_subscription(self, property_id, level):
        self.free_calls.append((property_id, level))
        return {"id": property_id, "subscriptionLevel": level}


def _selector(api, **kwargs):
    opened = []
    sel = SubscriptionSelector(api, origin="http://localhost:5000", redirect=opened.append, **kwargs)
    return sel, opened


def test_free_confirms_without_payment():
    api = StubApi()
    sel, opened = _selector(api)
    assert sel.select("free") is SelectorState.CONFIRMED
    assert sel.level == "free"
    assert api.checkouts == []
    assert opened == []


def test_free_with_property_applies_on_server():
    api = StubApi()
    sel, _ = _selector(api, property_id=12)
    sel.select("free")
    assert api.free_calls == [(12, "free")]
    assert api.checkouts == []


def test_paid_waits_for_confirmation():
    api = StubApi(status="pending")
    sel, opened = _selector(api, property_id=12)
    assert sel.select("premium") is SelectorState.AWAITING_PAYMENT
    assert opened == ["https://checkout.example/cs_1"]
    assert sel.level is None
    assert api.checkouts[0][0] == "premium"
    assert api.checkouts[0][3] == 12

    assert sel.confirm() is SelectorState.AWAITING_PAYMENT
    assert sel.level is None

    api.status = "paid"
    assert sel.confirm("cs_1") is SelectorState.CONFIRMED
    assert sel.level == "premium"


def test_checkout_failure_then_retry():
    api = StubApi(checkout_error=ApiError("Payment failed, please try again", status_code=502))
    sel, opened = _selector(api)
    assert sel.select("paid") is SelectorState.FAILED
    assert sel.error == PAYMENT_FAILED_MESSAGE
    assert sel.level is None
    assert opened == []

    api.checkout_error = None
    assert sel.select("paid") is SelectorState.AWAITING_PAYMENT


def test_expired_checkout_fails():
    api = StubApi(status="expired")
    sel, _ = _selector(api)
    sel.select("paid")
    assert sel.confirm() is SelectorState.FAILED
    assert sel.level is None


def test_cancel_and_invalid_transitions():
    api = StubApi()
    sel, _ = _selector(api)
    with pytest.raises(InvalidTransition):
        sel.confirm()
    sel.select("paid")
    with pytest.raises(InvalidTransition):
        sel.select("premium")
    assert sel.cancel() is SelectorState.FAILED


def test_checkout_urls():
    success, cancel = checkout_urls("http://localhost:5000/")
    assert success == "http://localhost:5000/dashboard?payment=success&session_id={CHECKOUT_SESSION_ID}"
    assert cancel == "http://localhost:5000/dashboard?payment=cancelled"


def test_start_checkout_rejects_free():
    with pytest.raises(ValueError):
        start_checkout(StubApi(), "free", "http://localhost:5000", redirect=lambda url: None)


def test_start_checkout_missing_url_is_failure():
    api = StubApi()
    api.create_checkout_session = lambda **kwargs: {"sessionId": "cs_1", "url": ""}
    with pytest.raises(PaymentFailed) as exc:
        start_checkout(api, "paid", "http://localhost:5000", redirect=lambda url: None)
    assert str(exc.value) == PAYMENT_FAILED_MESSAGE
