"""
Listing tier selection.

``SELECTING -> AWAITING_PAYMENT -> CONFIRMED | FAILED``. The free tier goes
straight to CONFIRMED. A paid tier is only reported as the chosen level once
the server confirms the checkout; until then `level` stays None.
"""

from __future__ import annotations

import logging
import webbrowser
from enum import Enum
from typing import Any, Callable

from frontend_app.payment import PAYMENT_FAILED_MESSAGE, CheckoutRedirect, PaymentFailed, start_checkout
from frontend_app.utils.api import ApiClient, ApiError

logger = logging.getLogger(__name__)


class SelectorState(str, Enum):
    SELECTING = "selecting"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class InvalidTransition(RuntimeError):
    pass


class SubscriptionSelector:
    def __init__(
        self,
        api: ApiClient,
        *,
        origin: str,
        property_id: int | None = None,
        redirect: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self.api = api
        self.origin = origin
        self.property_id = property_id
        self.redirect = redirect
        self.state = SelectorState.SELECTING
        self.level: str | None = None
        self.error = ""
        self.checkout: CheckoutRedirect | None = None
        self._pending_level: str | None = None

    def tiers(self) -> list[dict[str, Any]]:
        return self.api.subscription_tiers()

    def select(self, level: str) -> SelectorState:
        if self.state not in {SelectorState.SELECTING, SelectorState.FAILED}:
            raise InvalidTransition(f"Cannot select a tier while {self.state.value}")
        level = (level or "").strip().lower()
        self.error = ""

        if level == "free":
            if self.property_id is not None:
                try:
                    self.api.set_property_subscription(self.property_id, "free")
                except ApiError as e:
                    return self._fail(e.message)
            self.level = "free"
            self.state = SelectorState.CONFIRMED
            return self.state

        try:
            self.checkout = start_checkout(
                self.api, level, self.origin, property_id=self.property_id, redirect=self.redirect
            )
        except PaymentFailed as e:
            return self._fail(str(e))
        self._pending_level = level
        self.state = SelectorState.AWAITING_PAYMENT
        return self.state

    def confirm(self, session_id: str | None = None) -> SelectorState:
        """Poll the server after the success redirect."""
        if self.state is not SelectorState.AWAITING_PAYMENT:
            raise InvalidTransition(f"No checkout awaiting payment (state={self.state.value})")
        sid = session_id or (self.checkout.session_id if self.checkout else "")
        try:
            resp = self.api.confirm_checkout(sid)
        except ApiError as e:
            logger.warning("Checkout confirmation failed for %s: %s", sid, e)
            return self._fail(PAYMENT_FAILED_MESSAGE)

        status = str(resp.get("status") or "")
        if status == "paid":
            self.level = str(resp.get("level") or self._pending_level or "")
            self._pending_level = None
            self.state = SelectorState.CONFIRMED
        elif status in {"expired", "failed"}:
            self._fail(PAYMENT_FAILED_MESSAGE)
        return self.state

    def cancel(self) -> SelectorState:
        """The user came back through the cancel URL."""
        if self.state is not SelectorState.AWAITING_PAYMENT:
            raise InvalidTransition(f"No checkout awaiting payment (state={self.state.value})")
        return self._fail("Payment cancelled")

    def _fail(self, message: str) -> SelectorState:
        self.state = SelectorState.FAILED
        self.error = message or PAYMENT_FAILED_MESSAGE
        self._pending_level = None
        return self.state
