from __future__ import annotations

import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable

from frontend_app.utils.api import ApiClient, ApiError

logger = logging.getLogger(__name__)

PAYMENT_FAILED_MESSAGE = "Payment failed, please try again"


class PaymentFailed(Exception):
    pass


@dataclass(frozen=True)
class CheckoutRedirect:
    session_id: str
    url: str


def checkout_urls(origin: str) -> tuple[str, str]:
    origin = (origin or "").rstrip("/")
    success = f"{origin}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}"
    cancel = f"{origin}/dashboard?payment=cancelled"
    return success, cancel


def start_checkout(
    api: ApiClient,
    level: str,
    origin: str,
    *,
    property_id: int | None = None,
    redirect: Callable[[str], Any] = webbrowser.open,
) -> CheckoutRedirect:
    """
    Create a hosted checkout for a paid tier and send the browser there.

    Raises `PaymentFailed` with the user-facing message on any failure.
    """
    if (level or "").strip().lower() == "free":
        raise ValueError("The free tier does not go through checkout")
    success_url, cancel_url = checkout_urls(origin)
    try:
        resp = api.create_checkout_session(
            level=level, success_url=success_url, cancel_url=cancel_url, property_id=property_id
        )
    except ApiError as e:
        logger.warning("Checkout creation failed for level=%s: %s", level, e)
        raise PaymentFailed(PAYMENT_FAILED_MESSAGE) from e

    url = str(resp.get("url") or "")
    session_id = str(resp.get("sessionId") or "")
    if not url or not session_id:
        raise PaymentFailed(PAYMENT_FAILED_MESSAGE)
    redirect(url)
    return CheckoutRedirect(session_id=session_id, url=url)
