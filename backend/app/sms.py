from __future__ import annotations

import logging
import os

import requests

logger = logging.getLogger(__name__)


class MessageSendError(RuntimeError):
    pass


def sms_backend() -> str:
    """
    SMS delivery backend.
    - "console" (default): log the SMS payload (safe fallback)
    - "twilio": Twilio Messages API (TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM)
    - "disabled": do nothing
    """
    return (os.environ.get("SMS_BACKEND") or "console").strip().lower()


def whatsapp_backend() -> str:
    """Same choices as `sms_backend`; WhatsApp sends use TWILIO_WHATSAPP_FROM."""
    return (os.environ.get("WHATSAPP_BACKEND") or "console").strip().lower()


def _send_via_twilio(*, to_phone: str, text: str, from_number: str) -> None:
    sid = (os.environ.get("TWILIO_ACCOUNT_SID") or "").strip()
    token = (os.environ.get("TWILIO_AUTH_TOKEN") or "").strip()
    if not sid or not token or not from_number:
        raise MessageSendError("Twilio not configured")
    try:
        resp = requests.post(
            f"https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json",
            auth=(sid, token),
            data={"From": from_number, "To": to_phone, "Body": text},
            timeout=15,
        )
    except requests.RequestException as e:
        raise MessageSendError(f"Twilio request failed: {e}") from e
    if not (200 <= int(resp.status_code) < 300):
        raise MessageSendError(f"Twilio send failed: HTTP {resp.status_code}: {resp.text[:300]}")


def _deliver(*, backend: str, channel: str, to_phone: str, text: str, from_number: str) -> str:
    to_phone = (to_phone or "").strip()
    text = (text or "").strip()
    if not to_phone or not text:
        return "skipped"

    if backend in {"disabled", "off", "none"}:
        return "disabled"

    if backend == "twilio":
        _send_via_twilio(to_phone=to_phone, text=text, from_number=from_number)
        return channel

    # Default safe fallback.
    logger.warning("%s backend=%s: to=%s\n%s", channel.upper(), backend, to_phone, text)
    return "console"


def send_sms(*, to_phone: str, text: str) -> str:
    """
    Sends an SMS message.

    Returns the delivery route used ("sms", "console", "disabled" or "skipped").
    """
    return _deliver(
        backend=sms_backend(),
        channel="sms",
        to_phone=to_phone,
        text=text,
        from_number=(os.environ.get("TWILIO_FROM") or "").strip(),
    )


def send_whatsapp(*, to_phone: str, text: str) -> str:
    from_number = (os.environ.get("TWILIO_WHATSAPP_FROM") or "").strip()
    if from_number and not from_number.startswith("whatsapp:"):
        from_number = f"whatsapp:{from_number}"
    to = (to_phone or "").strip()
    if to and whatsapp_backend() == "twilio" and not to.startswith("whatsapp:"):
        to = f"whatsapp:{to}"
    return _deliver(backend=whatsapp_backend(), channel="whatsapp", to_phone=to, text=text, from_number=from_number)


def send_otp_message(*, channel: str, to_phone: str, otp: str, expires_in_minutes: int) -> str:
    text = (
        f"Your Urgent Sales verification code is {otp}. "
        f"It expires in {expires_in_minutes} minutes."
    )
    if channel == "whatsapp":
        return send_whatsapp(to_phone=to_phone, text=text)
    return send_sms(to_phone=to_phone, text=text)
