from __future__ import annotations

import json
import logging
import smtplib
import ssl
from email.message import EmailMessage

import requests

from app.config import (
    brevo_api_key,
    brevo_from_email,
    brevo_sender_name,
    email_backend,
    is_local_dev,
    smtp_from_email,
    smtp_host,
    smtp_pass,
    smtp_port,
    smtp_user,
)

logger = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    pass


class EmailNotConfigured(EmailSendError):
    """No delivery provider is configured (as opposed to a provider rejecting the send)."""


def _send_via_brevo(*, to_email: str, subject: str, text: str, html: str = "") -> None:
    """
    Uses Brevo Transactional Email API:
    https://developers.brevo.com/docs/send-a-transactional-email
    """
    key = brevo_api_key()
    if not key:
        raise EmailNotConfigured("BREVO_API_KEY not configured")
    sender_email = (brevo_from_email() or smtp_from_email()).strip()
    if not sender_email:
        raise EmailNotConfigured("BREVO_FROM/SMTP_FROM not configured")

    payload = {
        "sender": {"email": sender_email, "name": brevo_sender_name()},
        "to": [{"email": to_email}],
        "subject": subject,
        "textContent": text,
    }
    if html:
        payload["htmlContent"] = html
    try:
        resp = requests.post(
            "https://api.brevo.com/v3/smtp/email",
            headers={"api-key": key, "Content-Type": "application/json", "Accept": "application/json"},
            data=json.dumps(payload),
            timeout=15,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Brevo request failed: {e}") from e
    if not (200 <= int(resp.status_code) < 300):
        raise EmailSendError(f"Brevo send failed: HTTP {resp.status_code}: {resp.text[:500]}")


def _send_via_smtp(*, to_email: str, subject: str, text: str, html: str = "") -> None:
    host = smtp_host()
    port = int(smtp_port())
    user = smtp_user()
    password = smtp_pass()
    sender = smtp_from_email()
    if not host:
        raise EmailNotConfigured("SMTP_HOST not configured")
    if not sender:
        raise EmailNotConfigured("SMTP_FROM (or BREVO_FROM/SMTP_USER) not configured")

    msg = EmailMessage()
    msg["From"] = f"Urgent Sales <{sender}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")

    timeout = 15
    try:
        if port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, timeout=timeout, context=context) as s:
                if user and password:
                    s.login(user, password)
                s.send_message(msg)
            return

        with smtplib.SMTP(host, port, timeout=timeout) as s:
            s.ehlo()
            if s.has_extn("starttls"):
                s.starttls(context=ssl.create_default_context())
                s.ehlo()
            if user and password:
                s.login(user, password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


def send_email(*, to_email: str, subject: str, text: str, html: str = "") -> None:
    """
    Prefer Brevo if configured; otherwise fall back to SMTP.
    """
    to_email = (to_email or "").strip()
    if not to_email or "@" not in to_email:
        raise EmailSendError("Invalid recipient email")

    backend = email_backend()
    if backend in ("console", "log"):
        logger.warning(
            "EMAIL_BACKEND=console: to=%s subject=%s\n%s",
            to_email,
            subject,
            text,
        )
        return

    if backend == "brevo":
        _send_via_brevo(to_email=to_email, subject=subject, text=text, html=html)
        return

    if backend == "smtp":
        _send_via_smtp(to_email=to_email, subject=subject, text=text, html=html)
        return

    # "auto" (default): prefer Brevo when API key is present.
    if brevo_api_key():
        _send_via_brevo(to_email=to_email, subject=subject, text=text, html=html)
        return

    if smtp_host():
        _send_via_smtp(to_email=to_email, subject=subject, text=text, html=html)
        return

    # Dev-friendly fallback (no external email service configured).
    if is_local_dev():
        logger.warning(
            "No email provider configured; falling back to console output in local dev.\n"
            "to=%s subject=%s\n%s",
            to_email,
            subject,
            text,
        )
        return

    raise EmailNotConfigured(
        "Email provider not configured. Set BREVO_API_KEY+BREVO_FROM (Brevo) or SMTP_HOST+SMTP_FROM (SMTP)."
    )


def send_otp_email(*, to_email: str, otp: str, expires_in_minutes: int) -> str:
    subject = "Your Urgent Sales verification code"
    text = (
        f"Your OTP for account verification is: {otp}\n\n"
        f"This code expires in {expires_in_minutes} minutes.\n\n"
        "If you did not request this, you can ignore this email."
    )
    html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        "<h2>Urgent Sales - Verification</h2>"
        "<p>Please use the verification code below to complete your account setup:</p>"
        f'<p style="font-size: 24px; font-weight: bold; letter-spacing: 5px;">{otp}</p>'
        f"<p>This code will expire in <strong>{expires_in_minutes} minutes</strong>.</p>"
        "</div>"
    )
    try:
        send_email(to_email=to_email, subject=subject, text=text, html=html)
        return "email"
    except EmailNotConfigured as e:
        # Keep verification usable on fresh deployments: the code lands in server logs.
        logger.warning(
            "OTP delivery fallback (email not configured): to=%s otp=%s expires_in_minutes=%s error=%s",
            to_email,
            otp,
            expires_in_minutes,
            str(e),
        )
        return "console"


def send_password_reset_email(*, to_email: str, reset_url: str, expires_in_minutes: int) -> str:
    subject = "Reset your password - Urgent Sales"
    text = (
        "You requested a password reset. Open the following link to choose a new password:\n\n"
        f"{reset_url}\n\n"
        f"This link expires in {expires_in_minutes} minutes. "
        "If you did not request this, you can ignore this email."
    )
    try:
        send_email(to_email=to_email, subject=subject, text=text)
        return "email"
    except EmailNotConfigured as e:
        logger.warning("Password reset delivery fallback: to=%s url=%s error=%s", to_email, reset_url, str(e))
        return "console"
