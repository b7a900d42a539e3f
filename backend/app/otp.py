"""
One-time codes: issue, verify, resend.

Codes are bound to a user and a delivery channel. A code is consumed with a
conditional UPDATE (``consumed = false`` in the WHERE clause) so that two
concurrent verify calls for the same code cannot both apply side effects.

Issuing a new code deletes earlier unconsumed codes for the same
``(user, channel)`` pair: the last code sent is the only one that works.
"""

from __future__ import annotations

import datetime as dt
import hmac
import logging
import secrets
from dataclasses import dataclass

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.config import otp_exp_minutes, reset_token_exp_minutes
from app.mailer import send_otp_email
from app.models import VERIFICATION_CHANNELS, OneTimeCode, User
from app.notifications import notify
from app.sms import send_otp_message

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
RESET_CHANNEL = "reset"


class OtpError(Exception):
    pass


class ValidationError(OtpError):
    """Malformed input: wrong code length, unknown channel, missing phone number."""


class InvalidOrExpiredCode(OtpError):
    pass


@dataclass
class IssuedCode:
    otp: OneTimeCode
    route: str  # email | sms | whatsapp | console | disabled


@dataclass
class VerifyResult:
    user: User
    channel: str
    already_verified: bool = False


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(d: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if d.tzinfo is None:
        return d.replace(tzinfo=dt.timezone.utc)
    return d


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def validate_channel(channel: str) -> str:
    channel = (channel or "").strip().lower()
    if channel not in VERIFICATION_CHANNELS:
        raise ValidationError(
            f"Invalid verification type. Supported types: {', '.join(VERIFICATION_CHANNELS)}"
        )
    return channel


def validate_code_format(code: str) -> str:
    code = (code or "").strip()
    if not code:
        raise ValidationError("OTP is required")
    if len(code) != OTP_LENGTH or not code.isdigit():
        raise ValidationError(f"OTP must be a {OTP_LENGTH}-digit code")
    return code


def _deliver(user: User, channel: str, code: str) -> str:
    mins = otp_exp_minutes()
    if channel == "email":
        return send_otp_email(to_email=user.email, otp=code, expires_in_minutes=mins)
    return send_otp_message(channel=channel, to_phone=user.phone, otp=code, expires_in_minutes=mins)


def issue(db: Session, user: User, channel: str, *, now: dt.datetime | None = None) -> IssuedCode:
    channel = validate_channel(channel)
    if channel in {"sms", "whatsapp"} and not (user.phone or "").strip():
        raise ValidationError(f"{channel} verification requires a valid phone number")

    now = now or _utcnow()
    db.execute(
        delete(OneTimeCode).where(
            (OneTimeCode.user_id == user.id)
            & (OneTimeCode.channel == channel)
            & (OneTimeCode.consumed.is_(False))
        )
    )
    otp = OneTimeCode(
        user_id=user.id,
        channel=channel,
        code=generate_code(),
        expires_at=now + dt.timedelta(minutes=otp_exp_minutes()),
        created_at=now,
    )
    db.add(otp)
    db.flush()

    route = _deliver(user, channel, otp.code)
    logger.info("Issued %s OTP for user_id=%s via %s", channel, user.id, route)
    return IssuedCode(otp=otp, route=route)


def resend(db: Session, user: User, channel: str, *, now: dt.datetime | None = None) -> IssuedCode:
    return issue(db, user, channel, now=now)


def _is_channel_verified(user: User, channel: str) -> bool:
    if channel == "email":
        return bool(user.email_verified)
    return bool(user.phone_verified)


def _mark_channel_verified(user: User, channel: str) -> None:
    if channel == "email":
        user.email_verified = True
    else:
        user.phone_verified = True


def _already_consumed(db: Session, user: User, channel: str, code: str) -> bool:
    hit = db.execute(
        select(OneTimeCode.id).where(
            (OneTimeCode.user_id == user.id)
            & (OneTimeCode.channel == channel)
            & (OneTimeCode.code == code)
            & (OneTimeCode.consumed.is_(True))
        )
    ).first()
    return hit is not None


def _consume(db: Session, otp_id: int, now: dt.datetime) -> bool:
    """Compare-and-set on the consumed flag. True only for the caller that flipped it."""
    result = db.execute(
        update(OneTimeCode)
        .where((OneTimeCode.id == otp_id) & (OneTimeCode.consumed.is_(False)))
        .values(consumed=True, consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def verify(db: Session, user: User, channel: str, submitted: str, *, now: dt.datetime | None = None) -> VerifyResult:
    channel = validate_channel(channel)
    submitted = validate_code_format(submitted)
    now = now or _utcnow()

    otp = (
        db.execute(
            select(OneTimeCode)
            .where(
                (OneTimeCode.user_id == user.id)
                & (OneTimeCode.channel == channel)
                & (OneTimeCode.consumed.is_(False))
            )
            .order_by(OneTimeCode.id.desc())
        )
        .scalars()
        .first()
    )

    matches = otp is not None and hmac.compare_digest(otp.code, submitted)
    if not matches or now > _as_utc(otp.expires_at):
        # Duplicate submit of a code that already went through: report success, change nothing.
        if _is_channel_verified(user, channel) and _already_consumed(db, user, channel, submitted):
            return VerifyResult(user=user, channel=channel, already_verified=True)
        raise InvalidOrExpiredCode("Invalid or expired OTP")

    if not _consume(db, otp.id, now):
        logger.info("OTP %s for user_id=%s consumed by a concurrent request", otp.id, user.id)
        db.refresh(user)
        return VerifyResult(user=user, channel=channel, already_verified=True)

    _mark_channel_verified(user, channel)
    db.add(user)
    notify(
        db,
        user_id=user.id,
        title="Verification successful",
        message=f"Your {channel} has been verified.",
        type="system",
    )
    db.flush()
    logger.info("User %s verified via %s", user.id, channel)
    return VerifyResult(user=user, channel=channel)


# -----------------------
# Password reset tokens
# -----------------------
def issue_reset_token(db: Session, user: User, *, now: dt.datetime | None = None) -> str:
    now = now or _utcnow()
    db.execute(
        delete(OneTimeCode).where(
            (OneTimeCode.user_id == user.id)
            & (OneTimeCode.channel == RESET_CHANNEL)
            & (OneTimeCode.consumed.is_(False))
        )
    )
    token = secrets.token_hex(32)
    db.add(
        OneTimeCode(
            user_id=user.id,
            channel=RESET_CHANNEL,
            code=token,
            expires_at=now + dt.timedelta(minutes=reset_token_exp_minutes()),
            created_at=now,
        )
    )
    db.flush()
    return token


def consume_reset_token(db: Session, token: str, *, now: dt.datetime | None = None) -> User:
    token = (token or "").strip()
    if not token:
        raise ValidationError("Reset token is required")
    now = now or _utcnow()
    rec = db.execute(
        select(OneTimeCode).where(
            (OneTimeCode.channel == RESET_CHANNEL)
            & (OneTimeCode.code == token)
            & (OneTimeCode.consumed.is_(False))
        )
    ).scalar_one_or_none()
    if rec is None or now > _as_utc(rec.expires_at) or not _consume(db, rec.id, now):
        raise InvalidOrExpiredCode("Invalid or expired reset token")
    user = db.get(User, rec.user_id)
    if user is None:
        raise InvalidOrExpiredCode("Invalid or expired reset token")
    return user
