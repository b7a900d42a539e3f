from __future__ import annotations

import datetime as dt
import logging
from typing import Annotated, Any

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app import otp as otp_service
from app import payments
from app.config import (
    allowed_hosts,
    cors_origins,
    enforce_secure_secrets,
    reset_token_exp_minutes,
    seed_admin_email,
    seed_admin_password,
    seed_admin_username,
    session_cookie_name,
    session_cookie_secure,
    session_max_age_seconds,
    site_url,
    stripe_webhook_secret,
)
from app.db import session_scope
from app.entitlements import TIERS, EntitlementActive, InvalidTier, apply_entitlement, get_tier, tier_out
from app.mailer import EmailSendError, send_password_reset_email
from app.models import USER_ROLES, Base, Property, User
from app.notifications import list_for_user, mark_all_read, mark_read, notification_out, notify, notify_role
from app.rate_limit import limiter
from app.security import (
    MAX_PASSWORD_BYTES,
    create_access_token,
    decode_access_token,
    hash_password,
    password_too_long,
    verify_password,
)
from app.sms import MessageSendError


logger = logging.getLogger(__name__)

app = FastAPI(title="Urgent Sales API")

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return resp


# Credentials are required for the session cookie, so origins must be explicit.
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def seed_admin_user() -> None:
    """
    Create the administrator account when SEED_ADMIN_PASSWORD is set.
    """
    password = seed_admin_password()
    if not password:
        return
    try:
        with session_scope() as db:
            username = seed_admin_username()
            admin = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if admin:
                return
            db.add(
                User(
                    username=username,
                    email=seed_admin_email(),
                    name="Administrator",
                    role="admin",
                    email_verified=True,
                    password_hash=hash_password(password),
                )
            )
    except SQLAlchemyError as e:
        # Tables may not exist until migrations have run.
        logger.warning("Admin seed skipped: %s", e)


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def _session_token(request: Request, authorization: str | None) -> str | None:
    return _bearer_token(authorization) or (request.cookies.get(session_cookie_name()) or "").strip() or None


def _user_from_token(db: Session, token: str) -> User | None:
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub") or 0)
    except (jwt.PyJWTError, ValueError):
        return None
    if not user_id:
        return None
    return db.get(User, user_id)


def get_current_user(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    token = _session_token(request, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = _user_from_token(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid session")
    return user


def get_optional_user(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User | None:
    token = _session_token(request, authorization)
    if not token:
        return None
    return _user_from_token(db, token)


def is_admin(user: User | None) -> bool:
    return bool(user) and (user.role or "").lower() == "admin"


def get_verified_user(me: Annotated[User, Depends(get_current_user)]) -> User:
    """
    Gate for protected operations: admins pass, everyone else needs a verified email.
    """
    if is_admin(me) or me.email_verified:
        return me
    raise HTTPException(
        status_code=403,
        detail={"reason": "verification_required", "message": "Please verify your account to continue"},
    )


def get_admin_user(me: Annotated[User, Depends(get_current_user)]) -> User:
    if not is_admin(me):
        raise HTTPException(status_code=403, detail="Admin only")
    return me


def _set_session_cookie(response: Response, user: User) -> None:
    response.set_cookie(
        key=session_cookie_name(),
        value=create_access_token(user_id=user.id, role=user.role),
        max_age=session_max_age_seconds(),
        httponly=True,
        secure=session_cookie_secure(),
        samesite="lax",
        path="/",
    )


# -----------------------
# Schemas
# -----------------------
class RegisterIn(BaseModel):
    username: str
    email: str
    password: str = Field(min_length=6)
    name: str = ""
    phone: str = ""
    role: str = "buyer"
    verificationMethod: str = "email"


class LoginIn(BaseModel):
    username: str
    password: str


class VerifyOtpIn(BaseModel):
    otp: str = ""
    type: str = "email"


class ResendOtpIn(BaseModel):
    type: str = "email"
    userId: int | None = None


class ForgotPasswordIn(BaseModel):
    email: str


class ResetPasswordIn(BaseModel):
    token: str
    newPassword: str = Field(min_length=6)


class CheckoutIn(BaseModel):
    level: str
    successUrl: str = ""
    cancelUrl: str = ""
    propertyId: int | None = None


class PropertyCreateIn(BaseModel):
    title: str = Field(min_length=3)
    description: str = ""
    price: int = Field(default=0, ge=0)
    propertyType: str = "apartment"
    rentOrSale: str = "sale"
    city: str = ""
    address: str = ""


class PropertySubscriptionIn(BaseModel):
    level: str


class RejectIn(BaseModel):
    reason: str = ""


class NotificationIn(BaseModel):
    userId: int
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: str = "system"
    referenceId: int | None = None
    referenceType: str = ""


class RoleNotificationIn(BaseModel):
    role: str
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: str = "system"


# -----------------------
# Serializers
# -----------------------
def _user_out(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "phone": u.phone or "",
        "name": u.name or "",
        "role": u.role,
        "subscriptionLevel": u.subscription_level,
        "emailVerified": bool(u.email_verified),
        "phoneVerified": bool(u.phone_verified),
        "needsVerification": not bool(u.email_verified),
        "createdAt": u.created_at,
    }


def _property_out(p: Property) -> dict[str, Any]:
    return {
        "id": p.id,
        "ownerId": p.owner_id,
        "title": p.title,
        "description": p.description or "",
        "price": p.price,
        "propertyType": p.property_type,
        "rentOrSale": p.rent_or_sale,
        "city": p.city or "",
        "address": p.address or "",
        "approvalStatus": p.approval_status,
        "rejectionReason": p.rejection_reason or None,
        "approvalDate": p.approval_date,
        "subscriptionLevel": p.subscription_level,
        "subscriptionAmount": p.subscription_amount,
        "subscriptionExpiresAt": p.subscription_expires_at,
        "featured": bool(p.featured),
        "premium": bool(p.premium),
        "createdAt": p.created_at,
    }


def _delivery_message(channel: str, route: str) -> str:
    if route == "console":
        return "OTP generated. Delivery service not configured; check server logs for the OTP."
    return f"OTP sent via {channel}"


# -----------------------
# Health
# -----------------------
@app.get("/health")
def health():
    return {"ok": True}


# -----------------------
# Auth
# -----------------------
@app.post("/api/register", status_code=201)
def register(data: RegisterIn, response: Response, db: Annotated[Session, Depends(get_db)]):
    username = data.username.strip()
    email = data.email.strip().lower()
    phone = (data.phone or "").strip()
    role = (data.role or "buyer").strip().lower()
    method = (data.verificationMethod or "email").strip().lower()

    if len(username) < 3:
        raise HTTPException(status_code=400, detail="Username must be at least 3 characters")
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")
    if role not in USER_ROLES or role == "admin":
        raise HTTPException(status_code=400, detail="Invalid role")
    if password_too_long(data.password):
        raise HTTPException(status_code=400, detail=f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    try:
        method = otp_service.validate_channel(method)
    except otp_service.ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if method in {"sms", "whatsapp"} and not phone:
        raise HTTPException(status_code=400, detail=f"{method} verification requires a valid phone number")

    exists = db.execute(select(User).where((User.username == username) | (User.email == email))).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Username or email already exists")

    user = User(
        username=username,
        email=email,
        phone=phone,
        name=(data.name or "").strip(),
        role=role,
        password_hash=hash_password(data.password),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Concurrent double-submit can still trip the unique constraints.
        db.rollback()
        raise HTTPException(status_code=409, detail="Username or email already exists")

    otp_sent = True
    try:
        otp_service.issue(db, user, method)
    except (EmailSendError, MessageSendError) as e:
        # The account stands; the user can ask for a new code from the verification screen.
        logger.warning("Initial OTP delivery failed for user_id=%s via %s: %s", user.id, method, e)
        otp_sent = False

    _set_session_cookie(response, user)
    return {**_user_out(user), "otpSent": otp_sent, "verificationMethod": method}


@app.post("/api/login")
def login(data: LoginIn, response: Response, db: Annotated[Session, Depends(get_db)]):
    ident = data.username.strip()
    limiter.hit(key=f"login:{ident.lower()}", limit=10, window_seconds=10 * 60, detail="Too many login attempts")
    user = (
        db.execute(select(User).where((User.username == ident) | (User.email == ident.lower())).order_by(User.id))
        .scalars()
        .first()
    )
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    _set_session_cookie(response, user)
    return _user_out(user)


@app.post("/api/logout")
def logout(response: Response):
    response.delete_cookie(key=session_cookie_name(), path="/")
    return {"success": True}


@app.get("/api/user")
def current_user(me: Annotated[User, Depends(get_current_user)]):
    return _user_out(me)


# -----------------------
# OTP verification
# -----------------------
@app.post("/api/verify-otp")
def verify_otp(
    data: VerifyOtpIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    limiter.hit(key=f"otp:verify:{me.id}", limit=10, window_seconds=10 * 60, detail="Too many OTP attempts")
    try:
        result = otp_service.verify(db, me, data.type, data.otp)
    except otp_service.ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except otp_service.InvalidOrExpiredCode:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")

    label = "Email" if result.channel == "email" else "Phone"
    message = f"{label} already verified" if result.already_verified else f"{label} verified successfully"
    return {"success": True, "message": message, "alreadyVerified": result.already_verified, "user": _user_out(result.user)}


@app.post("/api/resend-otp")
def resend_otp(
    data: ResendOtpIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    if data.userId is not None and int(data.userId) != me.id:
        raise HTTPException(status_code=403, detail="Cannot request a code for another user")
    channel = (data.type or "email").strip().lower()
    limiter.hit(key=f"otp:resend:{me.id}:{channel}", limit=5, window_seconds=10 * 60, detail="Too many OTP requests")
    try:
        issued = otp_service.resend(db, me, channel)
    except otp_service.ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (EmailSendError, MessageSendError) as e:
        logger.error("OTP resend failed for user_id=%s via %s: %s", me.id, channel, e)
        raise HTTPException(status_code=500, detail="Failed to send OTP")
    return {"success": True, "message": _delivery_message(channel, issued.route)}


# -----------------------
# Password reset
# -----------------------
@app.post("/api/forgot-password")
def forgot_password(data: ForgotPasswordIn, db: Annotated[Session, Depends(get_db)]):
    email = data.email.strip().lower()
    limiter.hit(key=f"reset:req:{email}", limit=5, window_seconds=10 * 60, detail="Too many reset requests")
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user:
        token = otp_service.issue_reset_token(db, user)
        try:
            send_password_reset_email(
                to_email=user.email,
                reset_url=f"{site_url()}/reset-password?token={token}",
                expires_in_minutes=reset_token_exp_minutes(),
            )
        except EmailSendError as e:
            # Same response either way so the endpoint does not reveal which emails exist.
            logger.error("Password reset email failed for user_id=%s: %s", user.id, e)
    return {"success": True, "message": "If an account exists for that email, a reset link has been sent."}


@app.post("/api/reset-password")
def reset_password(data: ResetPasswordIn, db: Annotated[Session, Depends(get_db)]):
    if password_too_long(data.newPassword):
        raise HTTPException(status_code=400, detail=f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    try:
        user = otp_service.consume_reset_token(db, data.token)
    except otp_service.OtpError:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    user.password_hash = hash_password(data.newPassword)
    db.add(user)
    logger.info("Password reset for user_id=%s", user.id)
    return {"success": True, "message": "Password has been reset"}


# -----------------------
# Subscription tiers and checkout
# -----------------------
@app.get("/api/subscription-tiers")
def subscription_tiers():
    return {"tiers": [tier_out(t) for t in TIERS.values()]}


def _owned_property(db: Session, me: User, property_id: int) -> Property:
    p = db.get(Property, int(property_id))
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    if p.owner_id != me.id and not is_admin(me):
        raise HTTPException(status_code=403, detail="Not your property")
    return p


@app.post("/api/create-checkout-session")
def create_checkout_session(
    data: CheckoutIn,
    me: Annotated[User, Depends(get_verified_user)],
    db: Annotated[Session, Depends(get_db)],
):
    limiter.hit(key=f"checkout:{me.id}", limit=10, window_seconds=10 * 60, detail="Too many checkout attempts")
    prop = _owned_property(db, me, data.propertyId) if data.propertyId is not None else None
    try:
        handle = payments.create_checkout(
            db,
            user=me,
            level=data.level,
            success_url=data.successUrl or f"{site_url()}/dashboard?payment=success",
            cancel_url=data.cancelUrl or f"{site_url()}/dashboard?payment=cancelled",
            prop=prop,
        )
    except ValueError as e:
        # InvalidTier and malformed callback URLs.
        raise HTTPException(status_code=400, detail=str(e))
    except payments.PaymentProviderError as e:
        logger.error("Checkout creation failed for user_id=%s level=%s: %s", me.id, data.level, e)
        raise HTTPException(status_code=502, detail="Payment failed, please try again")
    return {
        "sessionId": handle.session_id,
        "url": handle.url,
        "successUrl": handle.success_url,
        "cancelUrl": handle.cancel_url,
    }


@app.post("/api/checkout-sessions/{session_id}/confirm")
def confirm_checkout_session(
    session_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    rec = payments.get_checkout_record(db, session_id)
    if not rec or (rec.user_id != me.id and not is_admin(me)):
        raise HTTPException(status_code=404, detail="Checkout session not found")
    if rec.status == "pending":
        try:
            remote = payments.fetch_checkout_session(session_id)
        except payments.PaymentProviderError as e:
            logger.error("Checkout lookup failed for %s: %s", session_id, e)
            raise HTTPException(status_code=502, detail="Payment failed, please try again")
        payments.settle_from_provider(db, rec, remote)

    out = payments.checkout_out(rec)
    if rec.property_id is not None:
        prop = db.get(Property, rec.property_id)
        out["property"] = _property_out(prop) if prop else None
    return out


async def _raw_body(request: Request) -> bytes:
    # The signature covers the exact bytes Stripe sent.
    return await request.body()


@app.post("/api/stripe/webhook")
def stripe_webhook(
    payload: Annotated[bytes, Depends(_raw_body)],
    db: Annotated[Session, Depends(get_db)],
    stripe_signature: Annotated[str | None, Header()] = None,
):
    try:
        event = payments.verify_webhook_signature(payload, stripe_signature or "", stripe_webhook_secret())
    except payments.WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail="Invalid signature")
    result = payments.handle_event(db, event)
    logger.info("Webhook %s -> %s", event.get("type"), result)
    return {"received": True}


# -----------------------
# Properties
# -----------------------
@app.post("/api/properties", status_code=201)
def create_property(
    data: PropertyCreateIn,
    me: Annotated[User, Depends(get_verified_user)],
    db: Annotated[Session, Depends(get_db)],
):
    rent_or_sale = (data.rentOrSale or "sale").strip().lower()
    if rent_or_sale not in {"rent", "sale"}:
        raise HTTPException(status_code=400, detail="rentOrSale must be 'rent' or 'sale'")
    p = Property(
        owner_id=me.id,
        title=data.title.strip(),
        description=(data.description or "").strip(),
        price=int(data.price),
        property_type=(data.propertyType or "apartment").strip().lower(),
        rent_or_sale=rent_or_sale,
        city=(data.city or "").strip(),
        address=(data.address or "").strip(),
        approval_status="approved" if is_admin(me) else "pending",
    )
    db.add(p)
    db.flush()
    apply_entitlement(db, p, "free")
    if p.approval_status == "pending":
        notify_role(
            db,
            role="admin",
            title="New property pending approval",
            message=f"'{p.title}' was submitted by {me.username}.",
            type="property",
        )
    return _property_out(p)


def _listing_query(*, featured: bool | None = None, premium: bool | None = None, approved_only: bool = True):
    q = select(Property)
    if approved_only:
        q = q.where(Property.approval_status == "approved")
    if featured is not None:
        q = q.where(Property.featured.is_(featured))
    if premium is not None:
        q = q.where(Property.premium.is_(premium))
    # Promoted listings first.
    return q.order_by(Property.premium.desc(), Property.featured.desc(), Property.id.desc())


@app.get("/api/properties")
def list_properties(
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User | None, Depends(get_optional_user)],
    featured: bool | None = None,
    premium: bool | None = None,
    city: str = "",
    limit: int = 50,
):
    q = _listing_query(featured=featured, premium=premium, approved_only=not is_admin(me))
    if city.strip():
        q = q.where(func.lower(Property.city) == city.strip().lower())
    rows = db.execute(q.limit(max(1, min(int(limit), 200)))).scalars()
    return {"items": [_property_out(p) for p in rows]}


@app.get("/api/properties/featured")
def featured_properties(db: Annotated[Session, Depends(get_db)]):
    rows = db.execute(_listing_query(featured=True).limit(20)).scalars()
    return {"items": [_property_out(p) for p in rows]}


@app.get("/api/properties/premium")
def premium_properties(db: Annotated[Session, Depends(get_db)]):
    rows = db.execute(_listing_query(premium=True).limit(20)).scalars()
    return {"items": [_property_out(p) for p in rows]}


@app.get("/api/properties/pending")
def pending_properties(
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    rows = db.execute(
        select(Property).where(Property.approval_status == "pending").order_by(Property.id.asc())
    ).scalars()
    return {"items": [_property_out(p) for p in rows]}


@app.get("/api/properties/{property_id:int}")
def get_property(
    property_id: int,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User | None, Depends(get_optional_user)],
):
    p = db.get(Property, int(property_id))
    # Unapproved listings are visible to their owner and admins only.
    if not p or (p.approval_status != "approved" and not (me and (me.id == p.owner_id or is_admin(me)))):
        raise HTTPException(status_code=404, detail="Property not found")
    return _property_out(p)


@app.get("/api/user/properties")
def my_properties(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    rows = db.execute(select(Property).where(Property.owner_id == me.id).order_by(Property.id.desc())).scalars()
    return {"items": [_property_out(p) for p in rows]}


@app.post("/api/properties/{property_id:int}/subscription")
def set_property_subscription(
    property_id: int,
    data: PropertySubscriptionIn,
    me: Annotated[User, Depends(get_verified_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = _owned_property(db, me, property_id)
    try:
        tier = get_tier(data.level)
    except InvalidTier as e:
        raise HTTPException(status_code=400, detail=str(e))
    if tier.requires_payment:
        raise HTTPException(
            status_code=402,
            detail={"message": "Payment required", "checkout": "/api/create-checkout-session", "level": tier.id},
        )
    try:
        apply_entitlement(db, p, tier.id)
    except EntitlementActive as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _property_out(p)


def _moderate(db: Session, admin: User, property_id: int, *, status: str, reason: str = "") -> Property:
    p = db.get(Property, int(property_id))
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    p.approval_status = status
    p.approved_by = admin.id
    p.approval_date = dt.datetime.now(dt.timezone.utc)
    p.rejection_reason = reason
    db.add(p)
    if status == "approved":
        title, message = "Property approved", f"'{p.title}' is now live."
    else:
        title, message = "Property rejected", f"'{p.title}' was rejected. {reason}".strip()
    notify(db, user_id=p.owner_id, title=title, message=message, type="property", reference_id=p.id, reference_type="property")
    logger.info("Property %s %s by admin_id=%s", p.id, status, admin.id)
    return p


@app.post("/api/properties/{property_id:int}/approve")
def approve_property(
    property_id: int,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return _property_out(_moderate(db, me, property_id, status="approved"))


@app.post("/api/properties/{property_id:int}/reject")
def reject_property(
    property_id: int,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
    data: RejectIn | None = None,
):
    return _property_out(_moderate(db, me, property_id, status="rejected", reason=((data.reason if data else "") or "").strip()))


# -----------------------
# Notifications
# -----------------------
@app.get("/api/notifications")
def get_notifications(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    items = list_for_user(db, me.id)
    return {"items": [notification_out(n) for n in items], "unread": sum(1 for n in items if not n.is_read)}


@app.post("/api/notifications/read-all")
def read_all_notifications(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    mark_all_read(db, me.id)
    return {"success": True}


@app.post("/api/notifications/{notification_id:int}/read")
def read_notification(
    notification_id: int,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    n = mark_read(db, user_id=me.id, notification_id=notification_id)
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification_out(n)


@app.post("/api/notifications", status_code=201)
def create_notification(
    data: NotificationIn,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    if not db.get(User, int(data.userId)):
        raise HTTPException(status_code=404, detail="User not found")
    try:
        n = notify(
            db,
            user_id=int(data.userId),
            title=data.title.strip(),
            message=data.message.strip(),
            type=data.type,
            reference_id=data.referenceId,
            reference_type=data.referenceType,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return notification_out(n)


@app.post("/api/notifications/role")
def create_role_notification(
    data: RoleNotificationIn,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    role = data.role.strip().lower()
    if role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    try:
        count = notify_role(db, role=role, title=data.title.strip(), message=data.message.strip(), type=data.type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "recipients": count}


# -----------------------
# Admin
# -----------------------
@app.get("/api/admin/database/tables")
def admin_database_tables(
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    tables = []
    for table in Base.metadata.sorted_tables:
        count = db.execute(select(func.count()).select_from(table)).scalar_one()
        tables.append({"name": table.name, "rowCount": int(count)})
    return {"tables": tables}
