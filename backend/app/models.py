from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


USER_ROLES = ("buyer", "seller", "agent", "company_admin", "admin")
VERIFICATION_CHANNELS = ("email", "sms", "whatsapp")
SUBSCRIPTION_LEVELS = ("free", "paid", "premium")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
NOTIFICATION_TYPES = ("system", "promotion", "update", "property")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    phone: Mapped[str] = mapped_column(String(32), default="")
    name: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(32), default="buyer")  # see USER_ROLES
    subscription_level: Mapped[str] = mapped_column(String(20), default="free")

    # Flipped only by the OTP verifier.
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    password_hash: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    properties = relationship("Property", back_populates="owner", foreign_keys="Property.owner_id")
    otp_codes = relationship("OneTimeCode", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class OneTimeCode(Base):
    __tablename__ = "otp_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    channel: Mapped[str] = mapped_column(String(20), index=True)  # email | sms | whatsapp | reset
    # 6 digits for verification codes, 64 hex chars for password reset tokens.
    code: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    consumed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="otp_codes")


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[int] = mapped_column(Integer, default=0)
    property_type: Mapped[str] = mapped_column(String(40), default="apartment")
    rent_or_sale: Mapped[str] = mapped_column(String(10), default="sale")
    city: Mapped[str] = mapped_column(String(120), default="", index=True)
    address: Mapped[str] = mapped_column(String(512), default="")

    # Admin approval workflow
    approval_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejection_reason: Mapped[str] = mapped_column(Text, default="")
    approval_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Entitlement; written only by app.entitlements.
    subscription_level: Mapped[str] = mapped_column(String(20), default="free", index=True)
    subscription_amount: Mapped[int] = mapped_column(Integer, default=0)
    subscription_expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    featured: Mapped[bool] = mapped_column(Boolean, default=False)
    premium: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="properties", foreign_keys=[owner_id])
    checkout_sessions = relationship("CheckoutSession", back_populates="property")


class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Processor-side handle (Stripe `cs_...`).
    session_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    property_id: Mapped[int | None] = mapped_column(ForeignKey("properties.id"), nullable=True, index=True)
    level: Mapped[str] = mapped_column(String(20))
    amount: Mapped[int] = mapped_column(Integer)  # minor units (paise)
    currency: Mapped[str] = mapped_column(String(8), default="inr")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending|paid|expired|failed
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    property = relationship("Property", back_populates="checkout_sessions")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), default="system")  # see NOTIFICATION_TYPES
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reference_type: Mapped[str] = mapped_column(String(40), default="")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="notifications")
