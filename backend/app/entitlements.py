from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.models import Property, User
from app.notifications import notify

logger = logging.getLogger(__name__)


class InvalidTier(ValueError):
    pass


class EntitlementActive(ValueError):
    """The listing still holds an unexpired paid tier."""


@dataclass(frozen=True)
class Tier:
    id: str
    title: str
    price: int  # whole rupees
    description: str
    duration_days: int
    featured: bool = False
    premium: bool = False
    badge: str = ""
    features: tuple[str, ...] = field(default_factory=tuple)

    @property
    def amount_minor(self) -> int:
        # Processor amounts are in paise.
        return self.price * 100

    @property
    def requires_payment(self) -> bool:
        return self.price > 0


TIERS: dict[str, Tier] = {
    "free": Tier(
        id="free",
        title="Free Listing",
        price=0,
        description="Basic listing for your property",
        duration_days=90,
        features=(
            "Standard listing visibility",
            "Up to 5 photos",
            "Basic property details",
            "90-day listing period",
        ),
    ),
    "paid": Tier(
        id="paid",
        title="Enhanced Listing",
        price=300,
        description="Better visibility for your property",
        duration_days=120,
        featured=True,
        badge="Popular",
        features=(
            "Higher search rankings",
            "Up to 15 photos and 2 videos",
            "Featured in category pages",
            "Highlighted in search results",
            "120-day listing period",
        ),
    ),
    "premium": Tier(
        id="premium",
        title="Premium Listing",
        price=500,
        description="Maximum exposure for faster sales",
        duration_days=180,
        featured=True,
        premium=True,
        features=(
            "Top position in search results",
            "Priority in recommendations",
            "Up to 25 photos and 5 videos",
            "Premium badge on listing",
            "Featured on homepage",
            "Unlimited listing period (6 months)",
            "Social media promotion",
        ),
    ),
}


def get_tier(level: str) -> Tier:
    tier = TIERS.get((level or "").strip().lower())
    if tier is None:
        raise InvalidTier(f"Unknown subscription level: {level!r}")
    return tier


def get_paid_tier(level: str) -> Tier:
    tier = get_tier(level)
    if not tier.requires_payment:
        raise InvalidTier("Checkout is only available for paid and premium listings")
    return tier


def tier_out(t: Tier) -> dict[str, Any]:
    return {
        "id": t.id,
        "title": t.title,
        "price": t.price,
        "description": t.description,
        "durationDays": t.duration_days,
        "badge": t.badge or None,
        "features": list(t.features),
    }


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


def has_active_paid_tier(prop: Property, *, now: dt.datetime | None = None) -> bool:
    tier = TIERS.get(prop.subscription_level or "")
    if tier is None or not tier.requires_payment or prop.subscription_expires_at is None:
        return False
    now = now or dt.datetime.now(dt.timezone.utc)
    return _as_utc(prop.subscription_expires_at) > now


def apply_entitlement(
    db: Session,
    prop: Property,
    level: str,
    *,
    now: dt.datetime | None = None,
) -> Property:
    """
    Stamp a tier on a listing.

    Paid tiers must only reach this after a confirmed payment; callers are
    the free-tier endpoint and checkout confirmation in app.payments.
    A free tier never replaces a paid one before it expires.
    """
    tier = get_tier(level)
    now = now or dt.datetime.now(dt.timezone.utc)
    if not tier.requires_payment and has_active_paid_tier(prop, now=now):
        raise EntitlementActive(
            f"Listing already has an active {prop.subscription_level} tier "
            f"until {_as_utc(prop.subscription_expires_at):%Y-%m-%d}"
        )

    prop.subscription_level = tier.id
    prop.subscription_amount = tier.price
    prop.subscription_expires_at = now + dt.timedelta(days=tier.duration_days) if tier.requires_payment else None
    prop.featured = tier.featured
    prop.premium = tier.premium
    db.add(prop)

    owner = db.get(User, prop.owner_id)
    if owner is not None and tier.requires_payment:
        owner.subscription_level = tier.id
        db.add(owner)

    if tier.requires_payment:
        notify(
            db,
            user_id=prop.owner_id,
            title=f"{tier.title} activated",
            message=f"'{prop.title}' is now promoted as a {tier.title} until {prop.subscription_expires_at:%Y-%m-%d}.",
            type="property",
            reference_id=prop.id,
            reference_type="property",
        )
    db.flush()
    logger.info("Applied %s entitlement to property_id=%s", tier.id, prop.id)
    return prop
