from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import NOTIFICATION_TYPES, Notification, User

logger = logging.getLogger(__name__)


def notify(
    db: Session,
    *,
    user_id: int,
    title: str,
    message: str,
    type: str = "system",
    reference_id: int | None = None,
    reference_type: str = "",
) -> Notification:
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Invalid notification type: {type}")
    n = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        reference_id=reference_id,
        reference_type=reference_type,
    )
    db.add(n)
    db.flush()
    return n


def notify_role(db: Session, *, role: str, title: str, message: str, type: str = "system") -> int:
    """Fan a notification out to every user holding `role`. Returns the recipient count."""
    user_ids = db.execute(select(User.id).where(User.role == role)).scalars().all()
    for uid in user_ids:
        notify(db, user_id=uid, title=title, message=message, type=type)
    logger.info("Sent %s notification(s) to role=%s", len(user_ids), role)
    return len(user_ids)


def list_for_user(db: Session, user_id: int) -> list[Notification]:
    return list(
        db.execute(
            select(Notification).where(Notification.user_id == user_id).order_by(Notification.id.desc())
        ).scalars()
    )


def mark_read(db: Session, *, user_id: int, notification_id: int) -> Notification | None:
    n = db.get(Notification, notification_id)
    # Other users' notifications are reported as missing.
    if not n or n.user_id != user_id:
        return None
    n.is_read = True
    db.add(n)
    return n


def mark_all_read(db: Session, user_id: int) -> None:
    db.execute(
        update(Notification)
        .where((Notification.user_id == user_id) & (Notification.is_read.is_(False)))
        .values(is_read=True)
    )


def notification_out(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "userId": n.user_id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "referenceId": n.reference_id,
        "referenceType": n.reference_type or None,
        "isRead": bool(n.is_read),
        "createdAt": n.created_at,
    }
