from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rental_marketplace.errors import NotFoundError
from rental_marketplace.models.rental_models import Notification
from rental_marketplace.services.pricing_service import utcnow

NOTIFICATION_LOGGER = logging.getLogger("rental_marketplace.notifications")

NOTIFICATION_TYPES = {"INFO", "SUCCESS", "WARNING", "ERROR"}


def notify(
    db: Session,
    user_id: int,
    notification_type: str,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification | None:
    """Persist a notification for ``user_id``.

    Runs after the caller's transaction has committed. A failure here is
    logged and rolled back, never raised, so it cannot undo the business
    change that triggered it.
    """
    kind = (notification_type or "INFO").strip().upper()
    if kind not in NOTIFICATION_TYPES:
        kind = "INFO"
    try:
        notification = Notification(
            UserID=user_id,
            NotificationType=kind,
            Title=title,
            Message=message,
            Link=link,
            IsRead=False,
        )
        db.add(notification)
        db.commit()
        return notification
    except SQLAlchemyError:
        db.rollback()
        NOTIFICATION_LOGGER.exception("Notification failed user_id=%s title=%s", user_id, title)
        return None


def list_notifications(db: Session, user_id: int, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    stmt = select(Notification).where(Notification.UserID == user_id)
    if unread_only:
        stmt = stmt.where(Notification.IsRead.is_(False))
    stmt = stmt.order_by(Notification.NotificationID.desc()).limit(max(1, min(int(limit), 200)))
    return db.execute(stmt).scalars().all()


def unread_count(db: Session, user_id: int) -> int:
    rows = db.execute(
        select(Notification.NotificationID)
        .where(Notification.UserID == user_id)
        .where(Notification.IsRead.is_(False))
    ).all()
    return len(rows)


def mark_as_read(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = db.execute(
        select(Notification)
        .where(Notification.NotificationID == notification_id)
        .where(Notification.UserID == user_id)
    ).scalars().first()
    if not notification:
        raise NotFoundError("Notification not found", notification_id=notification_id)
    if not notification.IsRead:
        now = utcnow()
        notification.IsRead = True
        notification.ReadAt = now
        notification.UpdatedAt = now
        db.commit()
    return notification


def mark_all_as_read(db: Session, user_id: int) -> int:
    rows = db.execute(
        select(Notification)
        .where(Notification.UserID == user_id)
        .where(Notification.IsRead.is_(False))
    ).scalars().all()
    now = utcnow()
    for notification in rows:
        notification.IsRead = True
        notification.ReadAt = now
        notification.UpdatedAt = now
    db.commit()
    if rows:
        NOTIFICATION_LOGGER.info("Marked %s notification(s) read user_id=%s", len(rows), user_id)
    return len(rows)


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.NotificationID,
        "user_id": notification.UserID,
        "type": notification.NotificationType,
        "title": notification.Title,
        "message": notification.Message,
        "link": notification.Link,
        "is_read": bool(notification.IsRead),
        "read_at": notification.ReadAt,
        "created_at": notification.CreatedAt,
    }
