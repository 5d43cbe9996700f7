"""
Notification Service - in-app notifications.

Notifications are created by follow-up reminders, billing webhooks and
failed mailbox syncs. A notification with user_id=None is visible to every
member of the organization.
"""

from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from aris.db.enums import NotificationType
from aris.db.models import Notification
from aris.db.types import utcnow


def create_notification(
    db: Session,
    org_id: UUID,
    notification_type: NotificationType,
    title: str,
    message: str,
    user_id: UUID | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
) -> Notification:
    """Create a notification. Caller commits."""
    notification = Notification(
        organization_id=org_id,
        user_id=user_id,
        notification_type=notification_type.value,
        title=title[:255],
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    db.add(notification)
    db.flush()
    return notification


def _visible_to(user_id: UUID, org_id: UUID):
    return (
        Notification.organization_id == org_id,
        or_(Notification.user_id == user_id, Notification.user_id.is_(None)),
    )


def get_notifications(
    db: Session,
    user_id: UUID,
    org_id: UUID,
    unread_only: bool = False,
    notification_type: NotificationType | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Notification]:
    """Notifications visible to the user, newest first."""
    query = db.query(Notification).filter(*_visible_to(user_id, org_id))
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    if notification_type is not None:
        query = query.filter(Notification.notification_type == notification_type.value)
    return (
        query.order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_unread_count(db: Session, user_id: UUID, org_id: UUID) -> int:
    return (
        db.query(Notification)
        .filter(*_visible_to(user_id, org_id), Notification.read_at.is_(None))
        .count()
    )


def mark_read(
    db: Session,
    notification_id: UUID,
    user_id: UUID,
    org_id: UUID,
) -> Notification | None:
    """Mark a single notification as read. Returns None if not visible to user."""
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, *_visible_to(user_id, org_id))
        .first()
    )
    if not notification:
        return None
    if notification.read_at is None:
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: UUID, org_id: UUID) -> int:
    """Mark all notifications as read. Returns count updated."""
    notifications = (
        db.query(Notification)
        .filter(*_visible_to(user_id, org_id), Notification.read_at.is_(None))
        .all()
    )
    now = utcnow()
    for n in notifications:
        n.read_at = now
    db.commit()
    return len(notifications)
