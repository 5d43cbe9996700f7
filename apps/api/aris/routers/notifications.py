"""In-app notifications of the signed-in user."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.db.enums import NotificationType
from aris.schemas.auth import UserSession
from aris.schemas.notification import NotificationListResponse, NotificationRead
from aris.services import notification_service

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    notification_type: NotificationType | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Own and org-wide notifications, newest first, with the unread badge count."""
    items = notification_service.get_notifications(
        db,
        session.user_id,
        session.org_id,
        unread_only=unread_only,
        notification_type=notification_type,
        limit=limit,
        offset=offset,
    )
    unread = notification_service.get_unread_count(db, session.user_id, session.org_id)
    return NotificationListResponse(items=items, unread_count=unread)


@router.post("/read-all", dependencies=[Depends(require_csrf_header)])
def mark_all_read(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    marked = notification_service.mark_all_read(db, session.user_id, session.org_id)
    return {"marked_read": marked}


@router.post(
    "/{notification_id}/read",
    response_model=NotificationRead,
    dependencies=[Depends(require_csrf_header)],
)
def mark_notification_read(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    notification = notification_service.mark_read(db, notification_id, session.user_id, session.org_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
