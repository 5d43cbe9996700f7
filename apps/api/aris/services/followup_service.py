"""Follow-up service - track sent emails that still wait for an answer.

Status changes go through transition() which enforces FOLLOWUP_TRANSITIONS.
Each follow-up gets a dashboard reminder at its due date; the reminder sweep
turns due reminders into in-app notifications.
"""

import logging
import re
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.db.enums import (
    FOLLOWUP_TRANSITIONS, OPEN_FOLLOWUP_STATUSES, EmailType, FollowupPriority, FollowupStatus,
    FollowupType, NotificationType, ReminderStatus, ReminderType,
)
from aris.db.models import EmailFollowup, EmailIndex, FollowupReminder
from aris.db.types import as_utc, utcnow
from aris.schemas.followup import FollowupCreate
from aris.services import notification_service

logger = logging.getLogger(__name__)

AUTO_REPLY_PATTERNS = [
    re.compile(r"^(re:|fwd?:|fw:)", re.IGNORECASE),
    re.compile(r"out of office", re.IGNORECASE),
    re.compile(r"automatic reply", re.IGNORECASE),
    re.compile(r"auto.?reply", re.IGNORECASE),
    re.compile(r"vacation", re.IGNORECASE),
    re.compile(r"away", re.IGNORECASE),
    re.compile(r"unsubscribe", re.IGNORECASE),
]

# Sent mail older than this is not tracked when it is first synced
TRACK_SENT_MAX_AGE = timedelta(days=14)

# A due follow-up becomes overdue after this grace period
OVERDUE_AFTER = timedelta(days=1)

_OPEN_VALUES = [s.value for s in OPEN_FOLLOWUP_STATUSES]


class FollowupError(Exception):
    """Base error for follow-up operations."""


class FollowupNotFoundError(FollowupError):
    def __init__(self, followup_id: UUID):
        self.followup_id = followup_id
        super().__init__("Follow-up not found")


class InvalidFollowupTransitionError(FollowupError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change follow-up from '{current}' to '{target}'")


class InvalidSnoozeError(FollowupError):
    def __init__(self):
        super().__init__("Snooze time must be in the future")


def is_auto_reply_subject(subject: str) -> bool:
    return any(pattern.search(subject or "") for pattern in AUTO_REPLY_PATTERNS)


# =============================================================================
# Reminders
# =============================================================================

def _schedule_reminder(
    db: Session,
    followup: EmailFollowup,
    at: datetime,
    reminder_type: ReminderType = ReminderType.DASHBOARD,
) -> FollowupReminder:
    reminder = FollowupReminder(
        followup_id=followup.id,
        organization_id=followup.organization_id,
        user_id=followup.user_id,
        reminder_type=reminder_type.value,
        scheduled_for=at,
        status=ReminderStatus.PENDING.value,
        message=f"Follow-up due: {followup.original_subject}",
    )
    db.add(reminder)
    return reminder


def _cancel_pending_reminders(db: Session, followup: EmailFollowup) -> int:
    reminders = (
        db.query(FollowupReminder)
        .filter(
            FollowupReminder.followup_id == followup.id,
            FollowupReminder.status == ReminderStatus.PENDING.value,
        )
        .all()
    )
    for reminder in reminders:
        reminder.status = ReminderStatus.CANCELLED.value
    return len(reminders)


def list_reminders(db: Session, followup: EmailFollowup) -> list[FollowupReminder]:
    return (
        db.query(FollowupReminder)
        .filter(FollowupReminder.followup_id == followup.id)
        .order_by(FollowupReminder.scheduled_for)
        .all()
    )


def deliver_due_reminders(db: Session, now: datetime | None = None, limit: int = 500) -> dict:
    """
    Reminder sweep.

    Due reminders of open follow-ups become notifications; reminders whose
    follow-up was closed in the meantime are cancelled.
    """
    now = now or utcnow()
    reminders = (
        db.query(FollowupReminder)
        .filter(
            FollowupReminder.status == ReminderStatus.PENDING.value,
            FollowupReminder.scheduled_for <= now,
        )
        .order_by(FollowupReminder.scheduled_for)
        .limit(limit)
        .all()
    )

    delivered = cancelled = 0
    for reminder in reminders:
        followup = reminder.followup
        if followup.status not in _OPEN_VALUES:
            reminder.status = ReminderStatus.CANCELLED.value
            cancelled += 1
            continue

        notification_service.create_notification(
            db,
            org_id=reminder.organization_id,
            user_id=reminder.user_id,
            notification_type=NotificationType.FOLLOWUP_DUE,
            title=reminder.message,
            message=(
                f'No response received to your email "{followup.original_subject}". '
                "Consider sending a follow-up."
            ),
            entity_type="email_followup",
            entity_id=followup.id,
        )
        reminder.status = ReminderStatus.SENT.value
        reminder.sent_at = now
        followup.reminder_count += 1
        followup.last_reminder_at = now
        delivered += 1

    db.commit()
    if delivered or cancelled:
        logger.info("Reminder sweep delivered=%d cancelled=%d", delivered, cancelled)
    return {"delivered": delivered, "cancelled": cancelled}


# =============================================================================
# CRUD
# =============================================================================

def create_followup(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    data: FollowupCreate,
) -> EmailFollowup:
    """Create a follow-up and its dashboard reminder at the due date."""
    due_at = data.follow_up_due_at
    if due_at is None:
        days = data.follow_up_days if data.follow_up_days is not None else settings.FOLLOWUP_DEFAULT_DAYS
        due_at = data.original_sent_at + timedelta(days=days)

    followup = EmailFollowup(
        organization_id=org_id,
        user_id=user_id,
        email_id=data.email_id,
        original_sent_at=data.original_sent_at,
        follow_up_due_at=due_at,
        status=FollowupStatus.PENDING.value,
        follow_up_type=data.follow_up_type.value,
        priority=data.priority.value,
        original_subject=data.original_subject,
        original_recipients=[r.lower() for r in data.original_recipients],
        context_summary=data.context_summary,
        follow_up_reason=data.follow_up_reason,
        details=data.metadata,
        reminder_count=0,
    )
    db.add(followup)
    db.flush()
    _schedule_reminder(db, followup, due_at)
    db.commit()
    db.refresh(followup)
    return followup


def get_followup(db: Session, org_id: UUID, user_id: UUID, followup_id: UUID) -> EmailFollowup | None:
    return (
        db.query(EmailFollowup)
        .filter(
            EmailFollowup.id == followup_id,
            EmailFollowup.organization_id == org_id,
            EmailFollowup.user_id == user_id,
        )
        .first()
    )


def require_followup(db: Session, org_id: UUID, user_id: UUID, followup_id: UUID) -> EmailFollowup:
    followup = get_followup(db, org_id, user_id, followup_id)
    if not followup:
        raise FollowupNotFoundError(followup_id)
    return followup


def list_followups(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    statuses: list[FollowupStatus] | None = None,
    priorities: list[FollowupPriority] | None = None,
    limit: int = 50,
) -> list[EmailFollowup]:
    """Follow-ups ordered by due date, soonest first."""
    query = db.query(EmailFollowup).filter(
        EmailFollowup.organization_id == org_id,
        EmailFollowup.user_id == user_id,
    )
    if statuses:
        query = query.filter(EmailFollowup.status.in_([s.value for s in statuses]))
    if priorities:
        query = query.filter(EmailFollowup.priority.in_([p.value for p in priorities]))
    return query.order_by(EmailFollowup.follow_up_due_at).limit(limit).all()


def get_due_followups(
    db: Session,
    org_id: UUID,
    user_id: UUID | None = None,
    now: datetime | None = None,
    limit: int = 100,
) -> list[EmailFollowup]:
    """Open follow-ups whose due date has passed (snoozed ones count once due)."""
    now = now or utcnow()
    query = db.query(EmailFollowup).filter(
        EmailFollowup.organization_id == org_id,
        EmailFollowup.status.in_(_OPEN_VALUES),
        EmailFollowup.follow_up_due_at <= now,
    )
    if user_id:
        query = query.filter(EmailFollowup.user_id == user_id)
    return query.order_by(EmailFollowup.follow_up_due_at).limit(limit).all()


def get_stats(db: Session, org_id: UUID, user_id: UUID, now: datetime | None = None) -> dict:
    now = now or utcnow()
    followups = (
        db.query(EmailFollowup.status, EmailFollowup.follow_up_due_at, EmailFollowup.response_received_at)
        .filter(EmailFollowup.organization_id == org_id, EmailFollowup.user_id == user_id)
        .all()
    )

    total = len(followups)
    pending = due = overdue = completed = cancelled = responded = 0
    for status, due_at, response_at in followups:
        if status in _OPEN_VALUES:
            pending += 1
            if due_at <= now - OVERDUE_AFTER:
                overdue += 1
            elif due_at <= now:
                due += 1
        elif status == FollowupStatus.COMPLETED.value:
            completed += 1
        elif status == FollowupStatus.CANCELLED.value:
            cancelled += 1
        if response_at is not None:
            responded += 1

    considered = total - cancelled
    response_rate = round(responded / considered * 100, 1) if considered else 0.0
    return {
        "total": total,
        "pending": pending,
        "due": due,
        "overdue": overdue,
        "completed": completed,
        "response_rate": response_rate,
    }


# =============================================================================
# Transitions
# =============================================================================

def transition(db: Session, followup: EmailFollowup, target: FollowupStatus) -> EmailFollowup:
    """
    Move a follow-up to a new status.

    Raises:
        InvalidFollowupTransitionError: Not allowed from the current status
    """
    current = FollowupStatus(followup.status)
    if target not in FOLLOWUP_TRANSITIONS[current]:
        raise InvalidFollowupTransitionError(current.value, target.value)

    now = utcnow()
    followup.status = target.value
    if target == FollowupStatus.SENT:
        followup.follow_up_sent_at = now
    if target in (FollowupStatus.COMPLETED, FollowupStatus.CANCELLED):
        _cancel_pending_reminders(db, followup)
    db.commit()
    db.refresh(followup)
    return followup


def complete(db: Session, followup: EmailFollowup) -> EmailFollowup:
    return transition(db, followup, FollowupStatus.COMPLETED)


def mark_sent(db: Session, followup: EmailFollowup) -> EmailFollowup:
    return transition(db, followup, FollowupStatus.SENT)


def cancel(db: Session, followup: EmailFollowup) -> EmailFollowup:
    return transition(db, followup, FollowupStatus.CANCELLED)


def snooze(db: Session, followup: EmailFollowup, until: datetime) -> EmailFollowup:
    """
    Push the due date out and restart reminders.

    Raises:
        InvalidSnoozeError: until is not in the future
        InvalidFollowupTransitionError: follow-up is closed
    """
    current = FollowupStatus(followup.status)
    if FollowupStatus.SNOOZED not in FOLLOWUP_TRANSITIONS[current]:
        raise InvalidFollowupTransitionError(current.value, FollowupStatus.SNOOZED.value)
    until = as_utc(until)
    if until <= utcnow():
        raise InvalidSnoozeError()

    followup.status = FollowupStatus.SNOOZED.value
    followup.follow_up_due_at = until
    followup.reminder_count = 0
    followup.last_reminder_at = None
    _cancel_pending_reminders(db, followup)
    _schedule_reminder(db, followup, until)
    db.commit()
    db.refresh(followup)
    return followup


def bulk_apply(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    ids: list[UUID],
    action: str,
    until: datetime | None = None,
) -> list[dict]:
    """Apply one action to many follow-ups; returns one outcome per id."""
    actions = {
        "complete": complete,
        "sent": mark_sent,
        "cancel": cancel,
    }
    outcomes = []
    for followup_id in dict.fromkeys(ids):
        followup = get_followup(db, org_id, user_id, followup_id)
        if not followup:
            outcomes.append({"id": followup_id, "success": False, "error": "Follow-up not found"})
            continue
        try:
            if action == "snooze":
                if until is None:
                    raise InvalidSnoozeError()
                snooze(db, followup, until)
            else:
                actions[action](db, followup)
        except FollowupError as exc:
            db.rollback()
            outcomes.append({"id": followup_id, "success": False, "status": followup.status, "error": str(exc)})
            continue
        outcomes.append({"id": followup_id, "success": True, "status": followup.status})
    return outcomes


# =============================================================================
# Mail hooks (sync and send paths)
# =============================================================================

def track_sent_email(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    subject: str,
    recipients: list[str],
    sent_at: datetime,
    email_id: UUID | None = None,
    follow_up_days: int | None = None,
    priority: FollowupPriority = FollowupPriority.MEDIUM,
) -> EmailFollowup | None:
    """
    Start tracking a sent email.

    Replies, forwards and auto-replies are not tracked; neither is an
    email that already has a follow-up.
    """
    if not recipients or is_auto_reply_subject(subject):
        return None
    if email_id and db.query(EmailFollowup).filter(EmailFollowup.email_id == email_id).first():
        return None

    data = FollowupCreate(
        email_id=email_id,
        original_sent_at=sent_at,
        follow_up_days=follow_up_days,
        priority=priority,
        follow_up_type=FollowupType.AUTO,
        original_subject=subject,
        original_recipients=recipients,
        context_summary="Automatically tracked sent email",
        follow_up_reason="No response received",
        metadata={"auto_tracked": True, "tracking_enabled_at": utcnow().isoformat()},
    )
    return create_followup(db, org_id, user_id, data)


def should_track_synced(sent_at: datetime | None, now: datetime | None = None) -> bool:
    """Only recent sent mail is tracked when it is first synced."""
    if sent_at is None:
        return False
    return sent_at >= (now or utcnow()) - TRACK_SENT_MAX_AGE


def record_response(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    sender_email: str | None,
    received_at: datetime,
) -> int:
    """
    Close open follow-ups answered by an incoming message.

    A message from one of the original recipients, received after the
    original was sent, completes the follow-up. Caller commits.
    """
    if not sender_email:
        return 0
    sender = sender_email.lower()
    candidates = (
        db.query(EmailFollowup)
        .filter(
            EmailFollowup.organization_id == org_id,
            EmailFollowup.user_id == user_id,
            EmailFollowup.status.in_(_OPEN_VALUES + [FollowupStatus.SENT.value]),
            EmailFollowup.original_sent_at < received_at,
        )
        .all()
    )
    closed = 0
    for followup in candidates:
        if sender not in (followup.original_recipients or []):
            continue
        _close_with_response(db, followup, received_at)
        closed += 1
    return closed


def _close_with_response(db: Session, followup: EmailFollowup, received_at: datetime) -> None:
    followup.response_received_at = received_at
    followup.status = FollowupStatus.COMPLETED.value
    _cancel_pending_reminders(db, followup)


def complete_if_already_answered(db: Session, followup: EmailFollowup) -> bool:
    """
    Complete a new follow-up whose reply was indexed before it was tracked.

    Happens when one sync pulls the inbox ahead of the sent folder.
    """
    recipients = followup.original_recipients or []
    if not recipients:
        return False
    reply = (
        db.query(EmailIndex)
        .filter(
            EmailIndex.organization_id == followup.organization_id,
            EmailIndex.user_id == followup.user_id,
            EmailIndex.email_type == EmailType.RECEIVED.value,
            EmailIndex.sender_email.in_(recipients),
            EmailIndex.received_at > followup.original_sent_at,
        )
        .order_by(EmailIndex.received_at.asc())
        .first()
    )
    if reply is None:
        return False
    _close_with_response(db, followup, reply.received_at)
    db.commit()
    return True
