"""Follow-ups router - tracked sent emails, reminders, AI drafts and automation."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import can_manage_automation, get_current_session, get_db, require_csrf_header
from aris.db.enums import ExecutionStatus, FollowupPriority, FollowupStatus
from aris.schemas.auth import UserSession
from aris.schemas.followup import (
    AutomationExecutionRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    BulkFollowupOutcome,
    BulkFollowupRequest,
    DraftRequest,
    DraftResponse,
    FollowupCreate,
    FollowupRead,
    FollowupStats,
    SnoozeRequest,
    TrackSentRequest,
    TrackSentResponse,
)
from aris.services import ai_service, followup_ai_service, followup_automation_service, followup_service
from aris.services.ai_provider import AIProviderError
from aris.utils.ai_errors import to_http_exception

router = APIRouter()


def _get_or_404(db: Session, session: UserSession, followup_id: UUID):
    followup = followup_service.get_followup(db, session.org_id, session.user_id, followup_id)
    if not followup:
        raise HTTPException(status_code=404, detail="Follow-up not found")
    return followup


def _get_rule_or_404(db: Session, session: UserSession, rule_id: UUID):
    rule = followup_automation_service.get_rule(db, session.org_id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Automation rule not found")
    return rule


def _get_execution_or_404(db: Session, session: UserSession, execution_id: UUID):
    execution = followup_automation_service.get_execution(db, session.org_id, execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Automation execution not found")
    return execution


def _require_automation_manager(session: UserSession) -> None:
    if not can_manage_automation(session):
        raise HTTPException(status_code=403, detail="Not authorized to manage automation rules")


# =============================================================================
# Follow-ups
# =============================================================================

@router.get("", response_model=list[FollowupRead])
def list_followups(
    status: list[FollowupStatus] | None = Query(None),
    priority: list[FollowupPriority] | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Ordered by due date, soonest first."""
    return followup_service.list_followups(
        db, session.org_id, session.user_id, statuses=status, priorities=priority, limit=limit
    )


@router.post(
    "",
    response_model=FollowupRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_followup(
    data: FollowupCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_service.create_followup(db, session.org_id, session.user_id, data)


@router.get("/due", response_model=list[FollowupRead])
def list_due_followups(
    limit: int = Query(100, ge=1, le=500),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_service.get_due_followups(db, session.org_id, session.user_id, limit=limit)


@router.get("/stats", response_model=FollowupStats)
def get_followup_stats(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_service.get_stats(db, session.org_id, session.user_id)


@router.post(
    "/bulk",
    response_model=list[BulkFollowupOutcome],
    dependencies=[Depends(require_csrf_header)],
)
def bulk_update(
    data: BulkFollowupRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_service.bulk_apply(
        db, session.org_id, session.user_id, data.ids, data.action, until=data.until
    )


@router.post(
    "/track-sent",
    response_model=TrackSentResponse,
    dependencies=[Depends(require_csrf_header)],
)
def track_sent(
    data: TrackSentRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Start tracking a sent email. Replies and auto-replies are ignored."""
    followup = followup_service.track_sent_email(
        db,
        session.org_id,
        session.user_id,
        subject=data.subject,
        recipients=data.recipients,
        sent_at=data.sent_at,
        email_id=data.email_id,
        follow_up_days=data.follow_up_days,
        priority=data.priority,
    )
    if followup is None:
        return TrackSentResponse(tracked=False)
    return TrackSentResponse(tracked=True, followup=FollowupRead.model_validate(followup))


# =============================================================================
# Automation rules
# =============================================================================

@router.get("/automation/rules", response_model=list[AutomationRuleRead])
def list_rules(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_automation_service.list_rules(db, session.org_id)


@router.post(
    "/automation/rules",
    response_model=AutomationRuleRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_rule(
    data: AutomationRuleCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    _require_automation_manager(session)
    return followup_automation_service.create_rule(db, session.org_id, session.user_id, data)


@router.patch(
    "/automation/rules/{rule_id}",
    response_model=AutomationRuleRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_rule(
    rule_id: UUID,
    data: AutomationRuleUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    _require_automation_manager(session)
    rule = _get_rule_or_404(db, session, rule_id)
    return followup_automation_service.update_rule(db, rule, data)


@router.delete(
    "/automation/rules/{rule_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_rule(
    rule_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    _require_automation_manager(session)
    rule = _get_rule_or_404(db, session, rule_id)
    followup_automation_service.delete_rule(db, rule)


@router.get("/automation/executions", response_model=list[AutomationExecutionRead])
def list_executions(
    status: ExecutionStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return followup_automation_service.list_executions(db, session.org_id, status=status, limit=limit)


@router.post(
    "/automation/executions/{execution_id}/approve",
    response_model=AutomationExecutionRead,
    dependencies=[Depends(require_csrf_header)],
)
async def approve_execution(
    execution_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Approve the drafted follow-up and send it from the original mailbox."""
    execution = _get_execution_or_404(db, session, execution_id)
    try:
        return await followup_automation_service.approve_execution(db, execution, session.user_id)
    except followup_automation_service.InvalidExecutionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/automation/executions/{execution_id}/reject",
    response_model=AutomationExecutionRead,
    dependencies=[Depends(require_csrf_header)],
)
def reject_execution(
    execution_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    execution = _get_execution_or_404(db, session, execution_id)
    try:
        return followup_automation_service.reject_execution(db, execution, session.user_id)
    except followup_automation_service.InvalidExecutionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Single follow-up
# =============================================================================

@router.get("/{followup_id}", response_model=FollowupRead)
def get_followup(
    followup_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session, followup_id)


def _transition(db: Session, session: UserSession, followup_id: UUID, action):
    followup = _get_or_404(db, session, followup_id)
    try:
        return action(db, followup)
    except followup_service.InvalidFollowupTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/{followup_id}/complete",
    response_model=FollowupRead,
    dependencies=[Depends(require_csrf_header)],
)
def complete_followup(
    followup_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _transition(db, session, followup_id, followup_service.complete)


@router.post(
    "/{followup_id}/sent",
    response_model=FollowupRead,
    dependencies=[Depends(require_csrf_header)],
)
def mark_followup_sent(
    followup_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _transition(db, session, followup_id, followup_service.mark_sent)


@router.post(
    "/{followup_id}/cancel",
    response_model=FollowupRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_followup(
    followup_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _transition(db, session, followup_id, followup_service.cancel)


@router.post(
    "/{followup_id}/snooze",
    response_model=FollowupRead,
    dependencies=[Depends(require_csrf_header)],
)
def snooze_followup(
    followup_id: UUID,
    data: SnoozeRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    followup = _get_or_404(db, session, followup_id)
    try:
        return followup_service.snooze(db, followup, data.until)
    except followup_service.InvalidSnoozeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except followup_service.InvalidFollowupTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/{followup_id}/draft",
    response_model=DraftResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def generate_draft(
    followup_id: UUID,
    data: DraftRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Draft a follow-up email with the org's model and store it."""
    followup = _get_or_404(db, session, followup_id)
    try:
        reply = await followup_ai_service.generate_draft(
            db,
            session.org_id,
            session.user_id,
            followup,
            tone=data.tone,
            length=data.length,
            approach=data.approach,
            custom_instructions=data.custom_instructions,
        )
    except (ai_service.AIServiceError, AIProviderError) as e:
        raise to_http_exception(e)
    return DraftResponse(
        followup_id=followup.id,
        generated_at=followup.ai_draft_generated_at,
        **reply.model_dump(),
    )
