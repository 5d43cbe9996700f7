"""Follow-up automation - rules that draft and optionally send due follow-ups.

Execution lifecycle:
    pending -> generating -> awaiting_approval -> approved -> sent
    pending -> generating -> approved -> sent (auto send)
Any step can end in failed; IMAP mailboxes end in skipped (no SMTP relay).
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from aris.db.enums import (
    OPEN_FOLLOWUP_STATUSES, DraftLength, DraftTone, ExecutionStatus, FollowupStatus,
)
from aris.db.models import (
    EmailAccount, EmailFollowup, EmailIndex, FollowupAutomationExecution, FollowupAutomationRule,
)
from aris.db.types import utcnow
from aris.schemas.followup import AutomationRuleCreate, AutomationRuleUpdate
from aris.services import email_account_service, followup_ai_service, followup_service
from aris.services.ai_provider import AIProvider, AIProviderError
from aris.services.ai_service import AIServiceError
from aris.services.mail_clients import MailProviderError, MailSendNotSupportedError

logger = logging.getLogger(__name__)

SWEEP_LIMIT = 50


class AutomationError(Exception):
    """Base error for automation rules and executions."""


class AutomationRuleNotFoundError(AutomationError):
    def __init__(self, rule_id: UUID):
        self.rule_id = rule_id
        super().__init__("Automation rule not found")


class ExecutionNotFoundError(AutomationError):
    def __init__(self, execution_id: UUID):
        self.execution_id = execution_id
        super().__init__("Automation execution not found")


class InvalidExecutionStateError(AutomationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Execution is '{status}', expected 'awaiting_approval'")


# =============================================================================
# Rules
# =============================================================================

def list_rules(db: Session, org_id: UUID) -> list[FollowupAutomationRule]:
    return (
        db.query(FollowupAutomationRule)
        .filter(FollowupAutomationRule.organization_id == org_id)
        .order_by(FollowupAutomationRule.created_at)
        .all()
    )


def get_rule(db: Session, org_id: UUID, rule_id: UUID) -> FollowupAutomationRule | None:
    return (
        db.query(FollowupAutomationRule)
        .filter(
            FollowupAutomationRule.id == rule_id,
            FollowupAutomationRule.organization_id == org_id,
        )
        .first()
    )


def create_rule(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    data: AutomationRuleCreate,
) -> FollowupAutomationRule:
    rule = FollowupAutomationRule(
        organization_id=org_id,
        created_by_user_id=user_id,
        name=data.name,
        description=data.description,
        is_active=data.is_active,
        trigger_days=data.trigger_days,
        conditions=data.conditions.model_dump(mode="json"),
        auto_send=data.auto_send,
        require_approval=data.require_approval,
        draft_tone=data.draft_tone.value,
        draft_length=data.draft_length.value,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def update_rule(db: Session, rule: FollowupAutomationRule, data: AutomationRuleUpdate) -> FollowupAutomationRule:
    updates = data.model_dump(exclude_unset=True, mode="json")
    for field, value in updates.items():
        if value is None and field != "description":
            continue
        setattr(rule, field, value)
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule: FollowupAutomationRule) -> None:
    db.delete(rule)
    db.commit()


def rule_matches(rule: FollowupAutomationRule, followup: EmailFollowup, now: datetime) -> bool:
    """Due date plus the rule's trigger days has passed and conditions hold."""
    if followup.follow_up_due_at + timedelta(days=rule.trigger_days) > now:
        return False
    conditions = rule.conditions or {}
    priorities = conditions.get("priorities") or []
    if priorities and followup.priority not in priorities:
        return False
    types = conditions.get("follow_up_types") or []
    if types and followup.follow_up_type not in types:
        return False
    return True


# =============================================================================
# Executions
# =============================================================================

def list_executions(
    db: Session,
    org_id: UUID,
    status: ExecutionStatus | None = None,
    limit: int = 100,
) -> list[FollowupAutomationExecution]:
    query = db.query(FollowupAutomationExecution).filter(
        FollowupAutomationExecution.organization_id == org_id
    )
    if status:
        query = query.filter(FollowupAutomationExecution.status == status.value)
    return query.order_by(FollowupAutomationExecution.created_at.desc()).limit(limit).all()


def get_execution(db: Session, org_id: UUID, execution_id: UUID) -> FollowupAutomationExecution | None:
    return (
        db.query(FollowupAutomationExecution)
        .filter(
            FollowupAutomationExecution.id == execution_id,
            FollowupAutomationExecution.organization_id == org_id,
        )
        .first()
    )


def _fail(db: Session, execution: FollowupAutomationExecution, error: str) -> None:
    execution.status = ExecutionStatus.FAILED.value
    execution.error_message = error[:2000]
    db.commit()


def _sending_account(db: Session, followup: EmailFollowup) -> EmailAccount | None:
    """Mailbox the original email came from, else the user's first active one."""
    if followup.email_id:
        account = (
            db.query(EmailAccount)
            .join(EmailIndex, EmailIndex.email_account_id == EmailAccount.id)
            .filter(EmailIndex.id == followup.email_id, EmailAccount.is_active.is_(True))
            .first()
        )
        if account:
            return account
    return (
        db.query(EmailAccount)
        .filter(EmailAccount.user_id == followup.user_id, EmailAccount.is_active.is_(True))
        .order_by(EmailAccount.created_at)
        .first()
    )


async def send_execution(db: Session, execution: FollowupAutomationExecution) -> FollowupAutomationExecution:
    """Send an approved draft and mark the follow-up as sent."""
    followup = db.get(EmailFollowup, execution.followup_id)
    account = _sending_account(db, followup)
    if account is None:
        _fail(db, execution, "No active mailbox for this follow-up")
        return execution

    try:
        client = await email_account_service.build_mail_client(db, account)
        await client.send(
            list(followup.original_recipients or []),
            execution.draft_subject or followup.original_subject,
            execution.draft_body or "",
        )
    except MailSendNotSupportedError as exc:
        execution.status = ExecutionStatus.SKIPPED.value
        execution.error_message = str(exc)
        db.commit()
        return execution
    except MailProviderError as exc:
        logger.warning("Automation send failed execution=%s: %s", execution.id, exc)
        _fail(db, execution, str(exc))
        return execution

    execution.status = ExecutionStatus.SENT.value
    execution.executed_at = utcnow()
    followup.ai_draft_approved = True
    db.commit()
    if FollowupStatus(followup.status) in OPEN_FOLLOWUP_STATUSES:
        followup_service.mark_sent(db, followup)
    db.refresh(execution)
    return execution


async def run_execution(
    db: Session,
    rule: FollowupAutomationRule,
    followup: EmailFollowup,
    provider: AIProvider | None = None,
) -> FollowupAutomationExecution:
    execution = FollowupAutomationExecution(
        organization_id=rule.organization_id,
        rule_id=rule.id,
        followup_id=followup.id,
        status=ExecutionStatus.PENDING.value,
    )
    db.add(execution)
    db.commit()

    execution.status = ExecutionStatus.GENERATING.value
    db.commit()
    try:
        draft = await followup_ai_service.generate_draft(
            db,
            rule.organization_id,
            None,
            followup,
            tone=DraftTone(rule.draft_tone),
            length=DraftLength(rule.draft_length),
            provider=provider,
        )
    except (AIServiceError, AIProviderError) as exc:
        logger.warning("Automation draft failed rule=%s followup=%s: %s", rule.id, followup.id, exc)
        _fail(db, execution, str(exc))
        return execution

    execution.draft_subject = draft.subject
    execution.draft_body = draft.body
    if rule.require_approval or not rule.auto_send:
        execution.status = ExecutionStatus.AWAITING_APPROVAL.value
        db.commit()
        return execution

    execution.status = ExecutionStatus.APPROVED.value
    execution.decided_at = utcnow()
    db.commit()
    return await send_execution(db, execution)


async def run_sweep(
    db: Session,
    org_id: UUID | None = None,
    now: datetime | None = None,
    provider: AIProvider | None = None,
    limit: int = SWEEP_LIMIT,
) -> dict:
    """
    Match due follow-ups against active rules and run them.

    A follow-up gets at most one execution; the oldest matching rule wins.
    """
    now = now or utcnow()
    rules_query = db.query(FollowupAutomationRule).filter(FollowupAutomationRule.is_active.is_(True))
    if org_id:
        rules_query = rules_query.filter(FollowupAutomationRule.organization_id == org_id)
    rules_by_org: dict[UUID, list[FollowupAutomationRule]] = {}
    for rule in rules_query.order_by(FollowupAutomationRule.created_at).all():
        rules_by_org.setdefault(rule.organization_id, []).append(rule)

    counts = {"processed": 0, "awaiting_approval": 0, "sent": 0, "skipped": 0, "failed": 0}
    for rule_org_id, rules in rules_by_org.items():
        handled = db.query(FollowupAutomationExecution.followup_id).filter(
            FollowupAutomationExecution.organization_id == rule_org_id
        )
        candidates = (
            db.query(EmailFollowup)
            .filter(
                EmailFollowup.organization_id == rule_org_id,
                EmailFollowup.status.in_([s.value for s in OPEN_FOLLOWUP_STATUSES]),
                EmailFollowup.follow_up_due_at <= now,
                EmailFollowup.id.not_in(handled),
            )
            .order_by(EmailFollowup.follow_up_due_at)
            .limit(limit)
            .all()
        )
        for followup in candidates:
            rule = next((r for r in rules if rule_matches(r, followup, now)), None)
            if rule is None:
                continue
            execution = await run_execution(db, rule, followup, provider=provider)
            counts["processed"] += 1
            if execution.status in counts:
                counts[execution.status] += 1

    if counts["processed"]:
        logger.info("Automation sweep %s", counts)
    return counts


async def approve_execution(
    db: Session,
    execution: FollowupAutomationExecution,
    user_id: UUID,
) -> FollowupAutomationExecution:
    """
    Approve a drafted follow-up and send it.

    Raises:
        InvalidExecutionStateError: Not awaiting approval
    """
    if execution.status != ExecutionStatus.AWAITING_APPROVAL.value:
        raise InvalidExecutionStateError(execution.status)
    execution.status = ExecutionStatus.APPROVED.value
    execution.decided_by_user_id = user_id
    execution.decided_at = utcnow()
    db.commit()
    return await send_execution(db, execution)


def reject_execution(
    db: Session,
    execution: FollowupAutomationExecution,
    user_id: UUID,
) -> FollowupAutomationExecution:
    if execution.status != ExecutionStatus.AWAITING_APPROVAL.value:
        raise InvalidExecutionStateError(execution.status)
    execution.status = ExecutionStatus.REJECTED.value
    execution.decided_by_user_id = user_id
    execution.decided_at = utcnow()
    db.commit()
    db.refresh(execution)
    return execution
