"""Email index and content cache.

The index keeps lightweight metadata for every synced message; bodies live in
email_content_cache and expire after EMAIL_CONTENT_CACHE_DAYS, after which
they are fetched again from the provider on demand.
"""

import logging
from datetime import timedelta
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.db.enums import AgentPriority, AssignedAgent, EmailType, ProcessingStatus
from aris.db.models import EmailAccount, EmailContentCache, EmailIndex
from aris.db.types import utcnow
from aris.services import ai_service, email_account_service
from aris.services.ai_prompt_registry import get_prompt
from aris.services.ai_provider import AIProvider, ChatMessage
from aris.services.mail_clients import FOLDER_ALIASES, MailProviderError, NormalizedMessage

logger = logging.getLogger(__name__)

# Storage estimate used by stats: full message vs index row
FULL_EMAIL_KB = 100
INDEXED_EMAIL_KB = 5

ANALYSIS_BODY_CHARS = 4000

AGENT_COLORS = {
    AssignedAgent.CUSTOMER.value: "#3b82f6",
    AssignedAgent.SALES.value: "#22c55e",
    AssignedAgent.DISPUTE.value: "#ef4444",
    AssignedAgent.BILLING.value: "#f59e0b",
    AssignedAgent.AUTO_REPLY.value: "#9ca3af",
}

HIGH_PRIORITIES = (AgentPriority.HIGH.value, AgentPriority.URGENT.value)


class EmailIndexError(Exception):
    """Base error for email index operations."""


class EmailNotFoundError(EmailIndexError):
    def __init__(self, email_id: UUID):
        self.email_id = email_id
        super().__init__("Email not found")


# =============================================================================
# Derived fields
# =============================================================================

def opportunity_value(email: EmailIndex) -> float | None:
    upsell = email.upsell_data or {}
    value = upsell.get("total_potential_value")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def email_status(email: EmailIndex) -> str:
    """replied > unread > urgent > assigned > normal"""
    if email.replied:
        return "replied"
    if not email.is_read:
        return "unread"
    if email.agent_priority == AgentPriority.URGENT.value:
        return "urgent"
    if email.assigned_agent:
        return "assigned"
    return "normal"


def to_list_item(email: EmailIndex) -> dict:
    return {
        "id": email.id,
        "email_account_id": email.email_account_id,
        "message_id": email.message_id,
        "thread_id": email.thread_id,
        "folder_name": email.folder_name,
        "sender_email": email.sender_email,
        "sender_name": email.sender_name,
        "recipient_email": email.recipient_email,
        "subject": email.subject,
        "preview_text": email.preview_text,
        "email_type": email.email_type,
        "importance": email.importance,
        "has_attachments": email.has_attachments,
        "attachment_count": email.attachment_count,
        "ai_analyzed": email.ai_analyzed,
        "sentiment_score": email.sentiment_score,
        "language_code": email.language_code,
        "assigned_agent": email.assigned_agent,
        "highlight_color": email.highlight_color,
        "agent_priority": email.agent_priority,
        "is_read": email.is_read,
        "replied": email.replied,
        "received_at": email.received_at,
        "sent_at": email.sent_at,
        "email_status": email_status(email),
        "opportunity_value": opportunity_value(email),
    }


# =============================================================================
# Queries
# =============================================================================

def _user_emails(db: Session, org_id: UUID, user_id: UUID):
    return db.query(EmailIndex).filter(
        EmailIndex.organization_id == org_id,
        EmailIndex.user_id == user_id,
    )


def list_emails(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    account_id: UUID | None = None,
    folder: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[EmailIndex], int]:
    """Newest first. folder accepts 'inbox'/'sent' or a stored folder name."""
    query = _user_emails(db, org_id, user_id)
    if account_id:
        query = query.filter(EmailIndex.email_account_id == account_id)
    if folder:
        query = query.filter(EmailIndex.folder_name == FOLDER_ALIASES.get(folder.lower(), folder))
    total = query.count()
    items = (
        query.order_by(EmailIndex.received_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def search_emails(db: Session, org_id: UUID, user_id: UUID, q: str, limit: int = 50) -> list[EmailIndex]:
    pattern = f"%{q.strip()}%"
    return (
        _user_emails(db, org_id, user_id)
        .filter(
            or_(
                EmailIndex.subject.ilike(pattern),
                EmailIndex.sender_email.ilike(pattern),
                EmailIndex.sender_name.ilike(pattern),
                EmailIndex.preview_text.ilike(pattern),
            )
        )
        .order_by(EmailIndex.received_at.desc())
        .limit(limit)
        .all()
    )


def list_unanalyzed(db: Session, org_id: UUID, user_id: UUID, limit: int = 50) -> list[EmailIndex]:
    return (
        _user_emails(db, org_id, user_id)
        .filter(
            EmailIndex.ai_analyzed.is_(False),
            EmailIndex.email_type == EmailType.RECEIVED.value,
        )
        .order_by(EmailIndex.received_at.desc())
        .limit(limit)
        .all()
    )


def get_stats(db: Session, org_id: UUID, user_id: UUID) -> dict:
    base = _user_emails(db, org_id, user_id)
    total = base.count()
    analyzed = base.filter(EmailIndex.ai_analyzed.is_(True)).count()
    unread = base.filter(EmailIndex.is_read.is_(False)).count()
    high_priority = base.filter(EmailIndex.agent_priority.in_(HIGH_PRIORITIES)).count()

    opportunities = sum(
        1
        for (upsell,) in base.filter(EmailIndex.upsell_data.isnot(None)).with_entities(EmailIndex.upsell_data)
        if (upsell or {}).get("total_potential_value")
    )

    account_ids = db.query(EmailAccount.id).filter(
        EmailAccount.organization_id == org_id,
        EmailAccount.user_id == user_id,
    )
    cached = (
        db.query(func.count(EmailContentCache.id))
        .filter(EmailContentCache.email_account_id.in_(account_ids))
        .scalar()
    ) or 0

    storage_saved_mb = round(total * (FULL_EMAIL_KB - INDEXED_EMAIL_KB) / 1024, 2)
    return {
        "total": total,
        "analyzed": analyzed,
        "unread": unread,
        "high_priority": high_priority,
        "opportunities": opportunities,
        "cached": cached,
        "storage_saved_mb": storage_saved_mb,
    }


def get_email(db: Session, org_id: UUID, user_id: UUID, email_id: UUID) -> EmailIndex | None:
    return _user_emails(db, org_id, user_id).filter(EmailIndex.id == email_id).first()


def require_email(db: Session, org_id: UUID, user_id: UUID, email_id: UUID) -> EmailIndex:
    email = get_email(db, org_id, user_id, email_id)
    if not email:
        raise EmailNotFoundError(email_id)
    return email


def mark_replied(db: Session, email: EmailIndex) -> EmailIndex:
    email.replied = True
    email.last_reply_at = utcnow()
    email.is_read = True
    db.commit()
    db.refresh(email)
    return email


def mark_read(db: Session, email: EmailIndex) -> EmailIndex:
    email.is_read = True
    db.commit()
    db.refresh(email)
    return email


# =============================================================================
# Content cache
# =============================================================================

def get_cached_content(db: Session, account_id: UUID, message_id: str) -> EmailContentCache | None:
    return (
        db.query(EmailContentCache)
        .filter(
            EmailContentCache.email_account_id == account_id,
            EmailContentCache.message_id == message_id,
        )
        .first()
    )


def cache_content(db: Session, account: EmailAccount, message: NormalizedMessage) -> EmailContentCache:
    """Insert or refresh the cached body of a message. Caller commits."""
    now = utcnow()
    entry = get_cached_content(db, account.id, message.message_id)
    if entry is None:
        entry = EmailContentCache(
            organization_id=account.organization_id,
            email_account_id=account.id,
            message_id=message.message_id,
            access_count=0,
        )
        db.add(entry)
    entry.raw_content = message.raw_content
    entry.html_content = message.html_content
    entry.plain_content = message.plain_content
    entry.attachments = message.attachments
    entry.cached_at = now
    entry.last_accessed = now
    entry.expires_at = now + timedelta(days=settings.EMAIL_CONTENT_CACHE_DAYS)
    return entry


def _is_fresh(entry: EmailContentCache) -> bool:
    return entry.expires_at is None or entry.expires_at > utcnow()


def _content_payload(entry: EmailContentCache, from_cache: bool) -> dict:
    return {
        "plain_content": entry.plain_content,
        "html_content": entry.html_content,
        "attachments": entry.attachments,
        "from_cache": from_cache,
    }


async def load_content(db: Session, email: EmailIndex) -> dict | None:
    """
    Body of an indexed email.

    A fresh cache entry is served and its access stats bumped; a missing or
    expired entry is fetched from the provider and cached again. Returns None
    if the provider no longer has the message or cannot be reached.

    Raises:
        MailProviderAuthError: Account must be reconnected
    """
    entry = get_cached_content(db, email.email_account_id, email.message_id)
    if entry is not None and _is_fresh(entry):
        entry.access_count += 1
        entry.last_accessed = utcnow()
        db.commit()
        return _content_payload(entry, from_cache=True)

    account = db.get(EmailAccount, email.email_account_id)
    client = await email_account_service.build_mail_client(db, account)
    try:
        message = await client.fetch_message(email.message_id, email.folder_name)
    except MailProviderError as exc:
        if exc.status_code == 401:
            raise
        logger.warning("Could not refetch email %s: %s", email.id, exc)
        return None
    if message is None:
        return None

    entry = cache_content(db, account, message)
    entry.access_count = 1
    db.commit()
    return _content_payload(entry, from_cache=False)


async def get_email_detail(db: Session, email: EmailIndex) -> dict:
    detail = to_list_item(email)
    detail["upsell_data"] = email.upsell_data
    detail["content"] = await load_content(db, email)
    return detail


# =============================================================================
# AI analysis
# =============================================================================

class UpsellOpportunity(BaseModel):
    product: str
    reason: str | None = None
    estimated_value: float = 0


class UpsellData(BaseModel):
    opportunities: list[UpsellOpportunity] = Field(default_factory=list)
    total_potential_value: float = 0


class EmailAnalysis(BaseModel):
    sentiment_score: float = Field(0, ge=-1, le=1)
    language_code: str | None = Field(None, max_length=10)
    assigned_agent: AssignedAgent
    agent_priority: AgentPriority = AgentPriority.MEDIUM
    upsell: UpsellData = Field(default_factory=UpsellData)


async def analyze_email(
    db: Session,
    org_id: UUID,
    user_id: UUID | None,
    email: EmailIndex,
    force: bool = False,
    provider: AIProvider | None = None,
) -> EmailIndex:
    """
    Classify an email with the org's model and store the result.

    Already analysed emails are returned untouched unless force is set.

    Raises:
        AIServiceError subclasses: AI unavailable or reply unusable
    """
    if email.ai_analyzed and not force:
        return email

    entry = get_cached_content(db, email.email_account_id, email.message_id)
    body = (entry.plain_content if entry else None) or email.preview_text or ""
    prompt = get_prompt("email_analysis")
    messages = [
        ChatMessage(role="system", content=prompt.system),
        ChatMessage(
            role="user",
            content=prompt.render_user(
                sender=email.sender_email or "unknown",
                subject=email.subject,
                body=body[:ANALYSIS_BODY_CHARS],
            ),
        ),
    ]
    try:
        analysis = await ai_service.complete_json(
            db, org_id, user_id, "email_analysis", messages, EmailAnalysis,
            temperature=0.2, max_tokens=800, provider=provider,
        )
    except ai_service.AIInvalidResponseError:
        email.processing_status = ProcessingStatus.ERROR.value
        db.commit()
        raise

    email.sentiment_score = analysis.sentiment_score
    email.language_code = analysis.language_code
    email.assigned_agent = analysis.assigned_agent.value
    email.agent_priority = analysis.agent_priority.value
    email.highlight_color = AGENT_COLORS.get(analysis.assigned_agent.value)
    email.upsell_data = analysis.upsell.model_dump()
    email.ai_analyzed = True
    email.ai_analyzed_at = utcnow()
    email.processing_status = ProcessingStatus.PROCESSED.value
    db.commit()
    db.refresh(email)
    return email
