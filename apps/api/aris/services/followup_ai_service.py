"""AI drafting of follow-up emails."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from aris.db.enums import DraftLength, DraftTone
from aris.db.models import EmailContentCache, EmailFollowup, EmailIndex
from aris.db.types import utcnow
from aris.schemas.followup import DraftReply
from aris.services import ai_service
from aris.services.ai_prompt_registry import (
    APPROACH_GUIDELINES, LENGTH_GUIDELINES, TONE_GUIDELINES, get_prompt,
)
from aris.services.ai_provider import AIProvider, ChatMessage

logger = logging.getLogger(__name__)

TONE_TEMPERATURE = {
    DraftTone.URGENT: 0.3,
    DraftTone.PROFESSIONAL: 0.4,
    DraftTone.FRIENDLY: 0.7,
    DraftTone.CASUAL: 0.8,
}
DEFAULT_TEMPERATURE = 0.5

LENGTH_MAX_TOKENS = {
    DraftLength.SHORT: 300,
    DraftLength.MEDIUM: 600,
    DraftLength.LONG: 1000,
}

HISTORY_MESSAGES = 3
HISTORY_SNIPPET_CHARS = 200


def temperature_for(tone: DraftTone | str) -> float:
    try:
        return TONE_TEMPERATURE.get(DraftTone(tone), DEFAULT_TEMPERATURE)
    except ValueError:
        return DEFAULT_TEMPERATURE


def max_tokens_for(length: DraftLength | str) -> int:
    try:
        return LENGTH_MAX_TOKENS[DraftLength(length)]
    except (ValueError, KeyError):
        return LENGTH_MAX_TOKENS[DraftLength.MEDIUM]


def _thread_messages(db: Session, followup: EmailFollowup) -> list[EmailIndex]:
    """Last few indexed messages of the follow-up's thread, oldest first."""
    if not followup.email_id:
        return []
    original = db.query(EmailIndex).filter(EmailIndex.id == followup.email_id).first()
    if not original or not original.thread_id:
        return []
    messages = (
        db.query(EmailIndex)
        .filter(
            EmailIndex.email_account_id == original.email_account_id,
            EmailIndex.thread_id == original.thread_id,
        )
        .order_by(EmailIndex.received_at.desc())
        .limit(HISTORY_MESSAGES)
        .all()
    )
    return list(reversed(messages))


def _snippet(db: Session, message: EmailIndex) -> str:
    cached = (
        db.query(EmailContentCache.plain_content)
        .filter(
            EmailContentCache.email_account_id == message.email_account_id,
            EmailContentCache.message_id == message.message_id,
        )
        .scalar()
    )
    text = (cached or message.preview_text or "").strip()
    if len(text) > HISTORY_SNIPPET_CHARS:
        return text[:HISTORY_SNIPPET_CHARS] + "..."
    return text


def build_messages(
    db: Session,
    followup: EmailFollowup,
    tone: DraftTone,
    length: DraftLength,
    approach: str,
    custom_instructions: str | None = None,
) -> list[ChatMessage]:
    prompt = get_prompt("followup_draft")
    days_since = max((utcnow() - followup.original_sent_at).days, 0)

    history = ""
    thread = _thread_messages(db, followup)
    if thread:
        lines = ["", "CONVERSATION HISTORY:"]
        for index, message in enumerate(thread, start=1):
            when = (message.sent_at or message.received_at).date().isoformat()
            lines.append(f"{index}. [{message.email_type.upper()}] {message.subject} ({when})")
            lines.append(f"   {_snippet(db, message)}")
        history = "\n".join(lines) + "\n"

    system = prompt.render_system(
        days_since=days_since,
        priority=followup.priority,
        reason=followup.follow_up_reason or "No response received",
        tone=tone.value,
        approach=approach,
        tone_guidelines=TONE_GUIDELINES.get(tone.value, "Use professional, courteous language."),
        approach_guidelines=APPROACH_GUIDELINES.get(approach, APPROACH_GUIDELINES["gentle"]),
        length_guidelines=LENGTH_GUIDELINES[length.value],
        custom_instructions=f"\nCUSTOM INSTRUCTIONS: {custom_instructions}\n" if custom_instructions else "",
    )
    user = prompt.render_user(
        subject=followup.original_subject,
        recipients=", ".join(followup.original_recipients or []),
        sent_date=followup.original_sent_at.date().isoformat(),
        context_summary=followup.context_summary or "(none)",
        history=history,
    )
    return [ChatMessage(role="system", content=system), ChatMessage(role="user", content=user)]


async def generate_draft(
    db: Session,
    org_id: UUID,
    user_id: UUID | None,
    followup: EmailFollowup,
    tone: DraftTone = DraftTone.PROFESSIONAL,
    length: DraftLength = DraftLength.MEDIUM,
    approach: str = "gentle",
    custom_instructions: str | None = None,
    provider: AIProvider | None = None,
) -> DraftReply:
    """
    Draft a follow-up with the org's model and store it on the follow-up.

    Raises:
        AIDisabledError / AIKeyMissingError: AI unavailable for the org
        AIInvalidResponseError: Reply could not be parsed
    """
    messages = build_messages(db, followup, tone, length, approach, custom_instructions)
    draft = await ai_service.complete_json(
        db,
        org_id,
        user_id,
        "followup_draft",
        messages,
        DraftReply,
        temperature=temperature_for(tone),
        max_tokens=max_tokens_for(length),
        provider=provider,
    )

    followup.ai_draft_subject = draft.subject
    followup.ai_draft_content = draft.body
    followup.ai_draft_generated_at = utcnow()
    followup.ai_draft_approved = False
    db.commit()
    db.refresh(followup)
    logger.info("Generated follow-up draft followup=%s tone=%s", followup.id, tone.value)
    return draft
