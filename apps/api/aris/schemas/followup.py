"""Pydantic schemas for follow-ups, reminders, drafts and automation."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from aris.db.enums import (
    DraftLength, DraftTone, FollowupPriority, FollowupType,
)
from aris.db.types import as_utc


class FollowupCreate(BaseModel):
    email_id: UUID | None = None
    original_sent_at: datetime
    follow_up_days: int | None = Field(None, ge=0, le=365)
    follow_up_due_at: datetime | None = None
    priority: FollowupPriority = FollowupPriority.MEDIUM
    follow_up_type: FollowupType = FollowupType.MANUAL
    original_subject: str = Field(..., min_length=1)
    original_recipients: list[str] = Field(default_factory=list)
    context_summary: str | None = None
    follow_up_reason: str | None = None
    metadata: dict = Field(default_factory=dict)

    @field_validator("original_sent_at", "follow_up_due_at")
    @classmethod
    def to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v else v


class FollowupRead(BaseModel):
    id: UUID
    email_id: UUID | None
    original_sent_at: datetime
    follow_up_due_at: datetime
    follow_up_sent_at: datetime | None
    response_received_at: datetime | None
    status: str
    follow_up_type: str
    priority: str
    original_subject: str
    original_recipients: list
    context_summary: str | None
    follow_up_reason: str | None
    ai_draft_subject: str | None
    ai_draft_content: str | None
    ai_draft_generated_at: datetime | None
    ai_draft_approved: bool
    metadata: dict = Field(validation_alias="details")
    reminder_count: int
    last_reminder_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class FollowupStats(BaseModel):
    total: int
    pending: int
    due: int
    overdue: int
    completed: int
    response_rate: float


class SnoozeRequest(BaseModel):
    until: datetime

    @field_validator("until")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class BulkFollowupRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1, max_length=200)
    action: Literal["complete", "sent", "cancel", "snooze"]
    until: datetime | None = None

    @field_validator("until")
    @classmethod
    def to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v else v


class BulkFollowupOutcome(BaseModel):
    id: UUID
    success: bool
    status: str | None = None
    error: str | None = None


class TrackSentRequest(BaseModel):
    email_id: UUID | None = None
    subject: str
    recipients: list[str] = Field(..., min_length=1)
    sent_at: datetime
    follow_up_days: int | None = Field(None, ge=0, le=365)
    priority: FollowupPriority = FollowupPriority.MEDIUM

    @field_validator("sent_at")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class TrackSentResponse(BaseModel):
    tracked: bool
    followup: FollowupRead | None = None


# =============================================================================
# AI drafts
# =============================================================================

class DraftRequest(BaseModel):
    tone: DraftTone = DraftTone.PROFESSIONAL
    length: DraftLength = DraftLength.MEDIUM
    approach: str = Field("gentle", max_length=50)
    custom_instructions: str | None = Field(None, max_length=1000)


class DraftReply(BaseModel):
    """Shape the model must answer with."""
    subject: str
    body: str
    tone: str | None = None
    approach: str | None = None
    confidence: float = Field(0.5, ge=0, le=1)
    reasoning: str | None = None


class DraftResponse(DraftReply):
    followup_id: UUID
    generated_at: datetime


# =============================================================================
# Automation
# =============================================================================

class AutomationConditions(BaseModel):
    priorities: list[FollowupPriority] = Field(default_factory=list)
    follow_up_types: list[FollowupType] = Field(default_factory=list)


class AutomationRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True
    trigger_days: int = Field(0, ge=0, le=365)
    conditions: AutomationConditions = Field(default_factory=AutomationConditions)
    auto_send: bool = False
    require_approval: bool = True
    draft_tone: DraftTone = DraftTone.PROFESSIONAL
    draft_length: DraftLength = DraftLength.MEDIUM


class AutomationRuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None
    trigger_days: int | None = Field(None, ge=0, le=365)
    conditions: AutomationConditions | None = None
    auto_send: bool | None = None
    require_approval: bool | None = None
    draft_tone: DraftTone | None = None
    draft_length: DraftLength | None = None


class AutomationRuleRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    is_active: bool
    trigger_days: int
    conditions: dict
    auto_send: bool
    require_approval: bool
    draft_tone: str
    draft_length: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AutomationExecutionRead(BaseModel):
    id: UUID
    rule_id: UUID
    followup_id: UUID
    status: str
    draft_subject: str | None
    draft_body: str | None
    error_message: str | None
    decided_at: datetime | None
    executed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
