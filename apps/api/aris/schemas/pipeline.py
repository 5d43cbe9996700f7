"""Pydantic schemas for pipelines, stages and opportunities."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from aris.db.enums import ActivityType, OpportunityStatus

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


# =============================================================================
# Stages
# =============================================================================

class StageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    probability: int = Field(0, ge=0, le=100)
    color: str = Field("#6b7280", pattern=HEX_COLOR_PATTERN)
    order: int | None = Field(None, ge=1)


class StageUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    probability: int | None = Field(None, ge=0, le=100)
    color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)


class StageRead(BaseModel):
    id: UUID
    name: str
    probability: int
    color: str
    order: int

    model_config = {"from_attributes": True}


class StageReorder(BaseModel):
    ordered_stage_ids: list[UUID] = Field(..., min_length=1)


# =============================================================================
# Pipelines
# =============================================================================

class PipelineCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    stages: list[StageCreate] | None = None


class PipelineUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    expected_version: int | None = Field(None, ge=1)


class PipelineRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    is_default: bool
    current_version: int
    stages: list[StageRead]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StageSummary(BaseModel):
    stage_id: UUID
    name: str
    probability: int
    count: int
    value: float


class PipelineSummary(BaseModel):
    pipeline_id: UUID
    stages: list[StageSummary]
    open_count: int
    total_value: float
    weighted_value: float


# =============================================================================
# Opportunities
# =============================================================================

class OpportunityCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    pipeline_id: UUID | None = None
    stage_id: UUID | None = None
    contact_id: UUID | None = None
    assigned_to_user_id: UUID | None = None
    description: str | None = None
    value: float = Field(0, ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    expected_close_date: date | None = None


class OpportunityUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    contact_id: UUID | None = None
    assigned_to_user_id: UUID | None = None
    description: str | None = None
    value: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    probability: int | None = Field(None, ge=0, le=100)
    expected_close_date: date | None = None
    status: OpportunityStatus | None = None


class OpportunityMove(BaseModel):
    stage_id: UUID
    note: str | None = Field(None, max_length=2000)


class OpportunityRead(BaseModel):
    id: UUID
    pipeline_id: UUID
    stage_id: UUID
    contact_id: UUID | None
    assigned_to_user_id: UUID | None
    title: str
    description: str | None
    value: float
    currency: str
    probability: int
    expected_close_date: date | None
    status: str
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OpportunityListResponse(BaseModel):
    items: list[OpportunityRead]
    total: int


class ActivityCreate(BaseModel):
    activity_type: ActivityType = ActivityType.NOTE
    description: str = Field(..., min_length=1, max_length=5000)


class ActivityRead(BaseModel):
    id: UUID
    opportunity_id: UUID
    user_id: UUID | None
    activity_type: str
    description: str | None
    details: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}
