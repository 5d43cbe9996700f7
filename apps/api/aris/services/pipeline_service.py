"""Pipeline service - sales pipelines, stages and opportunities.

- Every org gets a default pipeline lazily on first access
- Pipeline edits use optimistic locking via expected_version
- Stage changes bump the pipeline version
- Moving an opportunity keeps probability and status in line with its stage
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aris.db.enums import ActivityType, OpportunityStatus
from aris.db.models import Opportunity, OpportunityActivity, Pipeline, PipelineStage
from aris.db.types import utcnow
from aris.schemas.pipeline import (
    OpportunityCreate, OpportunityUpdate, PipelineCreate, PipelineUpdate,
    StageCreate, StageUpdate,
)

DEFAULT_PIPELINE_NAME = "Sales Pipeline"

DEFAULT_STAGES = [
    {"name": "Lead", "probability": 10, "color": "#3b82f6"},
    {"name": "Qualified", "probability": 25, "color": "#06b6d4"},
    {"name": "Proposal", "probability": 50, "color": "#a855f7"},
    {"name": "Negotiation", "probability": 75, "color": "#f59e0b"},
    {"name": "Won", "probability": 100, "color": "#22c55e"},
    {"name": "Lost", "probability": 0, "color": "#ef4444"},
]

LOST_STAGE_NAME = "lost"


class PipelineError(Exception):
    """Base error for pipeline operations."""


class VersionConflictError(PipelineError):
    """Raised when expected_version doesn't match current version."""
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Version conflict: expected {expected}, got {actual}")


class DefaultPipelineError(PipelineError):
    def __init__(self):
        super().__init__("The default pipeline cannot be deleted")


class StageInUseError(PipelineError):
    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Stage has {count} opportunities; move them first")


class InvalidStageError(PipelineError):
    """Stage is unknown or belongs to another pipeline."""


# =============================================================================
# Pipelines
# =============================================================================

def _add_stages(pipeline: Pipeline, stage_defs: list[dict]) -> None:
    for order, stage_def in enumerate(stage_defs, start=1):
        pipeline.stages.append(PipelineStage(
            name=stage_def["name"],
            probability=stage_def["probability"],
            color=stage_def["color"],
            order=order,
        ))


def _bump_version(pipeline: Pipeline) -> None:
    pipeline.current_version += 1
    pipeline.updated_at = utcnow()


def get_or_create_default_pipeline(
    db: Session,
    org_id: UUID,
    user_id: UUID | None = None,
) -> Pipeline:
    """Get the default pipeline for an org, creating it on first access."""
    pipeline = (
        db.query(Pipeline)
        .filter(Pipeline.organization_id == org_id, Pipeline.is_default.is_(True))
        .first()
    )
    if pipeline:
        return pipeline

    pipeline = Pipeline(
        organization_id=org_id,
        name=DEFAULT_PIPELINE_NAME,
        is_default=True,
        current_version=1,
        created_by_user_id=user_id,
    )
    _add_stages(pipeline, DEFAULT_STAGES)
    db.add(pipeline)
    db.commit()
    db.refresh(pipeline)
    return pipeline


def list_pipelines(db: Session, org_id: UUID, user_id: UUID | None = None) -> list[Pipeline]:
    """All pipelines for the org, default first."""
    get_or_create_default_pipeline(db, org_id, user_id)
    return (
        db.query(Pipeline)
        .filter(Pipeline.organization_id == org_id)
        .order_by(Pipeline.is_default.desc(), Pipeline.created_at)
        .all()
    )


def get_pipeline(db: Session, org_id: UUID, pipeline_id: UUID) -> Pipeline | None:
    return (
        db.query(Pipeline)
        .filter(Pipeline.id == pipeline_id, Pipeline.organization_id == org_id)
        .first()
    )


def create_pipeline(
    db: Session,
    org_id: UUID,
    user_id: UUID | None,
    data: PipelineCreate,
) -> Pipeline:
    """Create a pipeline with the given stages, or the default set."""
    pipeline = Pipeline(
        organization_id=org_id,
        name=data.name.strip(),
        description=data.description,
        is_default=False,
        current_version=1,
        created_by_user_id=user_id,
    )
    if data.stages:
        _add_stages(pipeline, [s.model_dump() for s in data.stages])
    else:
        _add_stages(pipeline, DEFAULT_STAGES)
    db.add(pipeline)
    db.commit()
    db.refresh(pipeline)
    return pipeline


def update_pipeline(db: Session, pipeline: Pipeline, data: PipelineUpdate) -> Pipeline:
    """
    Update name/description.

    Raises:
        VersionConflictError: expected_version is stale
    """
    if data.expected_version is not None and data.expected_version != pipeline.current_version:
        raise VersionConflictError(data.expected_version, pipeline.current_version)

    updates = data.model_dump(exclude_unset=True, exclude={"expected_version"})
    if "name" in updates and updates["name"]:
        pipeline.name = updates["name"].strip()
    if "description" in updates:
        pipeline.description = updates["description"]

    _bump_version(pipeline)
    db.commit()
    db.refresh(pipeline)
    return pipeline


def delete_pipeline(db: Session, pipeline: Pipeline) -> None:
    """
    Delete a non-default pipeline with its stages and opportunities.

    Raises:
        DefaultPipelineError: pipeline is the org default
    """
    if pipeline.is_default:
        raise DefaultPipelineError()
    for opp in db.query(Opportunity).filter(Opportunity.pipeline_id == pipeline.id).all():
        db.delete(opp)
    db.flush()
    db.delete(pipeline)
    db.commit()


# =============================================================================
# Stages
# =============================================================================

def get_stage(db: Session, pipeline: Pipeline, stage_id: UUID) -> PipelineStage | None:
    return (
        db.query(PipelineStage)
        .filter(PipelineStage.id == stage_id, PipelineStage.pipeline_id == pipeline.id)
        .first()
    )


def add_stage(db: Session, pipeline: Pipeline, data: StageCreate) -> PipelineStage:
    """Insert a stage; without an explicit order it goes last."""
    stages = sorted(pipeline.stages, key=lambda s: s.order)
    position = len(stages) + 1 if data.order is None else min(data.order, len(stages) + 1)

    for stage in stages:
        if stage.order >= position:
            stage.order += 1

    stage = PipelineStage(
        name=data.name.strip(),
        probability=data.probability,
        color=data.color.lower(),
        order=position,
    )
    pipeline.stages.append(stage)
    _bump_version(pipeline)
    db.commit()
    db.refresh(stage)
    return stage


def update_stage(db: Session, pipeline: Pipeline, stage: PipelineStage, data: StageUpdate) -> PipelineStage:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in updates.items():
        setattr(stage, field, value.lower() if field == "color" else value)
    _bump_version(pipeline)
    db.commit()
    db.refresh(stage)
    return stage


def delete_stage(db: Session, pipeline: Pipeline, stage: PipelineStage) -> None:
    """
    Delete an empty stage and close the gap in ordering.

    Raises:
        StageInUseError: Opportunities still sit in the stage
    """
    count = db.query(Opportunity).filter(Opportunity.stage_id == stage.id).count()
    if count:
        raise StageInUseError(count)

    pipeline.stages.remove(stage)
    for i, remaining in enumerate(sorted(pipeline.stages, key=lambda s: s.order), start=1):
        remaining.order = i
    _bump_version(pipeline)
    db.commit()


def reorder_stages(db: Session, pipeline: Pipeline, ordered_stage_ids: list[UUID]) -> list[PipelineStage]:
    """
    Reorder stages by providing an ordered list of stage IDs.

    Normalizes order values to 1, 2, 3...
    """
    stage_map = {s.id: s for s in pipeline.stages}
    ordered_ids = list(dict.fromkeys(ordered_stage_ids))
    if set(ordered_ids) != set(stage_map) or len(ordered_ids) != len(ordered_stage_ids):
        raise InvalidStageError("ordered_stage_ids must include every stage exactly once")

    for i, stage_id in enumerate(ordered_ids, start=1):
        stage_map[stage_id].order = i
    _bump_version(pipeline)
    db.commit()
    db.refresh(pipeline)
    return sorted(pipeline.stages, key=lambda s: s.order)


def get_summary(db: Session, pipeline: Pipeline) -> dict:
    """
    Per-stage counts and values.

    total_value and weighted_value only consider open opportunities.
    """
    rows = (
        db.query(
            Opportunity.stage_id,
            func.count(Opportunity.id),
            func.coalesce(func.sum(Opportunity.value), 0),
        )
        .filter(Opportunity.pipeline_id == pipeline.id)
        .group_by(Opportunity.stage_id)
        .all()
    )
    per_stage = {stage_id: (count, Decimal(str(value))) for stage_id, count, value in rows}

    open_opps = (
        db.query(Opportunity.value, Opportunity.probability)
        .filter(
            Opportunity.pipeline_id == pipeline.id,
            Opportunity.status == OpportunityStatus.OPEN.value,
        )
        .all()
    )
    total_value = sum((Decimal(str(v)) for v, _ in open_opps), Decimal("0"))
    weighted_value = sum(
        (Decimal(str(v)) * Decimal(p) / Decimal(100) for v, p in open_opps),
        Decimal("0"),
    )

    return {
        "pipeline_id": pipeline.id,
        "stages": [
            {
                "stage_id": stage.id,
                "name": stage.name,
                "probability": stage.probability,
                "count": per_stage.get(stage.id, (0, Decimal("0")))[0],
                "value": float(per_stage.get(stage.id, (0, Decimal("0")))[1]),
            }
            for stage in sorted(pipeline.stages, key=lambda s: s.order)
        ],
        "open_count": len(open_opps),
        "total_value": float(total_value),
        "weighted_value": float(weighted_value.quantize(Decimal("0.01"))),
    }


# =============================================================================
# Opportunities
# =============================================================================

def _status_for_stage(stage: PipelineStage) -> OpportunityStatus:
    if stage.probability >= 100:
        return OpportunityStatus.WON
    if stage.probability == 0 and stage.name.strip().lower() == LOST_STAGE_NAME:
        return OpportunityStatus.LOST
    return OpportunityStatus.OPEN


def _apply_stage(opp: Opportunity, stage: PipelineStage) -> None:
    opp.stage_id = stage.id
    opp.probability = stage.probability
    status = _status_for_stage(stage)
    opp.status = status.value
    opp.closed_at = utcnow() if status != OpportunityStatus.OPEN else None


def record_activity(
    db: Session,
    opp: Opportunity,
    activity_type: ActivityType,
    user_id: UUID | None,
    description: str | None = None,
    details: dict | None = None,
) -> OpportunityActivity:
    """Append a timeline entry. Caller commits."""
    activity = OpportunityActivity(
        opportunity_id=opp.id,
        organization_id=opp.organization_id,
        user_id=user_id,
        activity_type=activity_type.value,
        description=description,
        details=details,
    )
    db.add(activity)
    return activity


def list_opportunities(
    db: Session,
    org_id: UUID,
    pipeline_id: UUID | None = None,
    stage_id: UUID | None = None,
    status: OpportunityStatus | None = None,
    contact_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Opportunity], int]:
    query = db.query(Opportunity).filter(Opportunity.organization_id == org_id)
    if pipeline_id:
        query = query.filter(Opportunity.pipeline_id == pipeline_id)
    if stage_id:
        query = query.filter(Opportunity.stage_id == stage_id)
    if status:
        query = query.filter(Opportunity.status == status.value)
    if contact_id:
        query = query.filter(Opportunity.contact_id == contact_id)

    total = query.count()
    items = (
        query.order_by(Opportunity.updated_at.desc(), Opportunity.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_opportunity(db: Session, org_id: UUID, opportunity_id: UUID) -> Opportunity | None:
    return (
        db.query(Opportunity)
        .filter(Opportunity.id == opportunity_id, Opportunity.organization_id == org_id)
        .first()
    )


def create_opportunity(
    db: Session,
    org_id: UUID,
    user_id: UUID | None,
    data: OpportunityCreate,
) -> Opportunity:
    """
    Create an opportunity.

    Without a pipeline the org default is used; without a stage the first
    stage of the pipeline is used.

    Raises:
        InvalidStageError: Pipeline or stage not found in the org
    """
    if data.pipeline_id:
        pipeline = get_pipeline(db, org_id, data.pipeline_id)
        if not pipeline:
            raise InvalidStageError("Pipeline not found")
    else:
        pipeline = get_or_create_default_pipeline(db, org_id, user_id)

    if data.stage_id:
        stage = get_stage(db, pipeline, data.stage_id)
        if not stage:
            raise InvalidStageError("Stage does not belong to this pipeline")
    else:
        stages = sorted(pipeline.stages, key=lambda s: s.order)
        if not stages:
            raise InvalidStageError("Pipeline has no stages")
        stage = stages[0]

    opp = Opportunity(
        organization_id=org_id,
        pipeline_id=pipeline.id,
        contact_id=data.contact_id,
        assigned_to_user_id=data.assigned_to_user_id,
        created_by_user_id=user_id,
        title=data.title.strip(),
        description=data.description,
        value=Decimal(str(data.value)),
        currency=data.currency.upper(),
        expected_close_date=data.expected_close_date,
    )
    _apply_stage(opp, stage)
    db.add(opp)
    db.flush()
    record_activity(db, opp, ActivityType.CREATED, user_id, f"Created in {stage.name}")
    db.commit()
    db.refresh(opp)
    return opp


def update_opportunity(
    db: Session,
    opp: Opportunity,
    data: OpportunityUpdate,
    user_id: UUID | None = None,
) -> Opportunity:
    updates = data.model_dump(exclude_unset=True)
    old_status = opp.status

    if "value" in updates and updates["value"] is not None:
        updates["value"] = Decimal(str(updates["value"]))
    if "currency" in updates and updates["currency"]:
        updates["currency"] = updates["currency"].upper()
    if "status" in updates:
        status = updates.pop("status")
        if status is not None:
            opp.status = status.value
            opp.closed_at = utcnow() if status != OpportunityStatus.OPEN else None

    for field, value in updates.items():
        if field in ("title", "probability") and value is None:
            continue
        setattr(opp, field, value)

    if opp.status != old_status:
        record_activity(
            db, opp, ActivityType.STATUS_CHANGE, user_id,
            f"Status changed from {old_status} to {opp.status}",
            {"from": old_status, "to": opp.status},
        )
    db.commit()
    db.refresh(opp)
    return opp


def delete_opportunity(db: Session, opp: Opportunity) -> None:
    db.delete(opp)
    db.commit()


def move_opportunity(
    db: Session,
    opp: Opportunity,
    stage_id: UUID,
    user_id: UUID | None,
    note: str | None = None,
) -> Opportunity:
    """
    Move an opportunity to another stage of its pipeline.

    Raises:
        InvalidStageError: Stage unknown or in another pipeline
    """
    stage = (
        db.query(PipelineStage)
        .filter(PipelineStage.id == stage_id, PipelineStage.pipeline_id == opp.pipeline_id)
        .first()
    )
    if not stage:
        raise InvalidStageError("Stage does not belong to this opportunity's pipeline")

    from_stage = opp.stage
    if from_stage.id == stage.id:
        return opp

    _apply_stage(opp, stage)
    record_activity(
        db,
        opp,
        ActivityType.STAGE_CHANGE,
        user_id,
        note or f"Moved from {from_stage.name} to {stage.name}",
        {
            "from_stage_id": str(from_stage.id),
            "from_stage": from_stage.name,
            "to_stage_id": str(stage.id),
            "to_stage": stage.name,
            "status": opp.status,
        },
    )
    db.commit()
    db.refresh(opp)
    return opp


def list_activities(db: Session, opp: Opportunity, limit: int = 100) -> list[OpportunityActivity]:
    return (
        db.query(OpportunityActivity)
        .filter(OpportunityActivity.opportunity_id == opp.id)
        .order_by(OpportunityActivity.created_at.desc())
        .limit(limit)
        .all()
    )


def add_activity(
    db: Session,
    opp: Opportunity,
    user_id: UUID | None,
    activity_type: ActivityType,
    description: str,
) -> OpportunityActivity:
    activity = record_activity(db, opp, activity_type, user_id, description)
    db.commit()
    db.refresh(activity)
    return activity
