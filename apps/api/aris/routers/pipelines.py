"""Pipelines router - pipelines, stages and the per-stage summary."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.schemas.auth import UserSession
from aris.schemas.pipeline import (
    PipelineCreate,
    PipelineRead,
    PipelineSummary,
    PipelineUpdate,
    StageCreate,
    StageRead,
    StageReorder,
    StageUpdate,
)
from aris.services import pipeline_service

router = APIRouter()


def _get_or_404(db: Session, org_id: UUID, pipeline_id: UUID):
    pipeline = pipeline_service.get_pipeline(db, org_id, pipeline_id)
    if not pipeline:
        raise HTTPException(status_code=404, detail="Pipeline not found")
    return pipeline


def _get_stage_or_404(db: Session, pipeline, stage_id: UUID):
    stage = pipeline_service.get_stage(db, pipeline, stage_id)
    if not stage:
        raise HTTPException(status_code=404, detail="Stage not found")
    return stage


# =============================================================================
# Pipelines
# =============================================================================

@router.get("", response_model=list[PipelineRead])
def list_pipelines(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List pipelines. The default pipeline is created on first access."""
    return pipeline_service.list_pipelines(db, session.org_id, session.user_id)


@router.post(
    "",
    response_model=PipelineRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_pipeline(
    data: PipelineCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return pipeline_service.create_pipeline(db, session.org_id, session.user_id, data)


@router.get("/{pipeline_id}", response_model=PipelineRead)
def get_pipeline(
    pipeline_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session.org_id, pipeline_id)


@router.patch(
    "/{pipeline_id}",
    response_model=PipelineRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_pipeline(
    pipeline_id: UUID,
    data: PipelineUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Update name/description. Pass expected_version for optimistic locking."""
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    try:
        return pipeline_service.update_pipeline(db, pipeline, data)
    except pipeline_service.VersionConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{pipeline_id}", status_code=204, dependencies=[Depends(require_csrf_header)])
def delete_pipeline(
    pipeline_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    try:
        pipeline_service.delete_pipeline(db, pipeline)
    except pipeline_service.DefaultPipelineError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{pipeline_id}/summary", response_model=PipelineSummary)
def get_pipeline_summary(
    pipeline_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    return pipeline_service.get_summary(db, pipeline)


# =============================================================================
# Stages
# =============================================================================

@router.post(
    "/{pipeline_id}/stages",
    response_model=StageRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def add_stage(
    pipeline_id: UUID,
    data: StageCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    return pipeline_service.add_stage(db, pipeline, data)


@router.patch(
    "/{pipeline_id}/stages/{stage_id}",
    response_model=StageRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_stage(
    pipeline_id: UUID,
    stage_id: UUID,
    data: StageUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    stage = _get_stage_or_404(db, pipeline, stage_id)
    return pipeline_service.update_stage(db, pipeline, stage, data)


@router.delete(
    "/{pipeline_id}/stages/{stage_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_stage(
    pipeline_id: UUID,
    stage_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    stage = _get_stage_or_404(db, pipeline, stage_id)
    try:
        pipeline_service.delete_stage(db, pipeline, stage)
    except pipeline_service.StageInUseError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put(
    "/{pipeline_id}/stages/reorder",
    response_model=list[StageRead],
    dependencies=[Depends(require_csrf_header)],
)
def reorder_stages(
    pipeline_id: UUID,
    data: StageReorder,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    pipeline = _get_or_404(db, session.org_id, pipeline_id)
    try:
        return pipeline_service.reorder_stages(db, pipeline, data.ordered_stage_ids)
    except pipeline_service.InvalidStageError as e:
        raise HTTPException(status_code=400, detail=str(e))
