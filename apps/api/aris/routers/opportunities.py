"""Opportunities router - deals, stage moves and activity timeline."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.db.enums import OpportunityStatus
from aris.schemas.auth import UserSession
from aris.schemas.pipeline import (
    ActivityCreate,
    ActivityRead,
    OpportunityCreate,
    OpportunityListResponse,
    OpportunityMove,
    OpportunityRead,
    OpportunityUpdate,
)
from aris.services import pipeline_service

router = APIRouter()


def _get_or_404(db: Session, org_id: UUID, opportunity_id: UUID):
    opp = pipeline_service.get_opportunity(db, org_id, opportunity_id)
    if not opp:
        raise HTTPException(status_code=404, detail="Opportunity not found")
    return opp


@router.get("", response_model=OpportunityListResponse)
def list_opportunities(
    pipeline_id: UUID | None = None,
    stage_id: UUID | None = None,
    status: OpportunityStatus | None = None,
    contact_id: UUID | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = pipeline_service.list_opportunities(
        db,
        session.org_id,
        pipeline_id=pipeline_id,
        stage_id=stage_id,
        status=status,
        contact_id=contact_id,
        limit=limit,
        offset=offset,
    )
    return OpportunityListResponse(items=items, total=total)


@router.post(
    "",
    response_model=OpportunityRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_opportunity(
    data: OpportunityCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        return pipeline_service.create_opportunity(db, session.org_id, session.user_id, data)
    except pipeline_service.InvalidStageError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    opportunity_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session.org_id, opportunity_id)


@router.patch(
    "/{opportunity_id}",
    response_model=OpportunityRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_opportunity(
    opportunity_id: UUID,
    data: OpportunityUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    opp = _get_or_404(db, session.org_id, opportunity_id)
    return pipeline_service.update_opportunity(db, opp, data, user_id=session.user_id)


@router.delete("/{opportunity_id}", status_code=204, dependencies=[Depends(require_csrf_header)])
def delete_opportunity(
    opportunity_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    opp = _get_or_404(db, session.org_id, opportunity_id)
    pipeline_service.delete_opportunity(db, opp)


@router.post(
    "/{opportunity_id}/move",
    response_model=OpportunityRead,
    dependencies=[Depends(require_csrf_header)],
)
def move_opportunity(
    opportunity_id: UUID,
    data: OpportunityMove,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Move to another stage of the same pipeline.

    Probability follows the stage; 100% stages close as won, a 0% Lost stage
    closes as lost.
    """
    opp = _get_or_404(db, session.org_id, opportunity_id)
    try:
        return pipeline_service.move_opportunity(db, opp, data.stage_id, session.user_id, note=data.note)
    except pipeline_service.InvalidStageError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{opportunity_id}/activities", response_model=list[ActivityRead])
def list_activities(
    opportunity_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    opp = _get_or_404(db, session.org_id, opportunity_id)
    return pipeline_service.list_activities(db, opp)


@router.post(
    "/{opportunity_id}/activities",
    response_model=ActivityRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def add_activity(
    opportunity_id: UUID,
    data: ActivityCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    opp = _get_or_404(db, session.org_id, opportunity_id)
    return pipeline_service.add_activity(db, opp, session.user_id, data.activity_type, data.description)
