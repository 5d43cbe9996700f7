"""Admin router - subscription plan catalogue (platform admins only)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from aris.core.deps import get_db, require_csrf_header, require_platform_admin
from aris.schemas.subscription import PlanCreate, PlanRead, PlanUpdate
from aris.services import subscription_service

router = APIRouter(dependencies=[Depends(require_platform_admin)])


@router.get("", response_model=list[PlanRead])
def list_plans(include_inactive: bool = False, db: Session = Depends(get_db)):
    """Active plans; pass include_inactive to see retired ones too."""
    return subscription_service.list_plans(db, include_inactive=include_inactive)


@router.post(
    "",
    response_model=PlanRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_plan(data: PlanCreate, db: Session = Depends(get_db)):
    try:
        return subscription_service.create_plan(db, data)
    except subscription_service.DuplicatePlanError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch(
    "/{plan_id}",
    response_model=PlanRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_plan(plan_id: UUID, data: PlanUpdate, db: Session = Depends(get_db)):
    plan = subscription_service.get_plan(db, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Subscription plan not found")
    try:
        return subscription_service.update_plan(db, plan, data)
    except subscription_service.DuplicatePlanError as e:
        raise HTTPException(status_code=409, detail=str(e))
