"""Subscriptions router - plans, the org's subscription and invoices."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header, require_roles
from aris.db.enums import Role
from aris.schemas.auth import UserSession
from aris.schemas.subscription import (
    CancelRequest,
    CurrentSubscriptionResponse,
    InvoiceRead,
    PlanRead,
    SubscribeRequest,
    SubscriptionRead,
)
from aris.services import subscription_service

router = APIRouter()


@router.get("/plans", response_model=list[PlanRead])
def list_plans(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Active plans an organization can subscribe to."""
    return subscription_service.list_plans(db)


@router.get("/current", response_model=CurrentSubscriptionResponse)
def get_current_subscription(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    subscription = subscription_service.get_current_subscription(db, session.org_id)
    return CurrentSubscriptionResponse(
        subscription=SubscriptionRead.model_validate(subscription) if subscription else None
    )


@router.post(
    "",
    response_model=SubscriptionRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def subscribe(
    data: SubscribeRequest,
    session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER])),
    db: Session = Depends(get_db),
):
    """Subscribe to a plan. Any live subscription is ended first."""
    try:
        return subscription_service.subscribe(db, session.org_id, data.plan_id, trial_days=data.trial_days)
    except subscription_service.PlanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/cancel",
    response_model=SubscriptionRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_subscription(
    data: CancelRequest,
    session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER])),
    db: Session = Depends(get_db),
):
    try:
        return subscription_service.cancel_subscription(db, session.org_id, at_period_end=data.at_period_end)
    except subscription_service.NoActiveSubscriptionError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/invoices", response_model=list[InvoiceRead])
def list_invoices(
    limit: int = Query(100, ge=1, le=500),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return subscription_service.list_invoices(db, session.org_id, limit=limit)
