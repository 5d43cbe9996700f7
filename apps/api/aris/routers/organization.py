"""Organization router - the caller's own organization."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db
from aris.schemas.auth import UserSession
from aris.schemas.organization import CurrentOrganizationRead
from aris.services import org_service

router = APIRouter()


@router.get("", response_model=CurrentOrganizationRead)
def get_current_organization(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    org = org_service.get_org_by_id(db, session.org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return CurrentOrganizationRead(
        id=org.id,
        name=org.name,
        slug=org.slug,
        subscription_tier=org.subscription_tier,
        created_at=org.created_at,
        updated_at=org.updated_at,
        branding=org_service.branding_payload(org.id, org_service.get_branding(db, org.id)),
    )
