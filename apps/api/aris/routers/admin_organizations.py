"""Admin router - organizations and branding.

Organization CRUD is reserved for platform admins. Branding may also be
managed by admins and owners of the organization itself.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from aris.core.deps import (
    can_manage_settings,
    get_current_session,
    get_current_user,
    get_db,
    require_csrf_header,
    require_platform_admin,
)
from aris.schemas.organization import (
    BrandingRead,
    BrandingUpdate,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
)
from aris.services import org_service

router = APIRouter()


def _get_org_or_404(db: Session, org_id: UUID):
    org = org_service.get_org_by_id(db, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def _require_branding_access(org_id: UUID, request: Request, db: Session):
    """Platform admins, or admins/owners of the same organization."""
    user = get_current_user(request, db)
    if user.is_platform_admin:
        return user
    session = get_current_session(request, db)
    if session.org_id != org_id or not can_manage_settings(session):
        raise HTTPException(status_code=403, detail="Not authorized to manage this organization's branding")
    return user


# =============================================================================
# Organizations
# =============================================================================

@router.get("", response_model=list[OrganizationRead])
def list_organizations(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _admin=Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    orgs, _ = org_service.list_orgs(db, limit=limit, offset=offset)
    return orgs


@router.post(
    "",
    response_model=OrganizationRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_organization(
    data: OrganizationCreate,
    _admin=Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    try:
        return org_service.create_org(db, data)
    except org_service.DuplicateSlugError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{org_id}", response_model=OrganizationRead)
def get_organization(
    org_id: UUID,
    _admin=Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return _get_org_or_404(db, org_id)


@router.patch(
    "/{org_id}",
    response_model=OrganizationRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_organization(
    org_id: UUID,
    data: OrganizationUpdate,
    _admin=Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    org = _get_org_or_404(db, org_id)
    try:
        return org_service.update_org(db, org, data)
    except org_service.DuplicateSlugError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Branding
# =============================================================================

@router.get("/{org_id}/branding", response_model=BrandingRead)
def get_branding(
    org_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
):
    """Stored branding, or the defaults."""
    _require_branding_access(org_id, request, db)
    _get_org_or_404(db, org_id)
    return org_service.branding_payload(org_id, org_service.get_branding(db, org_id))


@router.put(
    "/{org_id}/branding",
    response_model=BrandingRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_branding(
    org_id: UUID,
    data: BrandingUpdate,
    request: Request,
    db: Session = Depends(get_db),
):
    user = _require_branding_access(org_id, request, db)
    _get_org_or_404(db, org_id)
    branding = org_service.upsert_branding(db, org_id, data, user_id=user.id)
    return org_service.branding_payload(org_id, branding)
