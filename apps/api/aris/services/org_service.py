"""Organization service - tenants and their branding."""

from uuid import UUID

from sqlalchemy.orm import Session

from aris.db.models import Organization, OrganizationBranding
from aris.schemas.organization import BrandingUpdate, OrganizationCreate, OrganizationUpdate

DEFAULT_BRANDING = {
    "logo_url": None,
    "favicon_url": None,
    "primary_color": "#0f172a",
    "secondary_color": "#64748b",
    "accent_color": "#2563eb",
    "font_family": "Inter",
    "custom_css": None,
}


class OrganizationError(Exception):
    """Base error for organization operations."""


class DuplicateSlugError(OrganizationError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Organization slug '{slug}' is already taken")


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    return db.query(Organization).filter(Organization.id == org_id).first()


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    return db.query(Organization).filter(Organization.slug == slug).first()


def list_orgs(db: Session, limit: int = 100, offset: int = 0) -> tuple[list[Organization], int]:
    query = db.query(Organization)
    total = query.count()
    orgs = query.order_by(Organization.created_at.desc()).offset(offset).limit(limit).all()
    return orgs, total


def create_org(db: Session, data: OrganizationCreate) -> Organization:
    """
    Create a new organization.

    Raises:
        DuplicateSlugError: Slug already in use
    """
    if get_org_by_slug(db, data.slug):
        raise DuplicateSlugError(data.slug)
    org = Organization(
        name=data.name.strip(),
        slug=data.slug,
        subscription_tier=data.subscription_tier,
    )
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def update_org(db: Session, org: Organization, data: OrganizationUpdate) -> Organization:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    new_slug = updates.get("slug")
    if new_slug and new_slug != org.slug and get_org_by_slug(db, new_slug):
        raise DuplicateSlugError(new_slug)
    for field, value in updates.items():
        setattr(org, field, value)
    db.commit()
    db.refresh(org)
    return org


# =============================================================================
# Branding
# =============================================================================

def get_branding(db: Session, org_id: UUID) -> OrganizationBranding | None:
    return (
        db.query(OrganizationBranding)
        .filter(OrganizationBranding.organization_id == org_id)
        .first()
    )


def branding_payload(org_id: UUID, branding: OrganizationBranding | None) -> dict:
    """Stored branding, or the defaults when the org never saved any."""
    if branding is None:
        return {"organization_id": org_id, **DEFAULT_BRANDING, "updated_at": None}
    return {
        "organization_id": org_id,
        "logo_url": branding.logo_url,
        "favicon_url": branding.favicon_url,
        "primary_color": branding.primary_color,
        "secondary_color": branding.secondary_color,
        "accent_color": branding.accent_color,
        "font_family": branding.font_family,
        "custom_css": branding.custom_css,
        "updated_at": branding.updated_at,
    }


def upsert_branding(
    db: Session,
    org_id: UUID,
    data: BrandingUpdate,
    user_id: UUID | None = None,
) -> OrganizationBranding:
    """Create or update branding. Unset fields keep their current (or default) value."""
    branding = get_branding(db, org_id)
    if branding is None:
        branding = OrganizationBranding(organization_id=org_id, **DEFAULT_BRANDING)
        db.add(branding)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field not in ("logo_url", "favicon_url", "custom_css"):
            continue
        setattr(branding, field, value.lower() if field.endswith("_color") else value)

    branding.updated_by_user_id = user_id
    db.commit()
    db.refresh(branding)
    return branding
