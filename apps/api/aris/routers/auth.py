"""Session introspection and logout. Sign-in itself happens outside the API."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from aris.core.deps import COOKIE_NAME, get_current_session, get_db, require_csrf_header
from aris.db.models import Organization, User
from aris.schemas.auth import MeResponse, UserSession
from aris.services import ai_settings_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=MeResponse)
def get_me(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    """Identity, organization and feature flags the web app needs on load."""
    org = db.get(Organization, session.org_id)
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    return MeResponse(
        **session.model_dump(include={"user_id", "email", "display_name", "role", "is_platform_admin"}),
        org_id=org.id,
        org_name=org.name,
        org_slug=org.slug,
        ai_enabled=ai_settings_service.is_ai_enabled(db, org.id),
    )


@router.post("/logout", dependencies=[Depends(require_csrf_header)])
def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Bump token_version, which revokes the cookie and every bearer token, then clear the cookie."""
    user = db.get(User, session.user_id)
    user.token_version += 1
    db.commit()
    logger.info("session revoked user_id=%s", session.user_id)

    response.delete_cookie(COOKIE_NAME, path="/")
    return {"status": "logged_out"}
