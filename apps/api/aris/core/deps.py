"""FastAPI dependencies: database session, caller identity and role checks."""

from typing import Generator

import jwt
from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from aris.core.security import decode_session_token
from aris.db.enums import ROLES_CAN_MANAGE_AUTOMATION, ROLES_CAN_MANAGE_SETTINGS, Role
from aris.db.models import Membership, User
from aris.db.session import SessionLocal
from aris.schemas.auth import TokenPayload, UserSession

COOKIE_NAME = "aris_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """One session per request, closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def _session_token(request: Request) -> str | None:
    """API clients send a bearer token; the web app sends the session cookie."""
    return _bearer_token(request) or request.cookies.get(COOKIE_NAME)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Resolve the signed-in user.

    Raises:
        HTTPException 401: no token, bad or expired token, unknown or
            disabled user, or a token_version that was revoked
    """
    token = _session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        claims = TokenPayload.model_validate(decode_session_token(token))
    except (jwt.InvalidTokenError, ValidationError):
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.get(User, claims.sub)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")
    if user.token_version != claims.token_version:
        raise HTTPException(status_code=401, detail="Session revoked")
    return user


def get_current_session(request: Request, db: Session = Depends(get_db)) -> UserSession:
    """
    Caller identity with organization and role. Used by nearly every route.

    Raises:
        HTTPException 401: see get_current_user
        HTTPException 403: user has no membership, or its role is unknown
    """
    user = get_current_user(request, db)
    membership = db.query(Membership).filter(Membership.user_id == user.id).first()
    if membership is None:
        raise HTTPException(status_code=403, detail="No organization membership")
    if not Role.has_value(membership.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{membership.role}'. Contact administrator.",
        )

    return UserSession(
        user_id=user.id,
        org_id=membership.organization_id,
        role=Role(membership.role),
        email=user.email,
        display_name=user.display_name,
        is_platform_admin=user.is_platform_admin,
    )


def require_roles(allowed_roles: list[Role]):
    """
    Dependency factory limiting a route to some roles.

    Usage:
        session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER]))
    """
    def dependency(request: Request, db: Session = Depends(get_db)) -> UserSession:
        session = get_current_session(request, db)
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{session.role.value}' not authorized for this action",
            )
        return session
    return dependency


def require_platform_admin(request: Request, db: Session = Depends(get_db)) -> User:
    """Cross-tenant operators only."""
    user = get_current_user(request, db)
    if not user.is_platform_admin:
        raise HTTPException(status_code=403, detail="Platform admin access required")
    return user


def require_csrf_header(request: Request) -> None:
    """
    Cookie-authenticated mutations must carry the CSRF header.

    Bearer-token callers are exempt since browsers never attach that header
    on their own.
    """
    if _bearer_token(request):
        return
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'",
        )


def can_manage_settings(session: UserSession) -> bool:
    return session.role in ROLES_CAN_MANAGE_SETTINGS


def can_manage_automation(session: UserSession) -> bool:
    return session.role in ROLES_CAN_MANAGE_AUTOMATION
