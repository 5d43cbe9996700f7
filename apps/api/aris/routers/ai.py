"""AI settings and usage routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header, require_roles
from aris.db.enums import Role
from aris.schemas.auth import UserSession
from aris.services import ai_settings_service, ai_usage_service
from aris.services.ai_provider import get_provider

router = APIRouter()


class AISettingsResponse(BaseModel):
    """AI settings for display (with masked key)."""

    is_enabled: bool
    provider: str
    model: str | None
    api_key_masked: str | None
    uses_platform_key: bool
    updated_at: datetime | None = None


class AISettingsUpdate(BaseModel):
    is_enabled: bool | None = None
    provider: str | None = Field(None, pattern="^(openai|gemini)$")
    api_key: str | None = None
    model: str | None = Field(None, max_length=100)


class TestKeyRequest(BaseModel):
    provider: str = Field(..., pattern="^(openai|gemini)$")
    api_key: str = Field(..., min_length=1)


class TestKeyResponse(BaseModel):
    valid: bool


@router.get("/settings", response_model=AISettingsResponse)
def get_settings(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get AI settings for the organization."""
    ai_settings = ai_settings_service.get_or_create_ai_settings(db, session.org_id)
    return ai_settings_service.settings_payload(ai_settings)


@router.patch(
    "/settings",
    response_model=AISettingsResponse,
    dependencies=[Depends(require_csrf_header)],
)
def update_settings(
    data: AISettingsUpdate,
    session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER])),
    db: Session = Depends(get_db),
):
    """Update AI settings. An empty api_key clears the stored key."""
    try:
        ai_settings = ai_settings_service.update_ai_settings(
            db,
            session.org_id,
            is_enabled=data.is_enabled,
            provider=data.provider,
            api_key=data.api_key,
            model=data.model,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ai_settings_service.settings_payload(ai_settings)


@router.post(
    "/settings/test",
    response_model=TestKeyResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def test_key(
    data: TestKeyRequest,
    session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER])),
):
    """Check an API key against the provider without saving it."""
    provider = get_provider(data.provider, data.api_key)
    return TestKeyResponse(valid=await provider.validate_key())


@router.get("/usage")
def get_usage(
    days: int = Query(30, ge=1, le=365),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Token usage and estimated cost for the last `days` days."""
    return ai_usage_service.get_org_usage_summary(db, session.org_id, days=days)
