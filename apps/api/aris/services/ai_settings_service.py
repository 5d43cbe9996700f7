"""Organization AI configuration: provider choice, encrypted key, model.

Without an org key the openai provider falls back to the platform
OPENAI_API_KEY.
"""

import uuid

from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.core.encryption import decrypt_secret, encrypt_secret, mask_secret
from aris.db.models import AISettings
from aris.services.ai_provider import PROVIDERS, AIProvider, get_provider

SUPPORTED_PROVIDERS = tuple(PROVIDERS)
PLATFORM_KEY_PROVIDER = "openai"


def get_ai_settings(db: Session, organization_id: uuid.UUID) -> AISettings | None:
    return db.query(AISettings).filter_by(organization_id=organization_id).one_or_none()


def get_or_create_ai_settings(db: Session, organization_id: uuid.UUID) -> AISettings:
    existing = get_ai_settings(db, organization_id)
    if existing is not None:
        return existing
    created = AISettings(organization_id=organization_id, is_enabled=True, provider=settings.AI_DEFAULT_PROVIDER)
    db.add(created)
    db.commit()
    db.refresh(created)
    return created


def update_ai_settings(
    db: Session,
    organization_id: uuid.UUID,
    *,
    is_enabled: bool | None = None,
    provider: str | None = None,
    api_key: str | None = None,
    model: str | None = None,
) -> AISettings:
    """
    Apply a partial update. Empty api_key or model strings clear the value.

    Raises:
        ValueError: provider is not supported
    """
    row = get_or_create_ai_settings(db, organization_id)

    if provider is not None and provider != row.provider:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported AI provider: {provider}")
        # keys and model names do not carry over between vendors
        row.provider = provider
        row.api_key_encrypted = None
        row.model = None
    if is_enabled is not None:
        row.is_enabled = is_enabled
    if api_key is not None:
        row.api_key_encrypted = encrypt_secret(api_key) if api_key else None
    if model is not None:
        row.model = model or None

    db.commit()
    db.refresh(row)
    return row


def is_ai_enabled(db: Session, organization_id: uuid.UUID) -> bool:
    row = get_ai_settings(db, organization_id)
    return True if row is None else row.is_enabled


def _provider_name(row: AISettings | None) -> str:
    return row.provider if row is not None else settings.AI_DEFAULT_PROVIDER


def _uses_platform_key(row: AISettings | None) -> bool:
    has_own_key = row is not None and bool(row.api_key_encrypted)
    return not has_own_key and _provider_name(row) == PLATFORM_KEY_PROVIDER and bool(settings.OPENAI_API_KEY)


def resolve_api_key(row: AISettings | None) -> str | None:
    """Org key when configured, else the platform key where it applies."""
    if row is not None and row.api_key_encrypted:
        return decrypt_secret(row.api_key_encrypted)
    return settings.OPENAI_API_KEY if _uses_platform_key(row) else None


def get_ai_provider_for_org(db: Session, organization_id: uuid.UUID) -> AIProvider | None:
    """The org's provider, or None when AI is off or no key is available."""
    row = get_ai_settings(db, organization_id)
    if row is not None and not row.is_enabled:
        return None
    api_key = resolve_api_key(row)
    if not api_key:
        return None

    name = _provider_name(row)
    model = row.model if row is not None else None
    if model is None and name == settings.AI_DEFAULT_PROVIDER:
        model = settings.AI_DEFAULT_MODEL
    return get_provider(name, api_key, model)


def settings_payload(row: AISettings) -> dict:
    """Response body; the key never leaves the server unmasked."""
    return {
        "is_enabled": row.is_enabled,
        "provider": row.provider,
        "model": row.model,
        "api_key_masked": mask_secret(row.api_key_encrypted),
        "uses_platform_key": _uses_platform_key(row),
        "updated_at": row.updated_at,
    }
