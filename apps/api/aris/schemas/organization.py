"""Pydantic schemas for organizations and branding."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100, pattern=SLUG_PATTERN)
    subscription_tier: str = "starter"


class OrganizationUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    slug: str | None = Field(None, min_length=2, max_length=100, pattern=SLUG_PATTERN)
    subscription_tier: str | None = None


class OrganizationRead(BaseModel):
    id: UUID
    name: str
    slug: str
    subscription_tier: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BrandingUpdate(BaseModel):
    logo_url: str | None = Field(None, max_length=500)
    favicon_url: str | None = Field(None, max_length=500)
    primary_color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)
    secondary_color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)
    accent_color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)
    font_family: str | None = Field(None, min_length=1, max_length=100)
    custom_css: str | None = None


class BrandingRead(BaseModel):
    organization_id: UUID
    logo_url: str | None
    favicon_url: str | None
    primary_color: str
    secondary_color: str
    accent_color: str
    font_family: str
    custom_css: str | None
    updated_at: datetime | None = None


class CurrentOrganizationRead(OrganizationRead):
    branding: BrandingRead
