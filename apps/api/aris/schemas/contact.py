"""Pydantic schemas for contacts."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class ContactBase(BaseModel):
    last_name: str | None = Field(None, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    position: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    notes: str | None = None
    personality_type: str | None = Field(None, max_length=50)


class ContactCreate(ContactBase):
    first_name: str = Field(..., min_length=1, max_length=100)


class ContactUpdate(ContactBase):
    """Partial update; only fields present in the request are applied."""
    first_name: str | None = Field(None, min_length=1, max_length=100)


class ContactRead(BaseModel):
    id: UUID
    first_name: str
    last_name: str | None
    email: str | None
    phone: str | None
    company: str | None
    position: str | None
    country: str | None
    notes: str | None
    personality_type: str | None
    last_interaction_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ContactListResponse(BaseModel):
    items: list[ContactRead]
    total: int
