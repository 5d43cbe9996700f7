"""Pydantic schemas for suppliers, pricing, documents and sourcing queries."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    website: str | None = Field(None, max_length=500)
    country: str | None = Field(None, max_length=100)
    notes: str | None = None
    reliability_score: int | None = Field(None, ge=0, le=100)


class SupplierUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    website: str | None = Field(None, max_length=500)
    country: str | None = Field(None, max_length=100)
    notes: str | None = None
    reliability_score: int | None = Field(None, ge=0, le=100)


class SupplierRead(BaseModel):
    id: UUID
    name: str
    email: str | None
    phone: str | None
    website: str | None
    country: str | None
    notes: str | None
    reliability_score: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PricingCreate(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=255)
    sku: str | None = Field(None, max_length=100)
    price: float = Field(..., ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    min_quantity: int = Field(1, ge=1)


class PricingRead(BaseModel):
    id: UUID
    supplier_id: UUID
    product_name: str
    sku: str | None
    price: float
    currency: str
    min_quantity: int
    created_at: datetime

    model_config = {"from_attributes": True}


class DocumentCreate(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    document_type: str = Field(..., min_length=1, max_length=50)
    summary: str | None = None
    extracted_data: dict | None = None


class DocumentReview(BaseModel):
    status: Literal["approved", "rejected"]
    summary: str | None = None


class DocumentRead(BaseModel):
    id: UUID
    supplier_id: UUID
    file_name: str
    document_type: str
    status: str
    summary: str | None
    extracted_data: dict | None
    reviewed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SupplierMatch(BaseModel):
    supplier_id: UUID
    relevance_score: float = Field(0, ge=0, le=1)
    product_match: str | None = None
    match_reason: str | None = None
    price: str | None = None
    suggested_email: str | None = None


class SupplierQueryCreate(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    ai_response: str | None = None
    results: list[SupplierMatch] | None = None


class SupplierQueryRead(BaseModel):
    id: UUID
    query: str
    ai_response: str | None
    results: list
    created_at: datetime

    model_config = {"from_attributes": True}
