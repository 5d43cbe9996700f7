"""Pydantic schemas for products and sales documents."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from aris.db.enums import SalesDocumentStatus, SalesDocumentType


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    price: float | None = Field(None, ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    unit: str = Field("piece", max_length=20)
    category: str | None = Field(None, max_length=100)


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    sku: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    price: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    unit: str | None = Field(None, max_length=20)
    category: str | None = Field(None, max_length=100)


class ProductRead(BaseModel):
    id: UUID
    name: str
    sku: str | None
    description: str | None
    price: float | None
    currency: str
    unit: str
    category: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductListResponse(BaseModel):
    items: list[ProductRead]
    total: int


class SalesDocumentItem(BaseModel):
    product_id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=255)
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    discount_percent: float = Field(0, ge=0, le=100)
    tax_percent: float = Field(0, ge=0, le=100)


class SalesDocumentCreate(BaseModel):
    document_type: SalesDocumentType
    document_number: str | None = Field(None, max_length=100)
    contact_id: UUID | None = None
    status: SalesDocumentStatus = SalesDocumentStatus.DRAFT
    issue_date: date | None = None
    due_date: date | None = None
    currency: str = Field("EUR", min_length=3, max_length=3)
    items: list[SalesDocumentItem] = Field(default_factory=list)
    notes: str | None = None


class SalesDocumentUpdate(BaseModel):
    document_number: str | None = Field(None, max_length=100)
    contact_id: UUID | None = None
    status: SalesDocumentStatus | None = None
    issue_date: date | None = None
    due_date: date | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    items: list[SalesDocumentItem] | None = None
    notes: str | None = None


class SalesDocumentRead(BaseModel):
    id: UUID
    document_type: str
    document_number: str | None
    contact_id: UUID | None
    status: str
    issue_date: date | None
    due_date: date | None
    currency: str
    items: list
    total_amount: float
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SalesDocumentListResponse(BaseModel):
    items: list[SalesDocumentRead]
    total: int
