"""Pydantic schemas for the Metakocka ERP integration."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from aris.services.metakocka_client import MetakockaDocumentType


class CredentialsUpdate(BaseModel):
    company_id: str = Field(..., min_length=1, max_length=50)
    secret_key: str = Field(..., min_length=1, max_length=500)
    api_endpoint: str | None = Field(None, max_length=500)
    is_active: bool = True


class CredentialsRead(BaseModel):
    company_id: str
    secret_key_masked: str | None
    api_endpoint: str | None
    is_active: bool
    last_sync_at: datetime | None
    updated_at: datetime


class ConnectionTestResult(BaseModel):
    success: bool
    error: str | None = None
    error_type: str | None = None


class ProductSyncRequest(BaseModel):
    product_ids: list[UUID] | None = None


class DocumentSyncRequest(BaseModel):
    document_ids: list[UUID] | None = None


class DocumentImportRequest(BaseModel):
    doc_types: list[MetakockaDocumentType] | None = None


class SyncError(BaseModel):
    id: str
    error: str


class SyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)


class ErrorLogRead(BaseModel):
    id: UUID
    category: str
    error_type: str | None
    error_code: str | None
    message: str
    details: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}
