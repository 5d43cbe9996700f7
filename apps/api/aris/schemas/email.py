"""Pydantic schemas for email accounts, sync and the email index."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from aris.db.enums import ImapSecurity


# =============================================================================
# Accounts
# =============================================================================

class EmailAccountCreate(BaseModel):
    """IMAP account. OAuth accounts are created by the OAuth callback."""
    email: EmailStr
    display_name: str | None = Field(None, max_length=255)
    imap_host: str = Field(..., min_length=1, max_length=255)
    imap_port: int = Field(993, ge=1, le=65535)
    imap_security: ImapSecurity = ImapSecurity.SSL
    username: str | None = Field(None, max_length=255)
    password: str = Field(..., min_length=1)


class EmailAccountUpdate(BaseModel):
    display_name: str | None = Field(None, max_length=255)
    imap_host: str | None = Field(None, min_length=1, max_length=255)
    imap_port: int | None = Field(None, ge=1, le=65535)
    imap_security: ImapSecurity | None = None
    username: str | None = Field(None, max_length=255)
    password: str | None = Field(None, min_length=1)
    is_active: bool | None = None


class EmailAccountRead(BaseModel):
    """Account view. Passwords and tokens are never exposed."""
    id: UUID
    email: str
    display_name: str | None
    provider_type: str
    imap_host: str | None
    imap_port: int | None
    imap_security: str | None
    username: str | None
    is_active: bool
    setup_completed: bool
    initial_sync_inbox: int | None
    initial_sync_sent: int | None
    last_sync_at: datetime | None
    sync_error: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EmailAccountSetup(BaseModel):
    inbox_count: int = Field(..., ge=0, le=10000)
    sent_count: int = Field(..., ge=0, le=10000)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# Sync
# =============================================================================

class SyncRequest(BaseModel):
    account_id: UUID
    folders: list[str] | None = None
    max_emails: int | None = Field(None, ge=1, le=10000)


class SyncResults(BaseModel):
    received: int = 0
    sent: int = 0
    errors: int = 0


class SyncResponse(BaseModel):
    success: bool
    message: str
    results: SyncResults
    total_saved: int
    synced_at: datetime


# =============================================================================
# Email index
# =============================================================================

class EmailListItem(BaseModel):
    id: UUID
    email_account_id: UUID
    message_id: str
    thread_id: str | None
    folder_name: str
    sender_email: str | None
    sender_name: str | None
    recipient_email: str | None
    subject: str
    preview_text: str | None
    email_type: str
    importance: str
    has_attachments: bool
    attachment_count: int
    ai_analyzed: bool
    sentiment_score: float | None
    language_code: str | None
    assigned_agent: str | None
    highlight_color: str | None
    agent_priority: str | None
    is_read: bool
    replied: bool
    received_at: datetime
    sent_at: datetime | None
    email_status: str
    opportunity_value: float | None


class EmailListResponse(BaseModel):
    items: list[EmailListItem]
    total: int
    page: int
    limit: int
    pages: int


class EmailContent(BaseModel):
    plain_content: str | None
    html_content: str | None
    attachments: list | None
    from_cache: bool


class EmailDetail(EmailListItem):
    upsell_data: dict | None
    content: EmailContent | None


class EmailStats(BaseModel):
    total: int
    analyzed: int
    unread: int
    high_priority: int
    opportunities: int
    cached: int
    storage_saved_mb: float


class AnalyzeRequest(BaseModel):
    force: bool = False
