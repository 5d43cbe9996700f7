"""Email account service - the caller's connected mailboxes."""

import logging
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aris.core.encryption import decrypt_secret, encrypt_secret
from aris.core.structured_logging import mask_email
from aris.db.enums import EmailProvider, JobType
from aris.db.models import EmailAccount
from aris.schemas.email import EmailAccountCreate, EmailAccountUpdate
from aris.services import job_service, oauth_service
from aris.services.mail_clients import (
    GmailMailClient, GraphMailClient, ImapMailClient, MailClient, MailProviderError,
)

logger = logging.getLogger(__name__)


class EmailAccountError(Exception):
    """Base error for email account operations."""


class DuplicateEmailAccountError(EmailAccountError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("This mailbox is already connected")


def list_accounts(db: Session, org_id: UUID, user_id: UUID) -> list[EmailAccount]:
    return (
        db.query(EmailAccount)
        .filter(EmailAccount.organization_id == org_id, EmailAccount.user_id == user_id)
        .order_by(EmailAccount.created_at)
        .all()
    )


def get_account(db: Session, org_id: UUID, user_id: UUID, account_id: UUID) -> EmailAccount | None:
    """Account owned by the caller, or None."""
    return (
        db.query(EmailAccount)
        .filter(
            EmailAccount.id == account_id,
            EmailAccount.organization_id == org_id,
            EmailAccount.user_id == user_id,
        )
        .first()
    )


def find_by_email(db: Session, user_id: UUID, email: str) -> EmailAccount | None:
    return (
        db.query(EmailAccount)
        .filter(EmailAccount.user_id == user_id, func.lower(EmailAccount.email) == email.lower())
        .first()
    )


def create_imap_account(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    data: EmailAccountCreate,
) -> EmailAccount:
    """
    Connect an IMAP mailbox.

    Raises:
        DuplicateEmailAccountError: Caller already connected this address
    """
    email = str(data.email).lower()
    if find_by_email(db, user_id, email):
        raise DuplicateEmailAccountError(email)

    account = EmailAccount(
        organization_id=org_id,
        user_id=user_id,
        email=email,
        display_name=data.display_name,
        provider_type=EmailProvider.IMAP.value,
        imap_host=data.imap_host.strip(),
        imap_port=data.imap_port,
        imap_security=data.imap_security.value,
        username=data.username or email,
        password_encrypted=encrypt_secret(data.password),
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("Connected IMAP account %s", mask_email(email))
    return account


def upsert_oauth_account(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    provider: EmailProvider,
    email: str,
    display_name: str | None,
    tokens: dict,
) -> EmailAccount:
    """Create or reconnect an OAuth mailbox after a successful callback."""
    account = find_by_email(db, user_id, email)
    if account is None:
        account = EmailAccount(
            organization_id=org_id,
            user_id=user_id,
            email=email.lower(),
            provider_type=provider.value,
        )
        db.add(account)
    account.provider_type = provider.value
    account.display_name = display_name or account.display_name
    account.is_active = True
    account.sync_error = None
    oauth_service.store_tokens(account, tokens)
    db.commit()
    db.refresh(account)
    return account


def update_account(db: Session, account: EmailAccount, data: EmailAccountUpdate) -> EmailAccount:
    updates = data.model_dump(exclude_unset=True)
    password = updates.pop("password", None)
    if password:
        account.password_encrypted = encrypt_secret(password)
    if updates.get("imap_security") is not None:
        updates["imap_security"] = updates["imap_security"].value
    for field, value in updates.items():
        if value is None and field != "display_name":
            continue
        setattr(account, field, value)
    db.commit()
    db.refresh(account)
    return account


def delete_account(db: Session, account: EmailAccount) -> None:
    db.delete(account)
    db.commit()


def complete_setup(
    db: Session,
    account: EmailAccount,
    inbox_count: int,
    sent_count: int,
) -> EmailAccount:
    """Store initial sync amounts and queue the initial sync."""
    account.initial_sync_inbox = inbox_count
    account.initial_sync_sent = sent_count
    account.setup_completed = True
    db.commit()

    job_service.schedule_job(
        db,
        org_id=account.organization_id,
        job_type=JobType.EMAIL_SYNC,
        payload={
            "account_id": str(account.id),
            "folders": ["inbox", "sent"],
            "max_per_folder": {"inbox": inbox_count, "sent": sent_count},
        },
        idempotency_key=f"email_sync:initial:{account.id}",
    )
    db.refresh(account)
    return account


async def build_mail_client(db: Session, account: EmailAccount) -> MailClient:
    """Provider client for an account, refreshing OAuth tokens when needed."""
    if account.provider_type == EmailProvider.IMAP.value:
        return ImapMailClient(
            host=account.imap_host or "",
            port=account.imap_port or 993,
            security=account.imap_security or "ssl",
            username=account.username or account.email,
            password=decrypt_secret(account.password_encrypted or ""),
        )
    access_token = await oauth_service.get_valid_access_token(db, account)
    if account.provider_type == EmailProvider.MICROSOFT.value:
        return GraphMailClient(access_token)
    return GmailMailClient(access_token)


async def test_connection(db: Session, account: EmailAccount) -> tuple[bool, str]:
    """Try the credentials; returns (success, message)."""
    try:
        client = await build_mail_client(db, account)
        address = await client.test_connection()
    except MailProviderError as exc:
        logger.info("Connection test failed for account %s: %s", account.id, exc)
        return False, str(exc)
    return True, f"Connected to {address or account.email}"
