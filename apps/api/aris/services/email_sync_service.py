"""Email sync - pull messages from a mailbox into the index and content cache."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.core.structured_logging import mask_email
from aris.db.enums import EmailType, JobType, NotificationType, ProcessingStatus
from aris.db.models import EmailAccount, EmailIndex
from aris.db.types import utcnow
from aris.services import (
    contact_service, email_account_service, email_index_service, followup_service,
    job_service, notification_service,
)
from aris.services.mail_clients import (
    FOLDER_ALIASES, FOLDER_SENT, MailProviderError, NormalizedMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS = ["inbox", "sent"]

# Per-folder cap once an account has synced at least once
INCREMENTAL_SYNC_COUNT = 100


class EmailSyncError(Exception):
    """Base error for mailbox sync."""


class EmailAccountNotFoundError(EmailSyncError):
    def __init__(self, account_id: UUID):
        self.account_id = account_id
        super().__init__("Email account not found or inactive")


def get_syncable_account(db: Session, org_id: UUID, user_id: UUID, account_id: UUID) -> EmailAccount:
    """
    The caller's active account.

    Raises:
        EmailAccountNotFoundError: Unknown, foreign or inactive account
    """
    account = email_account_service.get_account(db, org_id, user_id, account_id)
    if account is None or not account.is_active:
        raise EmailAccountNotFoundError(account_id)
    return account


def _resolve_folders(folders: list[str] | None) -> list[str]:
    resolved = []
    for folder in folders or DEFAULT_FOLDERS:
        name = FOLDER_ALIASES.get(folder.lower(), folder)
        if name not in resolved:
            resolved.append(name)
    return resolved


def _folder_limit(account: EmailAccount, folder: str, max_per_folder: Any) -> int:
    """Per-folder cap from an int, a {"inbox": n, "sent": m} dict, or the account setup."""
    if isinstance(max_per_folder, int):
        return max_per_folder
    if isinstance(max_per_folder, dict):
        key = "sent" if folder == FOLDER_SENT else "inbox"
        if max_per_folder.get(key) is not None:
            return int(max_per_folder[key])
    if account.last_sync_at is not None:
        return INCREMENTAL_SYNC_COUNT
    setup_count = account.initial_sync_sent if folder == FOLDER_SENT else account.initial_sync_inbox
    return setup_count if setup_count is not None else settings.EMAIL_SYNC_DEFAULT_COUNT


def _index_row(account: EmailAccount, message: NormalizedMessage) -> EmailIndex:
    received_at = message.received_at or message.sent_at or utcnow()
    return EmailIndex(
        organization_id=account.organization_id,
        user_id=account.user_id,
        email_account_id=account.id,
        message_id=message.message_id,
        thread_id=message.thread_id,
        imap_uid=message.imap_uid,
        folder_name=message.folder,
        sender_email=(message.sender_email or "").lower() or None,
        sender_name=message.sender_name,
        recipient_email=", ".join(message.recipients) or None,
        subject=message.subject or "No Subject",
        preview_text=message.preview,
        email_type=message.email_type.value,
        importance=message.importance,
        has_attachments=message.has_attachments,
        attachment_count=len(message.attachments),
        is_read=message.is_read or message.email_type == EmailType.SENT,
        processing_status=ProcessingStatus.PENDING.value,
        received_at=received_at,
        sent_at=message.sent_at,
    )


def _existing_message_ids(db: Session, account: EmailAccount, message_ids: list[str]) -> set[str]:
    rows = (
        db.query(EmailIndex.message_id)
        .filter(
            EmailIndex.email_account_id == account.id,
            EmailIndex.message_id.in_(message_ids),
        )
        .all()
    )
    return {row[0] for row in rows}


def _apply_side_effects(db: Session, account: EmailAccount, row: EmailIndex, message: NormalizedMessage) -> None:
    """Contact interaction and follow-up tracking for a newly indexed message."""
    org_id = account.organization_id
    at = row.received_at
    if message.email_type == EmailType.SENT:
        for recipient in message.recipients:
            contact_service.touch_contact_interaction(db, org_id, recipient, at)
    else:
        contact_service.touch_contact_interaction(db, org_id, row.sender_email, at)
        followup_service.record_response(db, org_id, account.user_id, row.sender_email, at)


def _track_sent(db: Session, account: EmailAccount, row: EmailIndex, message: NormalizedMessage) -> None:
    if message.email_type != EmailType.SENT:
        return
    sent_at = message.sent_at or row.received_at
    if not followup_service.should_track_synced(sent_at):
        return
    followup = followup_service.track_sent_email(
        db,
        org_id=account.organization_id,
        user_id=account.user_id,
        subject=row.subject,
        recipients=message.recipients,
        sent_at=sent_at,
        email_id=row.id,
    )
    if followup is not None:
        followup_service.complete_if_already_answered(db, followup)


def _save_batch(db: Session, account: EmailAccount, batch: list[NormalizedMessage], seen: set[str]) -> dict:
    counts = {"received": 0, "sent": 0, "errors": 0}
    ids = [m.message_id for m in batch if m.message_id]
    existing = _existing_message_ids(db, account, ids) if ids else set()

    new_rows: list[tuple[EmailIndex, NormalizedMessage]] = []
    for message in batch:
        if not message.message_id:
            counts["errors"] += 1
            continue
        if message.message_id in existing or message.message_id in seen:
            continue
        seen.add(message.message_id)
        row = _index_row(account, message)
        db.add(row)
        new_rows.append((row, message))
        _apply_side_effects(db, account, row, message)
        key = "sent" if message.email_type == EmailType.SENT else "received"
        counts[key] += 1
    db.commit()

    for row, message in new_rows:
        try:
            email_index_service.cache_content(db, account, message)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Content cache write failed for email %s", row.id)
        _track_sent(db, account, row, message)
    return counts


def _record_failure(db: Session, account: EmailAccount, error: str) -> None:
    account.sync_error = error[:1000]
    notification_service.create_notification(
        db,
        org_id=account.organization_id,
        user_id=account.user_id,
        notification_type=NotificationType.SYNC_FAILED,
        title="Email sync failed",
        message=f"Syncing {account.email} failed: {error}",
        entity_type="email_account",
        entity_id=account.id,
    )
    db.commit()


async def sync_account(
    db: Session,
    account: EmailAccount,
    folders: list[str] | None = None,
    max_per_folder: int | dict | None = None,
) -> dict:
    """
    Sync the newest messages of the given folders.

    Messages already indexed for the account are skipped. Returns counts per
    type plus total_saved and synced_at.

    Raises:
        MailProviderError: Provider failed; stored on account.sync_error
    """
    results = {"received": 0, "sent": 0, "errors": 0}
    seen: set[str] = set()
    batch_size = max(settings.EMAIL_SYNC_BATCH_SIZE, 1)

    try:
        client = await email_account_service.build_mail_client(db, account)
        for folder in _resolve_folders(folders):
            limit = _folder_limit(account, folder, max_per_folder)
            if limit <= 0:
                continue
            messages = await client.fetch_messages(folder, limit)
            for start in range(0, len(messages), batch_size):
                counts = _save_batch(db, account, messages[start:start + batch_size], seen)
                for key, value in counts.items():
                    results[key] += value
    except MailProviderError as exc:
        logger.warning(
            "Sync failed for account %s (%s): %s",
            account.id, mask_email(account.email), exc,
        )
        _record_failure(db, account, str(exc))
        raise

    synced_at = utcnow()
    account.last_sync_at = synced_at
    account.sync_error = None
    db.commit()

    total_saved = results["received"] + results["sent"]
    logger.info(
        "Synced account %s: received=%d sent=%d errors=%d",
        account.id, results["received"], results["sent"], results["errors"],
    )
    return {"results": results, "total_saved": total_saved, "synced_at": synced_at}


# =============================================================================
# Scheduling
# =============================================================================

def schedule_sync(
    db: Session,
    account: EmailAccount,
    folders: list[str] | None = None,
    max_emails: int | None = None,
):
    return job_service.schedule_job(
        db,
        org_id=account.organization_id,
        job_type=JobType.EMAIL_SYNC,
        payload={
            "account_id": str(account.id),
            "folders": folders or DEFAULT_FOLDERS,
            "max_per_folder": max_emails,
        },
    )


def schedule_all_active(db: Session, now: datetime | None = None) -> int:
    """Queue one sync per active, set-up account. Deduplicated per hour."""
    now = now or utcnow()
    accounts = (
        db.query(EmailAccount)
        .filter(EmailAccount.is_active.is_(True), EmailAccount.setup_completed.is_(True))
        .all()
    )
    bucket = now.strftime("%Y%m%d%H")
    for account in accounts:
        job_service.schedule_job(
            db,
            org_id=account.organization_id,
            job_type=JobType.EMAIL_SYNC,
            payload={"account_id": str(account.id), "folders": DEFAULT_FOLDERS},
            idempotency_key=f"email_sync:cron:{account.id}:{bucket}",
        )
    return len(accounts)
