"""Mailbox sync and email analysis job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from aris.db.enums import EmailType, JobType
from aris.db.models import EmailAccount, EmailIndex
from aris.services import ai_service, ai_settings_service, email_index_service, email_sync_service, job_service
from aris.services.ai_provider import AIProviderError

logger = logging.getLogger(__name__)

ANALYSIS_BATCH_SIZE = 25


def _get_account(db, job) -> EmailAccount:
    account_id = (job.payload or {}).get("account_id")
    if not account_id:
        raise ValueError("Missing account_id in job payload")
    account = (
        db.query(EmailAccount)
        .filter(
            EmailAccount.id == UUID(account_id),
            EmailAccount.organization_id == job.organization_id,
        )
        .first()
    )
    if not account:
        raise ValueError(f"Email account {account_id} not found")
    return account


async def process_email_sync(db, job) -> None:
    """Sync one mailbox, then queue analysis of the new mail when AI is on."""
    payload = job.payload or {}
    account = _get_account(db, job)
    if not account.is_active:
        logger.info("Skipping sync for inactive account %s", account.id)
        return

    result = await email_sync_service.sync_account(
        db,
        account,
        folders=payload.get("folders"),
        max_per_folder=payload.get("max_per_folder"),
    )
    logger.info("Email sync job %s saved %s messages", job.id, result["total_saved"])

    if result["results"]["received"] and ai_settings_service.is_ai_enabled(db, account.organization_id):
        job_service.schedule_job(
            db,
            org_id=account.organization_id,
            job_type=JobType.EMAIL_ANALYSIS,
            payload={"account_id": str(account.id)},
        )


async def process_email_analysis(db, job) -> None:
    """Analyse a batch of unanalysed received mail of one mailbox, newest first."""
    account = _get_account(db, job)
    emails = (
        db.query(EmailIndex)
        .filter(
            EmailIndex.email_account_id == account.id,
            EmailIndex.ai_analyzed.is_(False),
            EmailIndex.email_type == EmailType.RECEIVED.value,
        )
        .order_by(EmailIndex.received_at.desc())
        .limit(ANALYSIS_BATCH_SIZE)
        .all()
    )

    analyzed = failed = 0
    for email in emails:
        try:
            await email_index_service.analyze_email(db, account.organization_id, account.user_id, email)
        except ai_service.AIInvalidResponseError:
            failed += 1
            logger.warning("Analysis reply unusable for email %s", email.id)
            continue
        except AIProviderError as exc:
            # Left unanalysed so the next batch picks it up again
            failed += 1
            logger.warning("Analysis request failed for email %s: %s", email.id, exc)
            continue
        analyzed += 1
    logger.info("Email analysis job %s analyzed=%d failed=%d", job.id, analyzed, failed)
