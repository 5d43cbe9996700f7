"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""
from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel

from aris.core.config import settings
from aris.db.enums import JobType
from aris.db.models import FollowupAutomationRule
from aris.db.session import SessionLocal
from aris.db.types import utcnow
from aris.services import email_sync_service, followup_service, job_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class EmailSyncScheduleResponse(BaseModel):
    accounts_scheduled: int


class ReminderSweepResponse(BaseModel):
    delivered: int
    cancelled: int


class AutomationScheduleResponse(BaseModel):
    orgs_processed: int
    jobs_created: int


@router.post("/email-sync", response_model=EmailSyncScheduleResponse)
def email_sync_schedule(x_internal_secret: str = Header(...)):
    """Queue one sync job per active mailbox. Repeat calls within an hour are no-ops."""
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        scheduled = email_sync_service.schedule_all_active(db)

    return EmailSyncScheduleResponse(accounts_scheduled=scheduled)


@router.post("/followup-reminders", response_model=ReminderSweepResponse)
def followup_reminders_sweep(x_internal_secret: str = Header(...)):
    """Turn due follow-up reminders into notifications."""
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        result = followup_service.deliver_due_reminders(db)

    return ReminderSweepResponse(**result)


@router.post("/followup-automation", response_model=AutomationScheduleResponse)
def followup_automation_schedule(x_internal_secret: str = Header(...)):
    """Schedule an automation sweep job for every org with an active rule."""
    verify_internal_secret(x_internal_secret)

    bucket = utcnow().strftime("%Y%m%d%H")
    jobs_created = 0

    with SessionLocal() as db:
        org_ids = [
            row.organization_id
            for row in db.query(FollowupAutomationRule.organization_id)
            .filter(FollowupAutomationRule.is_active.is_(True))
            .distinct()
            .all()
        ]
        for org_id in org_ids:
            job_service.schedule_job(
                db=db,
                org_id=org_id,
                job_type=JobType.FOLLOWUP_AUTOMATION,
                payload={"org_id": str(org_id)},
                idempotency_key=f"followup_automation:cron:{org_id}:{bucket}",
            )
            jobs_created += 1

    return AutomationScheduleResponse(orgs_processed=len(org_ids), jobs_created=jobs_created)
