"""Tests for the cron-facing internal endpoints."""
from datetime import timedelta

import pytest
from httpx import AsyncClient

from aris.db.enums import JobType, ReminderStatus
from aris.db.models import FollowupAutomationRule, FollowupReminder, Job, Notification
from aris.db.types import utcnow
from aris.schemas.followup import FollowupCreate
from aris.services import followup_service

HEADERS = {"X-Internal-Secret": "test-internal-secret"}


@pytest.mark.asyncio
async def test_missing_or_wrong_secret(client: AsyncClient):
    response = await client.post("/internal/scheduled/email-sync")
    assert response.status_code == 422

    response = await client.post("/internal/scheduled/email-sync", headers={"X-Internal-Secret": "nope"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_email_sync_schedule(client: AsyncClient, db, email_account):
    response = await client.post("/internal/scheduled/email-sync", headers=HEADERS)
    assert response.json() == {"accounts_scheduled": 1}

    await client.post("/internal/scheduled/email-sync", headers=HEADERS)
    jobs = db.query(Job).filter(Job.job_type == JobType.EMAIL_SYNC.value).all()
    assert len(jobs) == 1
    assert jobs[0].payload["account_id"] == str(email_account.id)


@pytest.mark.asyncio
async def test_followup_reminder_sweep(client: AsyncClient, db, test_auth):
    followup_service.create_followup(
        db,
        test_auth.org.id,
        test_auth.user.id,
        FollowupCreate(
            original_sent_at=utcnow() - timedelta(days=5),
            follow_up_days=3,
            original_subject="Our offer",
            original_recipients=["jane@buyer.com"],
        ),
    )

    response = await client.post("/internal/scheduled/followup-reminders", headers=HEADERS)
    assert response.json() == {"delivered": 1, "cancelled": 0}

    db.expire_all()
    assert db.query(FollowupReminder).one().status == ReminderStatus.SENT.value
    assert db.query(Notification).one().notification_type == "followup_due"


@pytest.mark.asyncio
async def test_followup_automation_schedule_is_idempotent(client: AsyncClient, db, test_auth):
    db.add(FollowupAutomationRule(
        organization_id=test_auth.org.id,
        created_by_user_id=test_auth.user.id,
        name="Nudge",
    ))
    db.commit()

    response = await client.post("/internal/scheduled/followup-automation", headers=HEADERS)
    assert response.json() == {"orgs_processed": 1, "jobs_created": 1}
    await client.post("/internal/scheduled/followup-automation", headers=HEADERS)

    jobs = db.query(Job).filter(Job.job_type == JobType.FOLLOWUP_AUTOMATION.value).all()
    assert len(jobs) == 1
    assert jobs[0].idempotency_key.startswith(f"followup_automation:cron:{test_auth.org.id}:")
