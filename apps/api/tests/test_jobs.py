"""Tests for the job queue, handler registry and worker loop."""
import json
from datetime import timedelta

import pytest

from aris import worker
from aris.db.enums import EmailType, JobStatus, JobType
from aris.db.models import EmailIndex, Job
from aris.db.types import utcnow
from aris.jobs import registry
from aris.jobs.registry import JOB_HANDLERS, resolve_job_handler
from aris.services import ai_service, email_sync_service, job_service
from aris.services.ai_provider import AIProviderError
from aris.services.mail_clients import FOLDER_INBOX, NormalizedMessage
from conftest import FakeProvider, make_org


def test_every_job_type_has_a_handler():
    assert set(JOB_HANDLERS) == {job_type.value for job_type in JobType}


def test_unknown_job_type_raises():
    with pytest.raises(ValueError, match="Unknown job type"):
        resolve_job_handler("fax_blast")


def test_schedule_job_is_idempotent(db, test_org):
    first = job_service.schedule_job(
        db, test_org.id, JobType.METAKOCKA_SYNC, {}, idempotency_key="metakocka:1"
    )
    second = job_service.schedule_job(
        db, test_org.id, JobType.METAKOCKA_SYNC, {}, idempotency_key="metakocka:1"
    )
    assert first.id == second.id
    assert db.query(Job).count() == 1


def test_pending_jobs_are_due_and_oldest_first(db, test_org):
    now = utcnow()
    later = job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {}, run_at=now - timedelta(minutes=1))
    earlier = job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {}, run_at=now - timedelta(minutes=5))
    job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {}, run_at=now + timedelta(hours=1))

    assert [job.id for job in job_service.get_pending_jobs(db)] == [earlier.id, later.id]


def test_failed_job_retries_until_max_attempts(db, test_org):
    job = job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {})
    for _ in range(job.max_attempts - 1):
        job_service.mark_job_running(db, job)
        job_service.mark_job_failed(db, job, "boom")
        assert job.status == JobStatus.PENDING.value

    job_service.mark_job_running(db, job)
    job_service.mark_job_failed(db, job, "boom")
    assert job.status == JobStatus.FAILED.value
    assert job.last_error == "boom"


def test_list_jobs_filters(db, test_org):
    job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {})
    job_service.schedule_job(db, test_org.id, JobType.METAKOCKA_SYNC, {})
    jobs = job_service.list_jobs(db, test_org.id, job_type=JobType.METAKOCKA_SYNC)
    assert [job.job_type for job in jobs] == ["metakocka_sync"]


@pytest.mark.asyncio
async def test_worker_runs_and_completes_jobs(db, test_org):
    job = job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {})

    assert await worker.run_pending_jobs(db) == 1

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_worker_records_handler_failure(db, test_org, monkeypatch):
    async def explode(db, job):
        raise RuntimeError("handler exploded")

    monkeypatch.setitem(registry.JOB_HANDLERS, JobType.METAKOCKA_SYNC.value, explode)
    job = job_service.schedule_job(db, test_org.id, JobType.METAKOCKA_SYNC, {})

    await worker.run_pending_jobs(db)

    db.refresh(job)
    assert job.status == JobStatus.PENDING.value
    assert job.last_error == "handler exploded"


@pytest.mark.asyncio
async def test_unknown_job_type_fails_job(db, test_org):
    job = Job(organization_id=test_org.id, job_type="fax_blast", payload={}, max_attempts=1)
    db.add(job)
    db.commit()

    await worker.run_pending_jobs(db)

    db.refresh(job)
    assert job.status == JobStatus.FAILED.value
    assert "Unknown job type" in job.last_error


@pytest.mark.asyncio
async def test_email_sync_job_syncs_mailbox(db, email_account, fake_client):
    at = utcnow()
    fake_client.folders = {
        FOLDER_INBOX: [
            NormalizedMessage(
                message_id="m1",
                folder=FOLDER_INBOX,
                email_type=EmailType.RECEIVED,
                subject="Need a quote",
                sender_email="jane@buyer.com",
                received_at=at,
                sent_at=at,
            )
        ]
    }
    job = job_service.schedule_job(
        db,
        email_account.organization_id,
        JobType.EMAIL_SYNC,
        {"account_id": str(email_account.id), "folders": ["inbox"]},
    )

    await worker.run_pending_jobs(db, limit=1)

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    db.refresh(email_account)
    assert email_account.last_sync_at is not None


class FlakyProvider(FakeProvider):
    """Fails the first request, then answers normally."""

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000):
        if not self.calls:
            self.calls.append(messages)
            raise AIProviderError("openai API returned HTTP 503")
        return await super().chat(messages, model, temperature, max_tokens)


@pytest.mark.asyncio
async def test_email_analysis_job_continues_past_provider_failure(db, email_account, fake_client, monkeypatch):
    now = utcnow()
    fake_client.folders = {
        FOLDER_INBOX: [
            NormalizedMessage(
                message_id=message_id,
                folder=FOLDER_INBOX,
                email_type=EmailType.RECEIVED,
                subject="Need a quote",
                sender_email="jane@buyer.com",
                received_at=now - timedelta(minutes=minutes_ago),
                sent_at=now - timedelta(minutes=minutes_ago),
            )
            for message_id, minutes_ago in (("newest", 1), ("older", 10))
        ]
    }
    await email_sync_service.sync_account(db, email_account, folders=["inbox"])

    provider = FlakyProvider(json.dumps({"assigned_agent": "sales"}))
    monkeypatch.setattr(ai_service, "resolve_provider", lambda db, org_id: provider)
    job = job_service.schedule_job(
        db, email_account.organization_id, JobType.EMAIL_ANALYSIS, {"account_id": str(email_account.id)}
    )

    await worker.run_pending_jobs(db, limit=1)

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    analyzed = {e.message_id: e.ai_analyzed for e in db.query(EmailIndex).all()}
    assert analyzed == {"newest": False, "older": True}


@pytest.mark.asyncio
async def test_email_sync_job_requires_account(db, test_org):
    job = job_service.schedule_job(db, test_org.id, JobType.EMAIL_SYNC, {})
    await worker.run_pending_jobs(db)
    db.refresh(job)
    assert job.last_error == "Missing account_id in job payload"


@pytest.mark.asyncio
async def test_jobs_router(authed_client, member_client, db, test_org):
    job = job_service.schedule_job(db, test_org.id, JobType.FOLLOWUP_REMINDERS, {})

    response = await member_client.get(f"/api/jobs/{job.id}")
    assert response.status_code == 200
    assert response.json()["status"] == "pending"

    assert (await member_client.get("/api/jobs")).status_code == 403
    jobs = (await authed_client.get("/api/jobs", params={"status": "pending"})).json()
    assert [j["id"] for j in jobs] == [str(job.id)]


@pytest.mark.asyncio
async def test_foreign_job_is_not_found(authed_client, db):
    job = job_service.schedule_job(db, make_org(db, "Other").id, JobType.FOLLOWUP_REMINDERS, {})
    response = await authed_client.get(f"/api/jobs/{job.id}")
    assert response.status_code == 404
