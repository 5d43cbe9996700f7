"""Tests for follow-up tracking, reminders, drafts and automation."""
import json
from datetime import timedelta, timezone

import httpx
import pytest
from httpx import AsyncClient

from aris.db.enums import ExecutionStatus, FollowupStatus, ReminderStatus
from aris.db.models import EmailFollowup, FollowupReminder, Notification
from aris.db.types import utcnow
from aris.schemas.followup import AutomationRuleCreate, FollowupCreate
from aris.services import ai_service, email_account_service, followup_automation_service, followup_service
from aris.services.mail_clients import GmailMailClient, MailSendNotSupportedError
from conftest import FakeProvider

DRAFT_REPLY = json.dumps({
    "subject": "Following up on our offer",
    "body": "Hi Jane, just checking in on the offer.",
    "confidence": 0.8,
})


def _create(db, auth, days_ago: int = 5, recipients=("jane@buyer.com",), **kwargs) -> EmailFollowup:
    data = FollowupCreate(
        original_sent_at=utcnow() - timedelta(days=days_ago),
        follow_up_days=3,
        original_subject="Our offer",
        original_recipients=list(recipients),
        **kwargs,
    )
    return followup_service.create_followup(db, auth.org.id, auth.user.id, data)


@pytest.mark.asyncio
async def test_create_computes_due_date_and_reminder(authed_client: AsyncClient, db):
    sent_at = utcnow() - timedelta(days=1)
    response = await authed_client.post(
        "/api/email/followups",
        json={
            "original_sent_at": sent_at.isoformat(),
            "follow_up_days": 4,
            "original_subject": "Quote",
            "original_recipients": ["Jane@Buyer.com"],
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["original_recipients"] == ["jane@buyer.com"]

    reminder = db.query(FollowupReminder).one()
    assert reminder.status == ReminderStatus.PENDING.value
    assert reminder.scheduled_for == (sent_at + timedelta(days=4))


@pytest.mark.asyncio
async def test_closed_followup_cannot_transition(authed_client: AsyncClient, db, test_auth):
    followup = _create(db, test_auth)

    response = await authed_client.post(f"/api/email/followups/{followup.id}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    response = await authed_client.post(f"/api/email/followups/{followup.id}/complete")
    assert response.status_code == 409

    reminder = db.query(FollowupReminder).one()
    assert reminder.status == ReminderStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_snooze_must_be_in_future(authed_client: AsyncClient, db, test_auth):
    followup = _create(db, test_auth)
    past = (utcnow() - timedelta(hours=1)).isoformat()
    response = await authed_client.post(f"/api/email/followups/{followup.id}/snooze", json={"until": past})
    assert response.status_code == 400

    future = utcnow() + timedelta(days=2)
    response = await authed_client.post(
        f"/api/email/followups/{followup.id}/snooze", json={"until": future.isoformat()}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "snoozed"
    statuses = sorted(r.status for r in db.query(FollowupReminder).all())
    assert statuses == ["cancelled", "pending"]


@pytest.mark.asyncio
async def test_snooze_accepts_naive_timestamp_as_utc(authed_client: AsyncClient, db, test_auth):
    followup = _create(db, test_auth)
    until = (utcnow() + timedelta(days=2)).replace(tzinfo=None, microsecond=0)

    response = await authed_client.post(
        f"/api/email/followups/{followup.id}/snooze", json={"until": until.isoformat()}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "snoozed"
    db.refresh(followup)
    assert followup.follow_up_due_at == until.replace(tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_bulk_snooze_with_naive_timestamp(authed_client: AsyncClient, db, test_auth):
    followup = _create(db, test_auth)
    until = (utcnow() + timedelta(days=2)).replace(tzinfo=None)

    response = await authed_client.post(
        "/api/email/followups/bulk",
        json={"ids": [str(followup.id)], "action": "snooze", "until": until.isoformat()},
    )
    assert response.status_code == 200
    assert response.json()[0]["success"] is True
    assert response.json()[0]["status"] == "snoozed"


@pytest.mark.asyncio
async def test_naive_sent_at_is_read_as_utc(authed_client: AsyncClient):
    sent_at = (utcnow() - timedelta(days=1)).replace(tzinfo=None)
    response = await authed_client.post(
        "/api/email/followups/track-sent",
        json={"subject": "Pricing", "recipients": ["jane@buyer.com"], "sent_at": sent_at.isoformat()},
    )
    assert response.status_code == 200
    assert response.json()["tracked"] is True

    response = await authed_client.post(
        "/api/email/followups",
        json={"original_sent_at": sent_at.isoformat(), "follow_up_days": 2, "original_subject": "Quote"},
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_bulk_reports_each_outcome(authed_client: AsyncClient, db, test_auth):
    open_one = _create(db, test_auth)
    closed = _create(db, test_auth)
    followup_service.complete(db, closed)

    unknown = "00000000-0000-0000-0000-000000000000"
    response = await authed_client.post(
        "/api/email/followups/bulk",
        json={"ids": [str(open_one.id), str(closed.id), unknown], "action": "sent"},
    )
    outcomes = {o["id"]: o for o in response.json()}
    assert outcomes[str(open_one.id)]["success"] is True
    assert outcomes[str(open_one.id)]["status"] == "sent"
    assert outcomes[str(closed.id)]["success"] is False
    assert outcomes[unknown]["error"] == "Follow-up not found"


@pytest.mark.asyncio
async def test_followups_are_private_to_their_user(member_client: AsyncClient, db, test_auth):
    followup = _create(db, test_auth)
    response = await member_client.get(f"/api/email/followups/{followup.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_track_sent_ignores_replies(authed_client: AsyncClient):
    payload = {"subject": "RE: pricing", "recipients": ["jane@buyer.com"], "sent_at": utcnow().isoformat()}
    response = await authed_client.post("/api/email/followups/track-sent", json=payload)
    assert response.json() == {"tracked": False, "followup": None}

    payload["subject"] = "Pricing"
    response = await authed_client.post("/api/email/followups/track-sent", json=payload)
    assert response.json()["tracked"] is True
    assert response.json()["followup"]["follow_up_type"] == "auto"


def test_stats_count_due_and_overdue(db, test_auth):
    _create(db, test_auth, days_ago=3)  # due today
    _create(db, test_auth, days_ago=10)  # overdue
    _create(db, test_auth, days_ago=0)  # not yet due
    _create(db, test_auth, recipients=("bob@other.com",))
    followup_service.record_response(db, test_auth.org.id, test_auth.user.id, "bob@other.com", utcnow())
    db.commit()

    stats = followup_service.get_stats(db, test_auth.org.id, test_auth.user.id)
    assert stats == {
        "total": 4,
        "pending": 3,
        "due": 1,
        "overdue": 1,
        "completed": 1,
        "response_rate": 25.0,
    }


def test_record_response_only_matches_original_recipients(db, test_auth):
    followup = _create(db, test_auth, recipients=("jane@buyer.com",))
    closed = followup_service.record_response(db, test_auth.org.id, test_auth.user.id, "bob@other.com", utcnow())
    assert closed == 0
    closed = followup_service.record_response(db, test_auth.org.id, test_auth.user.id, "JANE@buyer.com", utcnow())
    db.commit()
    assert closed == 1
    assert followup.status == FollowupStatus.COMPLETED.value


def test_reminder_sweep_notifies_open_and_cancels_closed(db, test_auth):
    due = _create(db, test_auth, days_ago=5)
    closed = _create(db, test_auth, days_ago=5)
    closed.status = FollowupStatus.COMPLETED.value
    db.commit()
    _create(db, test_auth, days_ago=0)

    result = followup_service.deliver_due_reminders(db)
    assert result == {"delivered": 1, "cancelled": 1}

    notification = db.query(Notification).one()
    assert notification.entity_id == due.id
    assert notification.notification_type == "followup_due"
    db.refresh(due)
    assert due.reminder_count == 1

    assert followup_service.deliver_due_reminders(db) == {"delivered": 0, "cancelled": 0}


@pytest.mark.asyncio
async def test_draft_endpoint_stores_draft(authed_client: AsyncClient, db, test_auth, monkeypatch):
    provider = FakeProvider(DRAFT_REPLY)
    monkeypatch.setattr(ai_service, "resolve_provider", lambda db, org_id: provider)
    followup = _create(db, test_auth)

    response = await authed_client.post(f"/api/email/followups/{followup.id}/draft", json={"tone": "friendly"})
    assert response.status_code == 200
    assert response.json()["subject"] == "Following up on our offer"

    db.refresh(followup)
    assert followup.ai_draft_content == "Hi Jane, just checking in on the offer."
    assert "friendly" in provider.calls[0][0].content


@pytest.mark.asyncio
async def test_draft_endpoint_when_ai_disabled(authed_client: AsyncClient, db, test_auth):
    await authed_client.patch("/api/ai/settings", json={"is_enabled": False})
    followup = _create(db, test_auth)
    response = await authed_client.post(f"/api/email/followups/{followup.id}/draft", json={})
    assert response.status_code == 403


# =============================================================================
# Automation
# =============================================================================

def _rule(db, auth, **kwargs):
    data = AutomationRuleCreate(name="Nudge", **kwargs)
    return followup_automation_service.create_rule(db, auth.org.id, auth.user.id, data)


@pytest.mark.asyncio
async def test_member_cannot_create_rules(member_client: AsyncClient):
    response = await member_client.post("/api/email/followups/automation/rules", json={"name": "Nudge"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_sweep_drafts_for_approval_once(db, test_auth, email_account, fake_client):
    _rule(db, test_auth)
    followup = _create(db, test_auth, days_ago=5)
    _create(db, test_auth, days_ago=0)

    counts = await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    assert counts["processed"] == 1
    assert counts["awaiting_approval"] == 1
    assert fake_client.sent == []

    counts = await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    assert counts["processed"] == 0

    execution = followup_automation_service.list_executions(db, test_auth.org.id)[0]
    assert execution.followup_id == followup.id
    assert execution.draft_subject == "Following up on our offer"


@pytest.mark.asyncio
async def test_approve_sends_and_marks_followup_sent(
    authed_client: AsyncClient, db, test_auth, email_account, fake_client
):
    _rule(db, test_auth)
    followup = _create(db, test_auth, days_ago=5)
    await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    execution = followup_automation_service.list_executions(db, test_auth.org.id)[0]

    response = await authed_client.post(f"/api/email/followups/automation/executions/{execution.id}/approve")
    assert response.status_code == 200
    assert response.json()["status"] == "sent"
    assert fake_client.sent == [(["jane@buyer.com"], "Following up on our offer", "Hi Jane, just checking in on the offer.")]

    db.refresh(followup)
    assert followup.status == FollowupStatus.SENT.value

    response = await authed_client.post(f"/api/email/followups/automation/executions/{execution.id}/reject")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_auto_send_rule_skips_imap_mailboxes(db, test_auth, email_account, fake_client):
    fake_client.error = MailSendNotSupportedError()
    _rule(db, test_auth, auto_send=True, require_approval=False)
    _create(db, test_auth, days_ago=5)

    counts = await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    assert counts["skipped"] == 1


@pytest.mark.asyncio
async def test_rule_conditions_filter_priority(db, test_auth, email_account, fake_client):
    _rule(db, test_auth, conditions={"priorities": ["high"]})
    _create(db, test_auth, days_ago=5)

    counts = await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    assert counts["processed"] == 0


@pytest.mark.asyncio
async def test_unusable_draft_fails_execution(db, test_auth):
    _rule(db, test_auth)
    _create(db, test_auth, days_ago=5)

    counts = await followup_automation_service.run_sweep(db, provider=FakeProvider("no json here"))
    assert counts["failed"] == 1
    execution = followup_automation_service.list_executions(db, test_auth.org.id)[0]
    assert execution.status == ExecutionStatus.FAILED.value


@pytest.mark.asyncio
async def test_unreachable_mailbox_fails_approved_send(
    authed_client: AsyncClient, db, test_auth, email_account, fake_client, monkeypatch
):
    _rule(db, test_auth)
    followup = _create(db, test_auth, days_ago=5)
    await followup_automation_service.run_sweep(db, provider=FakeProvider(DRAFT_REPLY))
    execution = followup_automation_service.list_executions(db, test_auth.org.id)[0]

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def build(db, account):
        return GmailMailClient("token", transport=httpx.MockTransport(refuse))

    monkeypatch.setattr("aris.services.http_service.backoff_delay", lambda *args: 0)
    monkeypatch.setattr(email_account_service, "build_mail_client", build)

    response = await authed_client.post(f"/api/email/followups/automation/executions/{execution.id}/approve")
    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert "unreachable" in response.json()["error_message"]

    db.refresh(followup)
    assert followup.status == FollowupStatus.PENDING.value
