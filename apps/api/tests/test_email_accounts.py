"""Tests for connected mailboxes and the OAuth connect flow."""
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient

from aris.core.config import settings
from aris.core.encryption import decrypt_secret
from aris.core.security import create_oauth_state
from aris.db.enums import JobType
from aris.db.models import EmailAccount, Job
from aris.services import oauth_service
from aris.services.mail_clients import MailProviderAuthError
from conftest import make_user

IMAP_ACCOUNT = {
    "email": "Sales@Acme.com",
    "imap_host": " imap.acme.com ",
    "password": "hunter2",
}


@pytest.mark.asyncio
async def test_create_imap_account(authed_client: AsyncClient, db):
    response = await authed_client.post("/api/email-accounts", json=IMAP_ACCOUNT)
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "sales@acme.com"
    assert data["imap_host"] == "imap.acme.com"
    assert data["username"] == "sales@acme.com"
    assert data["setup_completed"] is False
    assert "password" not in data

    account = db.query(EmailAccount).one()
    assert account.password_encrypted != "hunter2"
    assert decrypt_secret(account.password_encrypted) == "hunter2"


@pytest.mark.asyncio
async def test_duplicate_mailbox_conflicts(authed_client: AsyncClient):
    await authed_client.post("/api/email-accounts", json=IMAP_ACCOUNT)
    response = await authed_client.post("/api/email-accounts", json=IMAP_ACCOUNT)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_accounts_are_private_to_their_owner(member_client: AsyncClient, email_account):
    assert (await member_client.get("/api/email-accounts")).json() == []
    response = await member_client.get(f"/api/email-accounts/{email_account.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_and_delete(authed_client: AsyncClient, email_account):
    response = await authed_client.patch(
        f"/api/email-accounts/{email_account.id}",
        json={"imap_port": 143, "imap_security": "starttls", "is_active": False},
    )
    assert response.json()["imap_port"] == 143
    assert response.json()["imap_security"] == "starttls"
    assert response.json()["is_active"] is False

    response = await authed_client.delete(f"/api/email-accounts/{email_account.id}")
    assert response.status_code == 204
    assert (await authed_client.get("/api/email-accounts")).json() == []


@pytest.mark.asyncio
async def test_setup_queues_initial_sync_once(authed_client: AsyncClient, db, email_account):
    body = {"inbox_count": 200, "sent_count": 50}
    response = await authed_client.post(f"/api/email-accounts/{email_account.id}/setup", json=body)
    assert response.status_code == 200
    assert response.json()["initial_sync_inbox"] == 200

    await authed_client.post(f"/api/email-accounts/{email_account.id}/setup", json=body)
    job = db.query(Job).filter(Job.job_type == JobType.EMAIL_SYNC.value).one()
    assert job.payload["max_per_folder"] == {"inbox": 200, "sent": 50}


@pytest.mark.asyncio
async def test_connection_test(authed_client: AsyncClient, email_account, fake_client):
    response = await authed_client.post(f"/api/email-accounts/{email_account.id}/test")
    assert response.json() == {"success": True, "message": "Connected to sales@acme.com"}


@pytest.mark.asyncio
async def test_connection_test_reports_failure(authed_client: AsyncClient, email_account, fake_client, monkeypatch):
    async def refuse():
        raise MailProviderAuthError()

    monkeypatch.setattr(fake_client, "test_connection", refuse)
    response = await authed_client.post(f"/api/email-accounts/{email_account.id}/test")
    assert response.status_code == 200
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_oauth_start(authed_client: AsyncClient, monkeypatch):
    response = await authed_client.get("/api/email-accounts/oauth/google/start")
    assert response.status_code == 400

    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "google-client")
    response = await authed_client.get("/api/email-accounts/oauth/google/start")
    url = urlparse(response.json()["authorization_url"])
    params = parse_qs(url.query)
    assert url.netloc == "accounts.google.com"
    assert params["client_id"] == ["google-client"]
    assert params["access_type"] == ["offline"]
    assert params["state"][0]

    response = await authed_client.get("/api/email-accounts/oauth/imap/start")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_oauth_callback_connects_mailbox(authed_client: AsyncClient, db, test_auth, monkeypatch):
    async def exchange_code(provider, code):
        assert code == "auth-code"
        return {"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600}

    async def fetch_identity(provider, access_token):
        return "jane@outlook.com", "Jane"

    monkeypatch.setattr(oauth_service, "exchange_code", exchange_code)
    monkeypatch.setattr(oauth_service, "fetch_mailbox_identity", fetch_identity)
    state = create_oauth_state(test_auth.user.id, "microsoft")

    response = await authed_client.get(
        "/api/email-accounts/oauth/microsoft/callback", params={"code": "auth-code", "state": state}
    )

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(f"{settings.FRONTEND_URL}/settings/email?")
    assert "connected=microsoft" in location
    account = db.query(EmailAccount).one()
    assert account.provider_type == "microsoft"
    assert account.display_name == "Jane"
    assert decrypt_secret(account.refresh_token_encrypted) == "refresh-1"
    assert account.token_expires_at is not None


@pytest.mark.asyncio
async def test_oauth_callback_rejects_foreign_state(authed_client: AsyncClient, db, test_org):
    other = make_user(db, test_org)
    state = create_oauth_state(other.id, "google")

    response = await authed_client.get(
        "/api/email-accounts/oauth/google/callback", params={"code": "x", "state": state}
    )
    assert "error=invalid_state" in response.headers["location"]

    response = await authed_client.get(
        "/api/email-accounts/oauth/google/callback", params={"error": "access_denied"}
    )
    assert "error=access_denied" in response.headers["location"]
    assert db.query(EmailAccount).count() == 0
