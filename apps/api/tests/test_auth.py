"""Tests for Authentication."""
import jwt
import pytest
from httpx import AsyncClient

from aris.core.security import create_oauth_state, verify_oauth_state
from aris.db.enums import Role
from conftest import make_org, make_user, token_for


@pytest.mark.asyncio
async def test_protected_endpoint_requires_session(client: AsyncClient):
    response = await client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}


@pytest.mark.asyncio
async def test_contacts_requires_session(client: AsyncClient):
    response = await client.get("/api/contacts")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client: AsyncClient):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid session"


@pytest.mark.asyncio
async def test_authed_me_returns_user(authed_client: AsyncClient, test_auth):
    response = await authed_client.get("/api/auth/me")
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == test_auth.user.email
    assert data["org_id"] == str(test_auth.org.id)
    assert data["org_slug"] == test_auth.org.slug
    assert data["role"] == "owner"
    assert data["is_platform_admin"] is False


@pytest.mark.asyncio
async def test_bearer_token_authenticates(client: AsyncClient, test_auth):
    response = await client.get(
        "/api/auth/me", headers={"Authorization": f"Bearer {test_auth.token}"}
    )
    assert response.status_code == 200
    assert response.json()["user_id"] == str(test_auth.user.id)


@pytest.mark.asyncio
async def test_user_without_membership_is_forbidden(client: AsyncClient, db):
    from aris.db.models import User

    org = make_org(db)
    user = User(email="orphan@acme.com", display_name="Orphan")
    db.add(user)
    db.commit()
    token = token_for(user, org)

    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_logout_revokes_existing_tokens(authed_client: AsyncClient, client: AsyncClient, test_auth):
    response = await authed_client.post("/api/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"status": "logged_out"}

    response = await client.get(
        "/api/auth/me", headers={"Authorization": f"Bearer {test_auth.token}"}
    )
    assert response.status_code == 401
    assert response.json()["error"] == "Session revoked"


@pytest.mark.asyncio
async def test_cookie_mutation_requires_csrf_header(client: AsyncClient, test_auth):
    response = await client.post(
        "/api/auth/logout", cookies={test_auth.cookie_name: test_auth.token}
    )
    assert response.status_code == 403
    assert "CSRF" in response.json()["error"]


@pytest.mark.asyncio
async def test_bearer_mutation_skips_csrf_header(client: AsyncClient, test_auth):
    response = await client.post(
        "/api/auth/logout", headers={"Authorization": f"Bearer {test_auth.token}"}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_member_cannot_use_admin_only_endpoint(member_client: AsyncClient):
    response = await member_client.patch("/api/ai/settings", json={"is_enabled": True})
    assert response.status_code == 403


def test_oauth_state_round_trip(test_user):
    state = create_oauth_state(test_user.id, "microsoft")
    assert verify_oauth_state(state, "microsoft") == test_user.id


def test_oauth_state_rejects_other_provider(test_user):
    state = create_oauth_state(test_user.id, "microsoft")
    with pytest.raises(jwt.InvalidTokenError):
        verify_oauth_state(state, "google")


def test_session_token_is_not_an_oauth_state(db, test_org):
    user = make_user(db, test_org, Role.MEMBER)
    with pytest.raises(jwt.InvalidTokenError):
        verify_oauth_state(token_for(user, test_org, Role.MEMBER), "google")
