"""Tests for contacts CRUD and search."""
import uuid

import pytest
from httpx import AsyncClient

from aris.db.models import Contact
from conftest import make_org


@pytest.mark.asyncio
async def test_create_contact(authed_client: AsyncClient):
    response = await authed_client.post(
        "/api/contacts",
        json={"first_name": "Ana", "last_name": "Novak", "email": "Ana@Acme.com", "company": "Acme"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["first_name"] == "Ana"
    assert data["email"] == "ana@acme.com"


@pytest.mark.asyncio
async def test_duplicate_email_conflicts(authed_client: AsyncClient):
    payload = {"first_name": "Ana", "email": "ana@acme.com"}
    assert (await authed_client.post("/api/contacts", json=payload)).status_code == 201

    response = await authed_client.post(
        "/api/contacts", json={"first_name": "Other", "email": "ANA@acme.com"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_same_email_allowed_in_other_org(authed_client: AsyncClient, db):
    other = make_org(db, "Other Org")
    db.add(Contact(organization_id=other.id, first_name="Ana", email="ana@acme.com"))
    db.commit()

    response = await authed_client.post("/api/contacts", json={"first_name": "Ana", "email": "ana@acme.com"})
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_search_matches_name_email_and_company(authed_client: AsyncClient):
    await authed_client.post("/api/contacts", json={"first_name": "Ana", "company": "Globex"})
    await authed_client.post("/api/contacts", json={"first_name": "Bor", "email": "bor@initech.com"})
    await authed_client.post("/api/contacts", json={"first_name": "Cene"})

    response = await authed_client.get("/api/contacts", params={"q": "GLOBEX"})
    assert [c["first_name"] for c in response.json()["items"]] == ["Ana"]

    response = await authed_client.get("/api/contacts", params={"q": "initech"})
    assert [c["first_name"] for c in response.json()["items"]] == ["Bor"]

    response = await authed_client.get("/api/contacts")
    assert response.json()["total"] == 3


@pytest.mark.asyncio
async def test_pagination(authed_client: AsyncClient):
    for i in range(5):
        await authed_client.post("/api/contacts", json={"first_name": f"C{i}"})

    response = await authed_client.get("/api/contacts", params={"limit": 2, "offset": 2})
    data = response.json()
    assert data["total"] == 5
    assert len(data["items"]) == 2


@pytest.mark.asyncio
async def test_notes_are_sanitized(authed_client: AsyncClient):
    response = await authed_client.post(
        "/api/contacts",
        json={"first_name": "Ana", "notes": "<p>Hi</p><script>alert(1)</script>"},
    )
    notes = response.json()["notes"]
    assert "<p>Hi</p>" in notes
    assert "script" not in notes


@pytest.mark.asyncio
async def test_update_and_delete_contact(authed_client: AsyncClient):
    created = (await authed_client.post("/api/contacts", json={"first_name": "Ana"})).json()

    response = await authed_client.patch(f"/api/contacts/{created['id']}", json={"company": "Acme"})
    assert response.status_code == 200
    assert response.json()["company"] == "Acme"
    assert response.json()["first_name"] == "Ana"

    response = await authed_client.delete(f"/api/contacts/{created['id']}")
    assert response.status_code == 204

    response = await authed_client.get(f"/api/contacts/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_email_to_taken_email_conflicts(authed_client: AsyncClient):
    await authed_client.post("/api/contacts", json={"first_name": "Ana", "email": "ana@acme.com"})
    bor = (await authed_client.post("/api/contacts", json={"first_name": "Bor", "email": "bor@acme.com"})).json()

    response = await authed_client.patch(f"/api/contacts/{bor['id']}", json={"email": "ana@acme.com"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_foreign_contact_is_not_found(authed_client: AsyncClient, db):
    other = make_org(db, "Other Org")
    contact = Contact(organization_id=other.id, first_name="Hidden")
    db.add(contact)
    db.commit()

    assert (await authed_client.get(f"/api/contacts/{contact.id}")).status_code == 404
    assert (await authed_client.delete(f"/api/contacts/{contact.id}")).status_code == 404
    assert (await authed_client.get(f"/api/contacts/{uuid.uuid4()}")).status_code == 404
