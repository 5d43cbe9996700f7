"""Tests for suppliers, price lists, documents and the sourcing assistant."""
import json

import pytest
from httpx import AsyncClient

from aris.db.enums import SupplierDocumentStatus
from aris.schemas.supplier import DocumentCreate, PricingCreate, SupplierCreate
from aris.services import ai_service, supplier_service
from conftest import FakeProvider, make_org


async def _supplier(client: AsyncClient, name: str = "Nordic Pallets", **extra) -> dict:
    response = await client.post("/api/suppliers", json={"name": name, **extra})
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_supplier_crud(authed_client: AsyncClient):
    supplier = await _supplier(authed_client, email="sales@nordic.example", reliability_score=80)
    assert supplier["reliability_score"] == 80

    response = await authed_client.patch(f"/api/suppliers/{supplier['id']}", json={"country": "Sweden"})
    assert response.json()["country"] == "Sweden"

    response = await authed_client.get("/api/suppliers", params={"q": "nordic"})
    assert [s["name"] for s in response.json()] == ["Nordic Pallets"]

    response = await authed_client.delete(f"/api/suppliers/{supplier['id']}")
    assert response.status_code == 204
    assert (await authed_client.get(f"/api/suppliers/{supplier['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_supplier_notes_are_sanitized(authed_client: AsyncClient):
    supplier = await _supplier(authed_client, notes="<b>Good</b><script>alert(1)</script>")
    assert "<script>" not in supplier["notes"]
    assert "Good" in supplier["notes"]


@pytest.mark.asyncio
async def test_suppliers_are_org_scoped(authed_client: AsyncClient, db):
    other = make_org(db, "Other")
    foreign = supplier_service.create_supplier(
        db, other.id, SupplierCreate(name="Hidden Supplier")
    )
    response = await authed_client.get(f"/api/suppliers/{foreign.id}")
    assert response.status_code == 404
    assert (await authed_client.get("/api/suppliers")).json() == []


@pytest.mark.asyncio
async def test_pricing_and_document_review(authed_client: AsyncClient):
    supplier = await _supplier(authed_client)
    response = await authed_client.post(
        f"/api/suppliers/{supplier['id']}/pricing",
        json={"product_name": "EUR pallet", "price": 9.5, "currency": "eur", "min_quantity": 100},
    )
    assert response.status_code == 201
    assert response.json()["currency"] == "EUR"

    response = await authed_client.post(
        f"/api/suppliers/{supplier['id']}/documents",
        json={"file_name": "catalog.pdf", "document_type": "catalog"},
    )
    document = response.json()
    assert document["status"] == "pending"

    response = await authed_client.post(
        f"/api/suppliers/{supplier['id']}/documents/{document['id']}/review",
        json={"status": "approved", "summary": "2025 catalogue"},
    )
    assert response.json()["status"] == "approved"
    assert response.json()["reviewed_at"] is not None

    response = await authed_client.post(
        f"/api/suppliers/{supplier['id']}/documents/{document['id']}/review", json={"status": "maybe"}
    )
    assert response.status_code == 422


def test_context_includes_pricing_and_approved_documents_only(db, test_org):
    supplier = supplier_service.create_supplier(db, test_org.id, SupplierCreate(name="Acme Steel"))
    supplier_service.add_pricing(
        db, supplier, PricingCreate(product_name="Rebar", price=2.5, currency="usd")
    )
    approved = supplier_service.add_document(
        db, supplier, DocumentCreate(file_name="iso.pdf", document_type="certificate")
    )
    supplier_service.add_document(
        db, supplier, DocumentCreate(file_name="draft.pdf", document_type="catalog")
    )
    supplier_service.review_document(db, approved, SupplierDocumentStatus.APPROVED, user_id=None)
    db.refresh(supplier)

    context = supplier_service.build_context(db, test_org.id)
    assert context[0]["name"] == "Acme Steel"
    assert context[0]["pricing"][0]["product"] == "Rebar"
    assert context[0]["pricing"][0]["price"].endswith(" USD")
    assert [d["file_name"] for d in context[0]["documents"]] == ["iso.pdf"]


@pytest.mark.asyncio
async def test_query_without_ai_falls_back(authed_client: AsyncClient):
    response = await authed_client.post("/api/suppliers/queries", json={"query": "Who sells pallets?"})
    assert response.status_code == 201
    assert response.json()["ai_response"] == supplier_service.FALLBACK_RESPONSE
    assert response.json()["results"] == []


@pytest.mark.asyncio
async def test_query_keeps_only_known_suppliers(authed_client: AsyncClient, monkeypatch):
    supplier = await _supplier(authed_client)
    reply = json.dumps({
        "answer": "Nordic Pallets is your best match.",
        "results": [
            {"supplier_id": supplier["id"], "relevance_score": 0.9, "product_match": "EUR pallet"},
            {"supplier_id": "00000000-0000-0000-0000-000000000000", "relevance_score": 0.99},
            {"supplier_id": "not-a-uuid"},
        ],
    })
    provider = FakeProvider(reply)
    monkeypatch.setattr(ai_service, "resolve_provider", lambda db, org_id: provider)

    response = await authed_client.post("/api/suppliers/queries", json={"query": "Who sells pallets?"})
    data = response.json()
    assert data["ai_response"] == "Nordic Pallets is your best match."
    assert [r["supplier_id"] for r in data["results"]] == [supplier["id"]]


@pytest.mark.asyncio
async def test_plain_text_reply_is_kept(authed_client: AsyncClient, monkeypatch):
    provider = FakeProvider("No supplier matches that request.")
    monkeypatch.setattr(ai_service, "resolve_provider", lambda db, org_id: provider)

    response = await authed_client.post("/api/suppliers/queries", json={"query": "Titanium?"})
    assert response.json()["ai_response"] == "No supplier matches that request."


@pytest.mark.asyncio
async def test_query_history_and_delete(authed_client: AsyncClient, member_client: AsyncClient):
    created = (
        await authed_client.post("/api/suppliers/queries", json={"query": "Steel?", "ai_response": "Ask Acme."})
    ).json()
    assert created["ai_response"] == "Ask Acme."

    response = await authed_client.get("/api/suppliers/queries")
    assert [q["id"] for q in response.json()] == [created["id"]]

    response = await authed_client.get("/api/suppliers/queries", params={"id": created["id"]})
    assert response.json()["query"] == "Steel?"

    response = await member_client.get("/api/suppliers/queries", params={"id": created["id"]})
    assert response.status_code == 404

    response = await authed_client.delete(f"/api/suppliers/queries/{created['id']}")
    assert response.status_code == 204
    assert (await authed_client.get("/api/suppliers/queries")).json() == []
