"""Tests for the Metakocka ERP client, sync service and integration router."""
import json
from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient

from aris.db.enums import Role, SyncStatus
from aris.db.models import (
    Contact,
    MetakockaErrorLog,
    MetakockaProductMapping,
    MetakockaSalesDocumentMapping,
    Product,
    SalesDocument,
)
from aris.schemas.metakocka import CredentialsUpdate
from aris.services import http_service, metakocka_service
from aris.services.metakocka_client import (
    MetakockaClient,
    MetakockaDocumentType,
    MetakockaError,
    MetakockaErrorType,
)
from conftest import make_user, token_for

API_URL = "https://mk.test/rest/eshop/v1/json"


class FakeErp:
    """Mock transport answering per endpoint, recording every request body."""

    def __init__(self, replies: dict | None = None):
        self.replies = replies or {}
        self.calls: list[tuple[str, dict]] = []
        self.next_id = 100

    def __call__(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        self.calls.append((endpoint, body))
        reply = self.replies.get(endpoint)
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            return httpx.Response(200, json=reply(body))
        if reply is not None:
            return httpx.Response(200, json=reply)
        self.next_id += 1
        return httpx.Response(200, json={"opr_code": "0", "mk_id": str(self.next_id)})

    def endpoints(self) -> list[str]:
        return [endpoint for endpoint, _ in self.calls]

    def client(self) -> MetakockaClient:
        return MetakockaClient("1234", "mk-secret-key", API_URL, transport=httpx.MockTransport(self))


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(http_service, "backoff_delay", lambda *args: 0)


@pytest.fixture
def erp() -> FakeErp:
    return FakeErp()


def _product(db, org, name="EUR pallet", sku="PAL-1") -> Product:
    product = Product(organization_id=org.id, name=name, sku=sku, price=Decimal("9.50"))
    db.add(product)
    db.commit()
    return product


def _document(db, org, **kwargs) -> SalesDocument:
    values = {
        "document_type": "invoice",
        "document_number": "INV-1",
        "status": "confirmed",
        "currency": "EUR",
        "items": [{"name": "Crate", "quantity": 2, "unit_price": 10, "discount_percent": 0, "tax_percent": 22}],
        "total_amount": Decimal("24.40"),
        **kwargs,
    }
    document = SalesDocument(organization_id=org.id, **values)
    db.add(document)
    db.commit()
    return document


# =============================================================================
# Client
# =============================================================================

@pytest.mark.asyncio
async def test_request_merges_credentials(erp: FakeErp):
    erp.replies["product_list"] = {"opr_code": "0", "product_list": [{"mk_id": "1", "name": "Pallet"}]}

    products = await erp.client().list_products({"limit": 5})

    assert products == [{"mk_id": "1", "name": "Pallet"}]
    endpoint, body = erp.calls[0]
    assert endpoint == "product_list"
    assert body == {"limit": 5, "secret_key": "mk-secret-key", "company_id": "1234"}


@pytest.mark.asyncio
async def test_non_zero_opr_code_raises(erp: FakeErp):
    erp.replies["product_add"] = {"opr_code": "1", "opr_desc_app": "Wrong secret key"}

    with pytest.raises(MetakockaError) as exc_info:
        await erp.client().add_product({"name": "Pallet"})

    assert exc_info.value.error_type == MetakockaErrorType.AUTHENTICATION
    assert exc_info.value.error_code == "1"
    assert exc_info.value.message == "Wrong secret key"


@pytest.mark.asyncio
async def test_validation_opr_codes(erp: FakeErp):
    erp.replies["partner_add"] = {"opr_code": "104", "opr_desc": "Missing name"}
    with pytest.raises(MetakockaError) as exc_info:
        await erp.client().add_partner({})
    assert exc_info.value.error_type == MetakockaErrorType.VALIDATION


@pytest.mark.asyncio
async def test_http_errors_map_to_error_types(erp: FakeErp):
    erp.replies["get_sales_bill"] = httpx.Response(404)
    with pytest.raises(MetakockaError) as exc_info:
        await erp.client().get_document(MetakockaDocumentType.INVOICE, "7")
    assert exc_info.value.error_type == MetakockaErrorType.NOT_FOUND

    erp.replies["get_sales_bill"] = httpx.Response(503)
    with pytest.raises(MetakockaError) as exc_info:
        await erp.client().get_document(MetakockaDocumentType.INVOICE, "7")
    assert exc_info.value.error_type == MetakockaErrorType.SERVER
    assert erp.endpoints().count("get_sales_bill") == 4


@pytest.mark.asyncio
async def test_network_failure_raises_network_error():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    client = MetakockaClient("1234", "secret", API_URL, transport=httpx.MockTransport(refuse))
    with pytest.raises(MetakockaError) as exc_info:
        await client.test_connection()
    assert exc_info.value.error_type == MetakockaErrorType.NETWORK


@pytest.mark.asyncio
async def test_updates_require_mk_id(erp: FakeErp):
    with pytest.raises(MetakockaError):
        await erp.client().update_product({"name": "Pallet"})
    with pytest.raises(MetakockaError):
        await erp.client().update_document(MetakockaDocumentType.OFFER, {"title": "x"})
    assert erp.calls == []


@pytest.mark.asyncio
async def test_document_calls_carry_doc_type(erp: FakeErp):
    erp.replies["list_sales_offer"] = {"opr_code": "0", "sales_offer_list": [{"mk_id": "9"}]}

    await erp.client().put_document(MetakockaDocumentType.ORDER, {"title": "Order"})
    documents = await erp.client().list_documents(MetakockaDocumentType.OFFER)

    assert erp.calls[0][0] == "put_sales_order"
    assert erp.calls[0][1]["doc_type"] == "sales_order"
    assert documents == [{"mk_id": "9"}]


# =============================================================================
# Credentials
# =============================================================================

def test_credentials_are_encrypted_and_masked(db, test_org):
    credentials = metakocka_service.save_credentials(
        db, test_org.id, CredentialsUpdate(company_id=" 1234 ", secret_key="mk-secret-key")
    )
    assert credentials.company_id == "1234"
    assert credentials.secret_key_encrypted != "mk-secret-key"
    assert metakocka_service.credentials_to_read(credentials)["secret_key_masked"] == "mk-s...-key"

    client = metakocka_service.build_client(db, test_org.id)
    assert client.secret_key == "mk-secret-key"

    metakocka_service.save_credentials(
        db, test_org.id, CredentialsUpdate(company_id="1234", secret_key="other", is_active=False)
    )
    with pytest.raises(metakocka_service.MetakockaNotConfiguredError):
        metakocka_service.build_client(db, test_org.id)


@pytest.mark.asyncio
async def test_failed_connection_test_is_logged(db, test_org):
    erp = FakeErp({"product_list": {"opr_code": "1", "opr_desc": "Bad key"}})

    result = await metakocka_service.test_connection(db, test_org.id, client=erp.client())

    assert result == {"success": False, "error": "Bad key", "error_type": "authentication"}
    log = db.query(MetakockaErrorLog).one()
    assert log.category == metakocka_service.CATEGORY_AUTH
    assert log.error_code == "1"


# =============================================================================
# Products
# =============================================================================

@pytest.mark.asyncio
async def test_product_sync_creates_then_updates(db, test_org, erp: FakeErp):
    product = _product(db, test_org)

    result = await metakocka_service.sync_products(db, test_org.id, client=erp.client())
    assert result == {"created": 1, "updated": 0, "failed": 0, "errors": []}
    mapping = db.query(MetakockaProductMapping).one()
    assert mapping.product_id == product.id
    assert mapping.metakocka_id == "101"
    assert mapping.metakocka_code == "PAL-1"
    assert erp.calls[0][1]["count_code"] == "PAL-1"

    result = await metakocka_service.sync_products(db, test_org.id, client=erp.client())
    assert result["updated"] == 1
    assert erp.calls[-1][0] == "product_update"
    assert erp.calls[-1][1]["mk_id"] == "101"


@pytest.mark.asyncio
async def test_product_sync_failure_marks_mapping(db, test_org, erp: FakeErp):
    _product(db, test_org)
    await metakocka_service.sync_products(db, test_org.id, client=erp.client())

    erp.replies["product_update"] = {"opr_code": "105", "opr_desc": "Unit is invalid"}
    result = await metakocka_service.sync_products(db, test_org.id, client=erp.client())

    assert result["failed"] == 1
    assert result["errors"][0]["error"] == "Unit is invalid"
    mapping = db.query(MetakockaProductMapping).one()
    assert mapping.sync_status == SyncStatus.ERROR.value
    assert mapping.sync_error == "Unit is invalid"
    assert db.query(MetakockaErrorLog).one().category == metakocka_service.CATEGORY_SYNC


@pytest.mark.asyncio
async def test_product_sync_without_sku_uses_generated_code(db, test_org, erp: FakeErp):
    product = _product(db, test_org, sku=None)
    await metakocka_service.sync_products(db, test_org.id, product_ids=[product.id], client=erp.client())
    assert erp.calls[0][1]["count_code"] == f"PROD-{str(product.id)[:8]}"


@pytest.mark.asyncio
async def test_product_import_creates_and_updates(db, test_org):
    _product(db, test_org, name="Local pallet", sku="PAL-1")
    remote = [
        {"mk_id": "501", "count_code": "PAL-1", "name": "Remote pallet", "unit": "kos"},
        {"mk_id": "502", "count_code": "CRT-1", "name": "Crate", "name_desc": "Wooden crate"},
        {"name": "No id"},
    ]
    erp = FakeErp({"product_list": {"opr_code": "0", "product_list": remote}})

    result = await metakocka_service.import_products(db, test_org.id, client=erp.client())
    assert result["created"] == 2

    imported = db.query(Product).filter(Product.name == "Remote pallet").one()
    assert imported.sku is None
    assert imported.unit == "kos"
    crate = db.query(Product).filter(Product.sku == "CRT-1").one()
    assert crate.description == "Wooden crate"

    remote[1]["name"] = "Crate XL"
    result = await metakocka_service.import_products(db, test_org.id, client=erp.client())
    assert result == {"created": 0, "updated": 2, "failed": 0, "errors": []}
    db.refresh(crate)
    assert crate.name == "Crate XL"


@pytest.mark.asyncio
async def test_product_import_failure_is_logged_and_raised(db, test_org):
    erp = FakeErp({"product_list": httpx.Response(500)})
    with pytest.raises(MetakockaError):
        await metakocka_service.import_products(db, test_org.id, client=erp.client())
    assert db.query(MetakockaErrorLog).one().category == metakocka_service.CATEGORY_API


# =============================================================================
# Sales documents
# =============================================================================

@pytest.mark.asyncio
async def test_document_sync_payload(db, test_org, erp: FakeErp):
    product = _product(db, test_org)
    await metakocka_service.sync_products(db, test_org.id, client=erp.client())
    contact = Contact(organization_id=test_org.id, first_name="Jane", email="jane@buyer.com")
    db.add(contact)
    db.commit()
    document = _document(
        db,
        test_org,
        contact_id=contact.id,
        items=[
            {"product_id": str(product.id), "name": "EUR pallet", "quantity": 2, "unit_price": 9.5},
            {"name": "Delivery", "quantity": 1, "unit_price": 20},
        ],
    )
    erp.replies["put_sales_bill"] = {"opr_code": "0", "mk_id": "900", "count_code": "2025-0001"}

    result = await metakocka_service.sync_documents(db, test_org.id, client=erp.client())

    assert result["created"] == 1
    endpoint, body = erp.calls[-1]
    assert endpoint == "put_sales_bill"
    assert body["partner_id"] == str(contact.id)
    assert body["status_id"] == "confirmed"
    assert body["sales_items"][0]["count_code"] == "PAL-1"
    assert body["sales_items"][0]["mk_id"] == "101"
    assert body["sales_items"][1]["count_code"] == metakocka_service.DEFAULT_ITEM_CODE
    mapping = db.query(MetakockaSalesDocumentMapping).one()
    assert mapping.document_id == document.id
    assert mapping.metakocka_document_type == "sales_bill"
    assert mapping.metakocka_document_number == "2025-0001"


@pytest.mark.asyncio
async def test_document_import_maps_types_and_statuses(db, test_org):
    offers = [{
        "mk_id": "700",
        "doc_type": "sales_offer",
        "doc_number": "OFF-7",
        "status_id": "in_preparation",
        "doc_date": "2025-03-01+02:00",
        "currency_code": "usd",
        "sales_document_items": [{"name": "Crate", "amount": "3", "price": "10", "tax_rate": "0"}],
    }]
    orders = [{"mk_id": "701", "doc_number": "ORD-1", "status_id": "paid", "sum_all": "99.90"}]
    erp = FakeErp({
        "list_sales_offer": {"opr_code": "0", "sales_offer_list": offers},
        "list_sales_order": {"opr_code": "0", "list": orders},
    })

    result = await metakocka_service.import_documents(
        db,
        test_org.id,
        doc_types=[MetakockaDocumentType.OFFER, MetakockaDocumentType.ORDER],
        client=erp.client(),
    )
    assert result["created"] == 2

    offer = db.query(SalesDocument).filter(SalesDocument.document_number == "OFF-7").one()
    assert offer.document_type == "offer"
    assert offer.status == "draft"
    assert offer.currency == "USD"
    assert offer.issue_date.isoformat() == "2025-03-01"
    assert offer.total_amount == Decimal("30.00")

    order = db.query(SalesDocument).filter(SalesDocument.document_number == "ORD-1").one()
    assert order.document_type == "order"
    assert order.status == "paid"
    assert order.total_amount == Decimal("99.90")


@pytest.mark.asyncio
async def test_document_import_continues_after_list_failure(db, test_org):
    erp = FakeErp({
        "list_sales_bill": {"opr_code": "3", "opr_desc": "Temporarily unavailable"},
        "list_sales_offer": {"opr_code": "0", "sales_offer_list": [{"mk_id": "1", "doc_number": "OFF-1"}]},
    })

    result = await metakocka_service.import_documents(
        db,
        test_org.id,
        doc_types=[MetakockaDocumentType.INVOICE, MetakockaDocumentType.OFFER],
        client=erp.client(),
    )

    assert result["failed"] == 1
    assert result["errors"] == [{"id": "sales_bill", "error": "Temporarily unavailable"}]
    assert result["created"] == 1


@pytest.mark.asyncio
async def test_full_sync_stamps_credentials(db, test_org, erp: FakeErp):
    metakocka_service.save_credentials(db, test_org.id, CredentialsUpdate(company_id="1234", secret_key="key"))
    _product(db, test_org)
    _document(db, test_org)

    result = await metakocka_service.full_sync(db, test_org.id, client=erp.client())

    assert result["products"]["created"] == 1
    assert result["documents"]["created"] == 1
    assert metakocka_service.get_credentials(db, test_org.id).last_sync_at is not None


# =============================================================================
# Router
# =============================================================================

@pytest.mark.asyncio
async def test_credentials_endpoints(authed_client: AsyncClient):
    response = await authed_client.get("/api/integrations/metakocka/credentials")
    assert response.status_code == 404

    response = await authed_client.put(
        "/api/integrations/metakocka/credentials",
        json={"company_id": "1234", "secret_key": "mk-secret-key"},
    )
    assert response.status_code == 200
    assert response.json()["secret_key_masked"] == "mk-s...-key"
    assert "secret_key" not in response.json()

    response = await authed_client.delete("/api/integrations/metakocka/credentials")
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_integration_requires_admin(member_client: AsyncClient):
    response = await member_client.get("/api/integrations/metakocka/logs")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_sync_without_credentials_is_bad_request(authed_client: AsyncClient):
    response = await authed_client.post("/api/integrations/metakocka/products/sync")
    assert response.status_code == 400
    assert "not configured" in response.json()["error"]


@pytest.mark.asyncio
async def test_sync_endpoints_use_org_client(authed_client: AsyncClient, db, test_org, erp: FakeErp, monkeypatch):
    monkeypatch.setattr(metakocka_service, "build_client", lambda db, org_id: erp.client())
    product = _product(db, test_org)

    response = await authed_client.post(
        "/api/integrations/metakocka/products/sync", json={"product_ids": [str(product.id)]}
    )
    assert response.status_code == 200
    assert response.json()["created"] == 1

    erp.replies["product_list"] = {"opr_code": "1", "opr_desc": "Bad key"}
    response = await authed_client.post("/api/integrations/metakocka/products/import")
    assert response.status_code == 401

    logs = (await authed_client.get("/api/integrations/metakocka/logs")).json()
    assert logs[0]["category"] == "api"
    assert logs[0]["error_type"] == "authentication"


@pytest.mark.asyncio
async def test_admin_role_can_manage_integration(client: AsyncClient, db, test_org):
    admin = make_user(db, test_org, Role.ADMIN)
    response = await client.put(
        "/api/integrations/metakocka/credentials",
        json={"company_id": "1234", "secret_key": "mk-secret-key"},
        headers={"Authorization": f"Bearer {token_for(admin, test_org, Role.ADMIN)}"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_full_sync_is_queued_once(authed_client: AsyncClient):
    response = await authed_client.post("/api/integrations/metakocka/sync")
    assert response.status_code == 400

    await authed_client.put(
        "/api/integrations/metakocka/credentials",
        json={"company_id": "1234", "secret_key": "mk-secret-key"},
    )
    first = await authed_client.post("/api/integrations/metakocka/sync")
    assert first.status_code == 202
    assert first.json()["status"] == "pending"

    second = await authed_client.post("/api/integrations/metakocka/sync")
    assert second.json()["job_id"] == first.json()["job_id"]

    job = (await authed_client.get(f"/api/jobs/{first.json()['job_id']}")).json()
    assert job["job_type"] == "metakocka_sync"
