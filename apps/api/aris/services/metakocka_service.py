"""Metakocka service - credentials, product and sales document synchronisation.

Local records are pushed to the ERP through mapping tables that remember the
remote mk_id. Imports pull remote records and create or update the mapped
local rows. Failures are stored per mapping and in metakocka_error_logs.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.orm import Session

from aris.core.encryption import decrypt_secret, encrypt_secret, mask_secret
from aris.db.enums import JobStatus, JobType, SalesDocumentStatus, SalesDocumentType, SyncStatus
from aris.db.models import (
    Job,
    MetakockaCredentials,
    MetakockaErrorLog,
    MetakockaProductMapping,
    MetakockaSalesDocumentMapping,
    Product,
    SalesDocument,
)
from aris.db.types import utcnow
from aris.schemas.metakocka import CredentialsUpdate
from aris.services import job_service
from aris.services.metakocka_client import (
    MetakockaClient,
    MetakockaDocumentType,
    MetakockaError,
    MetakockaErrorType,
)
from aris.services.sales_document_service import compute_total

logger = logging.getLogger(__name__)

DEFAULT_ITEM_CODE = "KOS"
ERROR_LOG_LIMIT = 100

CATEGORY_AUTH = "auth"
CATEGORY_API = "api"
CATEGORY_SYNC = "sync"

DOCUMENT_TYPE_TO_REMOTE = {
    SalesDocumentType.INVOICE.value: MetakockaDocumentType.INVOICE,
    SalesDocumentType.OFFER.value: MetakockaDocumentType.OFFER,
    SalesDocumentType.ORDER.value: MetakockaDocumentType.ORDER,
    SalesDocumentType.PROFORMA.value: MetakockaDocumentType.PROFORMA,
}
DOCUMENT_TYPE_FROM_REMOTE = {remote.value: local for local, remote in DOCUMENT_TYPE_TO_REMOTE.items()}
KNOWN_STATUSES = {status.value for status in SalesDocumentStatus}


class MetakockaNotConfiguredError(Exception):
    def __init__(self):
        super().__init__("Metakocka credentials are not configured for this organization")


def remote_document_type(document_type: str) -> MetakockaDocumentType:
    return DOCUMENT_TYPE_TO_REMOTE.get(document_type, MetakockaDocumentType.INVOICE)


def local_document_type(remote_type: str | None) -> str:
    return DOCUMENT_TYPE_FROM_REMOTE.get(remote_type or "", SalesDocumentType.INVOICE.value)


def local_document_status(status_id: str | None) -> str:
    if status_id in KNOWN_STATUSES:
        return status_id
    return SalesDocumentStatus.DRAFT.value


def _decimal(value, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value if value not in (None, "") else default))
    except InvalidOperation:
        return Decimal(default)


# =============================================================================
# Credentials
# =============================================================================

def get_credentials(db: Session, org_id: UUID) -> MetakockaCredentials | None:
    return (
        db.query(MetakockaCredentials)
        .filter(MetakockaCredentials.organization_id == org_id)
        .first()
    )


def save_credentials(db: Session, org_id: UUID, data: CredentialsUpdate) -> MetakockaCredentials:
    credentials = get_credentials(db, org_id)
    if credentials is None:
        credentials = MetakockaCredentials(organization_id=org_id)
        db.add(credentials)
    credentials.company_id = data.company_id.strip()
    credentials.secret_key_encrypted = encrypt_secret(data.secret_key)
    credentials.api_endpoint = data.api_endpoint or None
    credentials.is_active = data.is_active
    db.commit()
    db.refresh(credentials)
    return credentials


def delete_credentials(db: Session, org_id: UUID) -> bool:
    credentials = get_credentials(db, org_id)
    if credentials is None:
        return False
    db.delete(credentials)
    db.commit()
    return True


def credentials_to_read(credentials: MetakockaCredentials) -> dict:
    return {
        "company_id": credentials.company_id,
        "secret_key_masked": mask_secret(credentials.secret_key_encrypted),
        "api_endpoint": credentials.api_endpoint,
        "is_active": credentials.is_active,
        "last_sync_at": credentials.last_sync_at,
        "updated_at": credentials.updated_at,
    }


def build_client(db: Session, org_id: UUID) -> MetakockaClient:
    """
    Raises:
        MetakockaNotConfiguredError: no active credentials for the org
    """
    credentials = get_credentials(db, org_id)
    if credentials is None or not credentials.is_active:
        raise MetakockaNotConfiguredError()
    return MetakockaClient(
        company_id=credentials.company_id,
        secret_key=decrypt_secret(credentials.secret_key_encrypted),
        api_url=credentials.api_endpoint,
    )


# =============================================================================
# Error log
# =============================================================================

def log_error(
    db: Session,
    org_id: UUID,
    category: str,
    error: Exception,
    details: dict | None = None,
) -> MetakockaErrorLog:
    """Record an integration failure. Caller commits."""
    error_type = getattr(error, "error_type", None)
    entry = MetakockaErrorLog(
        organization_id=org_id,
        category=category,
        error_type=error_type.value if error_type else None,
        error_code=getattr(error, "error_code", None),
        message=str(error)[:2000],
        details=details,
    )
    db.add(entry)
    logger.warning(
        "Metakocka %s error for org %s: %s",
        category,
        org_id,
        error_type.value if error_type else type(error).__name__,
    )
    return entry


def list_error_logs(db: Session, org_id: UUID, limit: int = ERROR_LOG_LIMIT) -> list[MetakockaErrorLog]:
    return (
        db.query(MetakockaErrorLog)
        .filter(MetakockaErrorLog.organization_id == org_id)
        .order_by(MetakockaErrorLog.created_at.desc())
        .limit(limit)
        .all()
    )


async def test_connection(
    db: Session, org_id: UUID, client: MetakockaClient | None = None
) -> dict:
    client = client or build_client(db, org_id)
    try:
        await client.test_connection()
    except MetakockaError as exc:
        category = CATEGORY_AUTH if exc.error_type == MetakockaErrorType.AUTHENTICATION else CATEGORY_API
        log_error(db, org_id, category, exc, {"operation": "test_connection"})
        db.commit()
        return {"success": False, "error": exc.message, "error_type": exc.error_type.value}
    return {"success": True, "error": None, "error_type": None}


# =============================================================================
# Products
# =============================================================================

def get_product_mapping(db: Session, org_id: UUID, product_id: UUID) -> MetakockaProductMapping | None:
    return (
        db.query(MetakockaProductMapping)
        .filter(
            MetakockaProductMapping.organization_id == org_id,
            MetakockaProductMapping.product_id == product_id,
        )
        .first()
    )


def product_payload(product: Product, mapping: MetakockaProductMapping | None) -> dict:
    payload = {
        "count_code": (mapping.metakocka_code if mapping and mapping.metakocka_code else None)
        or product.sku
        or f"PROD-{str(product.id)[:8]}",
        "name": product.name,
        "unit": product.unit or "piece",
        "service": "false",
        "sales": "true",
    }
    if product.description:
        payload["name_desc"] = product.description
    if mapping:
        payload["mk_id"] = mapping.metakocka_id
    return payload


async def _push_product(
    db: Session, client: MetakockaClient, product: Product
) -> str:
    """Create or update one product remotely. Returns "created" or "updated"."""
    mapping = get_product_mapping(db, product.organization_id, product.id)
    payload = product_payload(product, mapping)
    try:
        if mapping:
            await client.update_product(payload)
            outcome = "updated"
        else:
            response = await client.add_product(payload)
            mk_id = response.get("mk_id")
            if not mk_id:
                raise MetakockaError("Metakocka did not return a product id")
            mapping = MetakockaProductMapping(
                organization_id=product.organization_id,
                product_id=product.id,
                metakocka_id=str(mk_id),
            )
            db.add(mapping)
            outcome = "created"
    except MetakockaError as exc:
        if mapping:
            mapping.sync_status = SyncStatus.ERROR.value
            mapping.sync_error = exc.message
            mapping.last_synced_at = utcnow()
        raise

    mapping.metakocka_code = payload["count_code"]
    mapping.sync_status = SyncStatus.SYNCED.value
    mapping.sync_error = None
    mapping.last_synced_at = utcnow()
    return outcome


async def sync_products(
    db: Session,
    org_id: UUID,
    product_ids: list[UUID] | None = None,
    client: MetakockaClient | None = None,
) -> dict:
    """Push local products to Metakocka."""
    client = client or build_client(db, org_id)
    query = db.query(Product).filter(Product.organization_id == org_id)
    if product_ids:
        query = query.filter(Product.id.in_(product_ids))
    products = query.order_by(Product.created_at).all()

    result = {"created": 0, "updated": 0, "failed": 0, "errors": []}
    for product in products:
        try:
            outcome = await _push_product(db, client, product)
        except MetakockaError as exc:
            result["failed"] += 1
            result["errors"].append({"id": str(product.id), "error": exc.message})
            log_error(db, org_id, CATEGORY_SYNC, exc, {"product_id": str(product.id)})
        else:
            result[outcome] += 1
        db.commit()

    logger.info(
        "Metakocka product sync org=%s created=%s updated=%s failed=%s",
        org_id, result["created"], result["updated"], result["failed"],
    )
    return result


def _import_product(db: Session, org_id: UUID, remote: dict) -> str:
    mk_id = str(remote["mk_id"])
    mapping = (
        db.query(MetakockaProductMapping)
        .filter(
            MetakockaProductMapping.organization_id == org_id,
            MetakockaProductMapping.metakocka_id == mk_id,
        )
        .first()
    )
    code = remote.get("count_code") or remote.get("code")
    product = db.get(Product, mapping.product_id) if mapping else None
    if product is None:
        sku_taken = code and (
            db.query(Product.id)
            .filter(Product.organization_id == org_id, Product.sku == code)
            .first()
        )
        product = Product(organization_id=org_id, sku=None if sku_taken else code)
        db.add(product)
        outcome = "created"
    else:
        outcome = "updated"

    product.name = (remote.get("name") or code or f"Product {mk_id}")[:255]
    if remote.get("name_desc"):
        product.description = remote["name_desc"]
    if remote.get("unit"):
        product.unit = str(remote["unit"])[:20]
    db.flush()

    if mapping is None:
        mapping = MetakockaProductMapping(
            organization_id=org_id, product_id=product.id, metakocka_id=mk_id
        )
        db.add(mapping)
    mapping.metakocka_code = code
    mapping.sync_status = SyncStatus.SYNCED.value
    mapping.sync_error = None
    mapping.last_synced_at = utcnow()
    return outcome


async def import_products(
    db: Session, org_id: UUID, client: MetakockaClient | None = None
) -> dict:
    """Pull the remote product list into the local catalogue."""
    client = client or build_client(db, org_id)
    result = {"created": 0, "updated": 0, "failed": 0, "errors": []}
    try:
        remote_products = await client.list_products()
    except MetakockaError as exc:
        log_error(db, org_id, CATEGORY_API, exc, {"operation": "product_list"})
        db.commit()
        raise

    for remote in remote_products:
        if not remote.get("mk_id"):
            continue
        outcome = _import_product(db, org_id, remote)
        db.commit()
        result[outcome] += 1
    return result


# =============================================================================
# Sales documents
# =============================================================================

def get_document_mapping(
    db: Session, org_id: UUID, document_id: UUID
) -> MetakockaSalesDocumentMapping | None:
    return (
        db.query(MetakockaSalesDocumentMapping)
        .filter(
            MetakockaSalesDocumentMapping.organization_id == org_id,
            MetakockaSalesDocumentMapping.document_id == document_id,
        )
        .first()
    )


def _document_items(db: Session, document: SalesDocument) -> list[dict]:
    items = []
    for item in document.items or []:
        entry = {
            "count_code": DEFAULT_ITEM_CODE,
            "name": item.get("name") or "",
            "amount": str(item.get("quantity", 1)),
            "price": str(item.get("unit_price", 0)),
            "discount": str(item.get("discount_percent", 0)),
            "tax_rate": str(item.get("tax_percent", 0)),
        }
        product_id = item.get("product_id")
        if product_id:
            mapping = get_product_mapping(db, document.organization_id, UUID(str(product_id)))
            if mapping:
                entry["mk_id"] = mapping.metakocka_id
                entry["count_code"] = mapping.metakocka_code or DEFAULT_ITEM_CODE
        items.append(entry)
    return items


def document_payload(
    db: Session, document: SalesDocument, mapping: MetakockaSalesDocumentMapping | None
) -> dict:
    issue_date = document.issue_date or date.today()
    payload = {
        "title": document.document_number or "",
        "doc_date": issue_date.isoformat(),
        "due_date": document.due_date.isoformat() if document.due_date else "",
        "status_id": document.status,
        "doc_number": document.document_number or "",
        "currency_code": document.currency,
        "notes": document.notes or "",
        "sales_items": _document_items(db, document),
    }
    if document.contact_id:
        payload["partner_id"] = str(document.contact_id)
    if mapping:
        payload["mk_id"] = mapping.metakocka_id
    return payload


async def _push_document(
    db: Session, client: MetakockaClient, document: SalesDocument
) -> str:
    mapping = get_document_mapping(db, document.organization_id, document.id)
    doc_type = remote_document_type(document.document_type)
    payload = document_payload(db, document, mapping)
    try:
        if mapping:
            response = await client.update_document(doc_type, payload)
            outcome = "updated"
        else:
            response = await client.put_document(doc_type, payload)
            mk_id = response.get("mk_id")
            if not mk_id:
                raise MetakockaError("Metakocka did not return a document id")
            mapping = MetakockaSalesDocumentMapping(
                organization_id=document.organization_id,
                document_id=document.id,
                metakocka_id=str(mk_id),
                metakocka_document_type=doc_type.value,
            )
            db.add(mapping)
            outcome = "created"
    except MetakockaError as exc:
        if mapping:
            mapping.sync_status = SyncStatus.ERROR.value
            mapping.sync_error = exc.message
            mapping.last_synced_at = utcnow()
        raise

    mapping.metakocka_document_type = doc_type.value
    mapping.metakocka_document_number = response.get("count_code") or response.get("doc_number") or (
        mapping.metakocka_document_number
    )
    mapping.sync_status = SyncStatus.SYNCED.value
    mapping.sync_error = None
    mapping.last_synced_at = utcnow()
    return outcome


async def sync_documents(
    db: Session,
    org_id: UUID,
    document_ids: list[UUID] | None = None,
    client: MetakockaClient | None = None,
) -> dict:
    """Push local sales documents to Metakocka."""
    client = client or build_client(db, org_id)
    query = db.query(SalesDocument).filter(SalesDocument.organization_id == org_id)
    if document_ids:
        query = query.filter(SalesDocument.id.in_(document_ids))
    documents = query.order_by(SalesDocument.created_at).all()

    result = {"created": 0, "updated": 0, "failed": 0, "errors": []}
    for document in documents:
        try:
            outcome = await _push_document(db, client, document)
        except MetakockaError as exc:
            result["failed"] += 1
            result["errors"].append({"id": str(document.id), "error": exc.message})
            log_error(db, org_id, CATEGORY_SYNC, exc, {"document_id": str(document.id)})
        else:
            result[outcome] += 1
        db.commit()
    return result


def _remote_items(remote: dict) -> list[dict]:
    items = []
    for index, item in enumerate(remote.get("sales_document_items") or remote.get("sales_items") or []):
        items.append({
            "product_id": None,
            "name": item.get("name") or f"Item {index + 1}",
            "quantity": float(_decimal(item.get("amount"), "1")),
            "unit_price": float(_decimal(item.get("price"))),
            "discount_percent": float(_decimal(item.get("discount"))),
            "tax_percent": float(_decimal(item.get("tax_rate"))),
        })
    return items


def _parse_date(value) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _import_document(db: Session, org_id: UUID, remote: dict, remote_type: MetakockaDocumentType) -> str:
    mk_id = str(remote["mk_id"])
    mapping = (
        db.query(MetakockaSalesDocumentMapping)
        .filter(
            MetakockaSalesDocumentMapping.organization_id == org_id,
            MetakockaSalesDocumentMapping.metakocka_id == mk_id,
        )
        .first()
    )
    document = db.get(SalesDocument, mapping.document_id) if mapping else None
    if document is None:
        document = SalesDocument(organization_id=org_id)
        db.add(document)
        outcome = "created"
    else:
        outcome = "updated"

    items = _remote_items(remote)
    document.document_type = local_document_type(remote.get("doc_type") or remote_type.value)
    document.document_number = remote.get("doc_number") or remote.get("count_code") or f"MK-{mk_id[:8]}"
    document.status = local_document_status(remote.get("status_id"))
    document.issue_date = _parse_date(remote.get("doc_date")) or date.today()
    document.due_date = _parse_date(remote.get("due_date"))
    document.currency = (remote.get("currency_code") or "EUR")[:3].upper()
    document.notes = remote.get("notes") or None
    document.items = items
    if remote.get("sum_all") not in (None, ""):
        document.total_amount = _decimal(remote["sum_all"])
    else:
        document.total_amount = compute_total(items)
    db.flush()

    if mapping is None:
        mapping = MetakockaSalesDocumentMapping(
            organization_id=org_id,
            document_id=document.id,
            metakocka_id=mk_id,
            metakocka_document_type=remote_type.value,
        )
        db.add(mapping)
    mapping.metakocka_document_number = document.document_number
    mapping.sync_status = SyncStatus.SYNCED.value
    mapping.sync_error = None
    mapping.last_synced_at = utcnow()
    return outcome


async def import_documents(
    db: Session,
    org_id: UUID,
    doc_types: list[MetakockaDocumentType] | None = None,
    client: MetakockaClient | None = None,
) -> dict:
    """Pull remote sales documents of the given types into the CRM."""
    client = client or build_client(db, org_id)
    result = {"created": 0, "updated": 0, "failed": 0, "errors": []}
    for doc_type in doc_types or list(MetakockaDocumentType):
        try:
            remote_documents = await client.list_documents(doc_type)
        except MetakockaError as exc:
            result["failed"] += 1
            result["errors"].append({"id": doc_type.value, "error": exc.message})
            log_error(db, org_id, CATEGORY_API, exc, {"operation": f"list_{doc_type.value}"})
            db.commit()
            continue
        for remote in remote_documents:
            if not remote.get("mk_id"):
                continue
            outcome = _import_document(db, org_id, remote, doc_type)
            db.commit()
            result[outcome] += 1
    return result


# =============================================================================
# Full sync
# =============================================================================

async def full_sync(db: Session, org_id: UUID, client: MetakockaClient | None = None) -> dict:
    """Push every product, then every sales document."""
    client = client or build_client(db, org_id)
    products = await sync_products(db, org_id, client=client)
    documents = await sync_documents(db, org_id, client=client)
    credentials = get_credentials(db, org_id)
    if credentials:
        credentials.last_sync_at = utcnow()
        db.commit()
    return {"products": products, "documents": documents}


def schedule_full_sync(db: Session, org_id: UUID) -> Job:
    """
    Queue a metakocka_sync job, reusing one that has not finished yet.

    Raises:
        MetakockaNotConfiguredError: no active credentials for the org
    """
    credentials = get_credentials(db, org_id)
    if credentials is None or not credentials.is_active:
        raise MetakockaNotConfiguredError()
    queued = (
        db.query(Job)
        .filter(
            Job.organization_id == org_id,
            Job.job_type == JobType.METAKOCKA_SYNC.value,
            Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
        )
        .first()
    )
    if queued:
        return queued
    return job_service.schedule_job(db, org_id=org_id, job_type=JobType.METAKOCKA_SYNC, payload={})
