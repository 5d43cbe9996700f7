"""Supplier service - suppliers, price lists, documents and the sourcing assistant."""

import json
import logging
from decimal import Decimal
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from aris.db.enums import SupplierDocumentStatus
from aris.db.models import Supplier, SupplierDocument, SupplierPricing, SupplierQuery
from aris.db.types import utcnow
from aris.schemas.supplier import (
    DocumentCreate, PricingCreate, SupplierCreate, SupplierMatch, SupplierQueryCreate, SupplierUpdate,
)
from aris.services import ai_service
from aris.services.ai_prompt_registry import get_prompt
from aris.services.ai_provider import AIProvider, AIProviderError, ChatMessage
from aris.services.ai_response_validation import parse_json_object
from aris.services.contact_service import sanitize_html

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = (
    "I'm sorry, I couldn't process your query because the AI service is not available. "
    "Please check the AI settings of your organization."
)

CONTEXT_DOCUMENTS = 10
CONTEXT_PRICING_PER_SUPPLIER = 20
MAX_RESULTS = 10


class SupplierError(Exception):
    """Base error for supplier operations."""


class SupplierNotFoundError(SupplierError):
    def __init__(self, supplier_id: UUID):
        self.supplier_id = supplier_id
        super().__init__("Supplier not found")


class SupplierQueryNotFoundError(SupplierError):
    def __init__(self, query_id: UUID):
        self.query_id = query_id
        super().__init__("Query not found")


# =============================================================================
# Suppliers
# =============================================================================

def list_suppliers(db: Session, org_id: UUID, q: str | None = None) -> list[Supplier]:
    query = db.query(Supplier).filter(Supplier.organization_id == org_id)
    if q:
        query = query.filter(Supplier.name.ilike(f"%{q.strip()}%"))
    return query.order_by(Supplier.name).all()


def get_supplier(db: Session, org_id: UUID, supplier_id: UUID) -> Supplier | None:
    return (
        db.query(Supplier)
        .filter(Supplier.id == supplier_id, Supplier.organization_id == org_id)
        .first()
    )


def require_supplier(db: Session, org_id: UUID, supplier_id: UUID) -> Supplier:
    supplier = get_supplier(db, org_id, supplier_id)
    if not supplier:
        raise SupplierNotFoundError(supplier_id)
    return supplier


def create_supplier(db: Session, org_id: UUID, data: SupplierCreate) -> Supplier:
    values = data.model_dump()
    if values.get("notes"):
        values["notes"] = sanitize_html(values["notes"])
    supplier = Supplier(organization_id=org_id, **values)
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier


def update_supplier(db: Session, supplier: Supplier, data: SupplierUpdate) -> Supplier:
    updates = data.model_dump(exclude_unset=True)
    if updates.get("notes"):
        updates["notes"] = sanitize_html(updates["notes"])
    for field, value in updates.items():
        if field == "name" and value is None:
            continue
        setattr(supplier, field, value)
    db.commit()
    db.refresh(supplier)
    return supplier


def delete_supplier(db: Session, supplier: Supplier) -> None:
    db.delete(supplier)
    db.commit()


# =============================================================================
# Pricing
# =============================================================================

def list_pricing(db: Session, supplier: Supplier) -> list[SupplierPricing]:
    return (
        db.query(SupplierPricing)
        .filter(SupplierPricing.supplier_id == supplier.id)
        .order_by(SupplierPricing.product_name)
        .all()
    )


def add_pricing(db: Session, supplier: Supplier, data: PricingCreate) -> SupplierPricing:
    pricing = SupplierPricing(
        supplier_id=supplier.id,
        organization_id=supplier.organization_id,
        product_name=data.product_name,
        sku=data.sku,
        price=Decimal(str(data.price)),
        currency=data.currency.upper(),
        min_quantity=data.min_quantity,
    )
    db.add(pricing)
    db.commit()
    db.refresh(pricing)
    return pricing


# =============================================================================
# Documents
# =============================================================================

def list_documents(db: Session, supplier: Supplier) -> list[SupplierDocument]:
    return (
        db.query(SupplierDocument)
        .filter(SupplierDocument.supplier_id == supplier.id)
        .order_by(SupplierDocument.created_at.desc())
        .all()
    )


def get_document(db: Session, supplier: Supplier, document_id: UUID) -> SupplierDocument | None:
    return (
        db.query(SupplierDocument)
        .filter(SupplierDocument.id == document_id, SupplierDocument.supplier_id == supplier.id)
        .first()
    )


def add_document(db: Session, supplier: Supplier, data: DocumentCreate) -> SupplierDocument:
    document = SupplierDocument(
        supplier_id=supplier.id,
        organization_id=supplier.organization_id,
        file_name=data.file_name,
        document_type=data.document_type,
        summary=data.summary,
        extracted_data=data.extracted_data,
        status=SupplierDocumentStatus.PENDING.value,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def review_document(
    db: Session,
    document: SupplierDocument,
    status: SupplierDocumentStatus,
    user_id: UUID,
    summary: str | None = None,
) -> SupplierDocument:
    document.status = status.value
    document.reviewed_by_user_id = user_id
    document.reviewed_at = utcnow()
    if summary is not None:
        document.summary = summary
    db.commit()
    db.refresh(document)
    return document


# =============================================================================
# Sourcing queries
# =============================================================================

def build_context(db: Session, org_id: UUID) -> list[dict]:
    """Suppliers with their price lists and latest approved documents."""
    suppliers = list_suppliers(db, org_id)
    documents = (
        db.query(SupplierDocument)
        .filter(
            SupplierDocument.organization_id == org_id,
            SupplierDocument.status == SupplierDocumentStatus.APPROVED.value,
        )
        .order_by(SupplierDocument.created_at.desc())
        .limit(CONTEXT_DOCUMENTS)
        .all()
    )
    docs_by_supplier: dict[UUID, list[dict]] = {}
    for doc in documents:
        docs_by_supplier.setdefault(doc.supplier_id, []).append(
            {"file_name": doc.file_name, "type": doc.document_type, "summary": doc.summary}
        )

    context = []
    for supplier in suppliers:
        context.append({
            "supplier_id": str(supplier.id),
            "name": supplier.name,
            "country": supplier.country,
            "email": supplier.email,
            "reliability_score": supplier.reliability_score,
            "pricing": [
                {
                    "product": p.product_name,
                    "sku": p.sku,
                    "price": f"{p.price} {p.currency}",
                    "min_quantity": p.min_quantity,
                }
                for p in supplier.pricing[:CONTEXT_PRICING_PER_SUPPLIER]
            ],
            "documents": docs_by_supplier.get(supplier.id, []),
        })
    return context


def _valid_matches(raw_results, known_ids: set[str]) -> list[dict]:
    matches = []
    for item in raw_results or []:
        try:
            match = SupplierMatch.model_validate(item)
        except ValidationError:
            continue
        if str(match.supplier_id) not in known_ids:
            continue
        matches.append(match.model_dump(mode="json"))
    matches.sort(key=lambda m: m["relevance_score"], reverse=True)
    return matches[:MAX_RESULTS]


async def generate_answer(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    query: str,
    provider: AIProvider | None = None,
) -> tuple[str, list[dict]]:
    """
    Ask the org's model about its suppliers.

    Returns (answer, results). Falls back to a fixed message when AI is
    disabled, not configured or the provider fails.
    """
    context = build_context(db, org_id)
    prompt = get_prompt("supplier_search")
    messages = [
        ChatMessage(role="system", content=prompt.system),
        ChatMessage(
            role="user",
            content=prompt.render_user(query=query, suppliers=json.dumps(context, default=str)),
        ),
    ]
    try:
        response = await ai_service.complete(
            db, org_id, user_id, "supplier_search", messages,
            temperature=0.7, max_tokens=1000, provider=provider,
        )
    except (ai_service.AIServiceError, AIProviderError) as exc:
        logger.warning("Supplier assistant unavailable for org %s: %s", org_id, exc)
        return FALLBACK_RESPONSE, []

    data = parse_json_object(response.content)
    if not data:
        return response.content.strip(), []
    known_ids = {c["supplier_id"] for c in context}
    answer = str(data.get("answer") or "").strip() or response.content.strip()
    return answer, _valid_matches(data.get("results"), known_ids)


def list_queries(db: Session, org_id: UUID, user_id: UUID, limit: int = 50) -> list[SupplierQuery]:
    return (
        db.query(SupplierQuery)
        .filter(SupplierQuery.organization_id == org_id, SupplierQuery.user_id == user_id)
        .order_by(SupplierQuery.created_at.desc())
        .limit(limit)
        .all()
    )


def require_query(db: Session, org_id: UUID, user_id: UUID, query_id: UUID) -> SupplierQuery:
    query = (
        db.query(SupplierQuery)
        .filter(
            SupplierQuery.id == query_id,
            SupplierQuery.organization_id == org_id,
            SupplierQuery.user_id == user_id,
        )
        .first()
    )
    if not query:
        raise SupplierQueryNotFoundError(query_id)
    return query


async def create_query(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    data: SupplierQueryCreate,
    provider: AIProvider | None = None,
) -> SupplierQuery:
    """Store a sourcing query, generating the answer when none was supplied."""
    answer = data.ai_response
    results = [r.model_dump(mode="json") for r in data.results] if data.results is not None else None
    if not answer:
        answer, generated = await generate_answer(db, org_id, user_id, data.query, provider=provider)
        if results is None:
            results = generated

    record = SupplierQuery(
        organization_id=org_id,
        user_id=user_id,
        query=data.query,
        ai_response=answer,
        results=results or [],
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def delete_query(db: Session, query: SupplierQuery) -> None:
    db.delete(query)
    db.commit()
