"""Sales document service - invoices, offers, orders and proformas."""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from aris.db.enums import SalesDocumentStatus, SalesDocumentType
from aris.db.models import Contact, SalesDocument
from aris.schemas.product import SalesDocumentCreate, SalesDocumentItem, SalesDocumentUpdate

CENT = Decimal("0.01")


class SalesDocumentError(Exception):
    """Base error for sales document operations."""


class InvalidContactError(SalesDocumentError):
    def __init__(self, contact_id: UUID):
        self.contact_id = contact_id
        super().__init__("Contact not found in this organization")


def line_total(item: dict) -> Decimal:
    quantity = Decimal(str(item.get("quantity", 0)))
    unit_price = Decimal(str(item.get("unit_price", 0)))
    discount = Decimal(str(item.get("discount_percent", 0)))
    tax = Decimal(str(item.get("tax_percent", 0)))
    net = quantity * unit_price * (1 - discount / 100)
    return (net * (1 + tax / 100)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total(items: list[dict]) -> Decimal:
    return sum((line_total(item) for item in items), Decimal("0")).quantize(CENT)


def _serialize_items(items: list[SalesDocumentItem]) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


def _check_contact(db: Session, org_id: UUID, contact_id: UUID | None) -> None:
    if contact_id is None:
        return
    exists = (
        db.query(Contact.id)
        .filter(Contact.id == contact_id, Contact.organization_id == org_id)
        .first()
    )
    if not exists:
        raise InvalidContactError(contact_id)


def list_documents(
    db: Session,
    org_id: UUID,
    document_type: SalesDocumentType | None = None,
    status: SalesDocumentStatus | None = None,
    contact_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SalesDocument], int]:
    query = db.query(SalesDocument).filter(SalesDocument.organization_id == org_id)
    if document_type:
        query = query.filter(SalesDocument.document_type == document_type.value)
    if status:
        query = query.filter(SalesDocument.status == status.value)
    if contact_id:
        query = query.filter(SalesDocument.contact_id == contact_id)
    total = query.count()
    items = query.order_by(SalesDocument.created_at.desc()).offset(offset).limit(limit).all()
    return items, total


def get_document(db: Session, org_id: UUID, document_id: UUID) -> SalesDocument | None:
    return (
        db.query(SalesDocument)
        .filter(SalesDocument.id == document_id, SalesDocument.organization_id == org_id)
        .first()
    )


def create_document(db: Session, org_id: UUID, data: SalesDocumentCreate) -> SalesDocument:
    """
    Raises:
        InvalidContactError: contact_id is not a contact of the org
    """
    _check_contact(db, org_id, data.contact_id)
    items = _serialize_items(data.items)
    document = SalesDocument(
        organization_id=org_id,
        document_type=data.document_type.value,
        document_number=data.document_number,
        contact_id=data.contact_id,
        status=data.status.value,
        issue_date=data.issue_date,
        due_date=data.due_date,
        currency=data.currency.upper(),
        items=items,
        total_amount=compute_total(items),
        notes=data.notes,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def update_document(db: Session, document: SalesDocument, data: SalesDocumentUpdate) -> SalesDocument:
    updates = data.model_dump(exclude_unset=True)
    if "contact_id" in updates:
        _check_contact(db, document.organization_id, updates["contact_id"])
    if data.items is not None:
        document.items = _serialize_items(data.items)
        document.total_amount = compute_total(document.items)
    updates.pop("items", None)
    for field, value in updates.items():
        if value is None and field in ("status", "currency"):
            continue
        if field == "status":
            value = value.value
        elif field == "currency":
            value = value.upper()
        setattr(document, field, value)
    db.commit()
    db.refresh(document)
    return document


def delete_document(db: Session, document: SalesDocument) -> None:
    db.delete(document)
    db.commit()
