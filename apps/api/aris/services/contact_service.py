"""Contact service - business logic for contact records."""

from datetime import datetime
from uuid import UUID

import nh3
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from aris.db.models import Contact
from aris.schemas.contact import ContactCreate, ContactUpdate

# Allowed HTML tags for rich text notes
ALLOWED_TAGS = {"p", "br", "strong", "em", "ul", "ol", "li", "a", "blockquote", "code", "pre"}
ALLOWED_ATTRIBUTES = {"a": {"href", "target"}}


class ContactError(Exception):
    """Base error for contact operations."""


class DuplicateContactError(ContactError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("A contact with this email already exists")


def sanitize_html(html: str) -> str:
    """Sanitize HTML to prevent XSS, allowing only safe rich text tags."""
    return nh3.clean(html, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES)


def _normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    return email.strip().lower()


def find_by_email(db: Session, org_id: UUID, email: str) -> Contact | None:
    normalized = _normalize_email(email)
    if not normalized:
        return None
    return (
        db.query(Contact)
        .filter(
            Contact.organization_id == org_id,
            func.lower(Contact.email) == normalized,
        )
        .first()
    )


def list_contacts(
    db: Session,
    org_id: UUID,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Contact], int]:
    """
    List contacts with optional search.

    Search matches first/last name, email and company (case-insensitive).
    Returns (contacts, total_count).
    """
    query = db.query(Contact).filter(Contact.organization_id == org_id)

    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Contact.first_name).like(pattern),
                func.lower(Contact.last_name).like(pattern),
                func.lower(Contact.email).like(pattern),
                func.lower(Contact.company).like(pattern),
            )
        )

    total = query.count()
    contacts = (
        query.order_by(Contact.created_at.desc(), Contact.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return contacts, total


def get_contact(db: Session, org_id: UUID, contact_id: UUID) -> Contact | None:
    """Get contact by ID (org-scoped)."""
    return (
        db.query(Contact)
        .filter(Contact.id == contact_id, Contact.organization_id == org_id)
        .first()
    )


def create_contact(
    db: Session,
    org_id: UUID,
    user_id: UUID | None,
    data: ContactCreate,
) -> Contact:
    """
    Create a contact.

    Raises:
        DuplicateContactError: Email already used by another contact in the org
    """
    email = _normalize_email(data.email)
    if email and find_by_email(db, org_id, email):
        raise DuplicateContactError(email)

    contact = Contact(
        organization_id=org_id,
        created_by_user_id=user_id,
        first_name=data.first_name.strip(),
        last_name=data.last_name,
        email=email,
        phone=data.phone,
        company=data.company,
        position=data.position,
        country=data.country,
        notes=sanitize_html(data.notes) if data.notes else None,
        personality_type=data.personality_type,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


def update_contact(
    db: Session,
    contact: Contact,
    data: ContactUpdate,
) -> Contact:
    """
    Apply a partial update.

    Raises:
        DuplicateContactError: New email collides with another contact
    """
    updates = data.model_dump(exclude_unset=True)

    if "email" in updates:
        email = _normalize_email(updates["email"])
        if email and email != _normalize_email(contact.email):
            existing = find_by_email(db, contact.organization_id, email)
            if existing and existing.id != contact.id:
                raise DuplicateContactError(email)
        updates["email"] = email

    if updates.get("notes"):
        updates["notes"] = sanitize_html(updates["notes"])

    for field, value in updates.items():
        setattr(contact, field, value)

    db.commit()
    db.refresh(contact)
    return contact


def delete_contact(db: Session, contact: Contact) -> None:
    db.delete(contact)
    db.commit()


def touch_contact_interaction(
    db: Session,
    org_id: UUID,
    email: str | None,
    at: datetime,
) -> bool:
    """
    Record an email interaction with a known contact.

    Only moves last_interaction_at forward. Caller commits.
    Returns True if a contact matched.
    """
    contact = find_by_email(db, org_id, email) if email else None
    if not contact:
        return False
    if contact.last_interaction_at is None or contact.last_interaction_at < at:
        contact.last_interaction_at = at
    return True
