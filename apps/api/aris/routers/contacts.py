"""Contacts router - CRUD for organization contacts."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.schemas.auth import UserSession
from aris.schemas.contact import ContactCreate, ContactListResponse, ContactRead, ContactUpdate
from aris.services import contact_service

router = APIRouter()


def _get_or_404(db: Session, org_id: UUID, contact_id: UUID):
    contact = contact_service.get_contact(db, org_id, contact_id)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact


@router.get("", response_model=ContactListResponse)
def list_contacts(
    q: str | None = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List contacts, newest first. `q` matches name, email and company."""
    contacts, total = contact_service.list_contacts(db, session.org_id, q=q, limit=limit, offset=offset)
    return ContactListResponse(items=contacts, total=total)


@router.post(
    "",
    response_model=ContactRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_contact(
    data: ContactCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        return contact_service.create_contact(db, session.org_id, session.user_id, data)
    except contact_service.DuplicateContactError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{contact_id}", response_model=ContactRead)
def get_contact(
    contact_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session.org_id, contact_id)


@router.patch(
    "/{contact_id}",
    response_model=ContactRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_contact(
    contact_id: UUID,
    data: ContactUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    contact = _get_or_404(db, session.org_id, contact_id)
    try:
        return contact_service.update_contact(db, contact, data)
    except contact_service.DuplicateContactError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{contact_id}", status_code=204, dependencies=[Depends(require_csrf_header)])
def delete_contact(
    contact_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    contact = _get_or_404(db, session.org_id, contact_id)
    contact_service.delete_contact(db, contact)
