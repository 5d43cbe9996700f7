"""Sales documents router - invoices, offers, orders and proformas."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.db.enums import SalesDocumentStatus, SalesDocumentType
from aris.schemas.auth import UserSession
from aris.schemas.product import (
    SalesDocumentCreate,
    SalesDocumentListResponse,
    SalesDocumentRead,
    SalesDocumentUpdate,
)
from aris.services import sales_document_service

router = APIRouter()


def _get_or_404(db: Session, session: UserSession, document_id: UUID):
    document = sales_document_service.get_document(db, session.org_id, document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Sales document not found")
    return document


@router.get("", response_model=SalesDocumentListResponse)
def list_documents(
    document_type: SalesDocumentType | None = None,
    status: SalesDocumentStatus | None = None,
    contact_id: UUID | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = sales_document_service.list_documents(
        db,
        session.org_id,
        document_type=document_type,
        status=status,
        contact_id=contact_id,
        limit=limit,
        offset=offset,
    )
    return SalesDocumentListResponse(items=items, total=total)


@router.post(
    "",
    response_model=SalesDocumentRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_document(
    data: SalesDocumentCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Create a document. The total is computed from the items."""
    try:
        return sales_document_service.create_document(db, session.org_id, data)
    except sales_document_service.InvalidContactError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{document_id}", response_model=SalesDocumentRead)
def get_document(
    document_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session, document_id)


@router.patch(
    "/{document_id}",
    response_model=SalesDocumentRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_document(
    document_id: UUID,
    data: SalesDocumentUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    document = _get_or_404(db, session, document_id)
    try:
        return sales_document_service.update_document(db, document, data)
    except sales_document_service.InvalidContactError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete(
    "/{document_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_document(
    document_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    document = _get_or_404(db, session, document_id)
    sales_document_service.delete_document(db, document)
