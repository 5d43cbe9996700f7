"""Suppliers router - supplier records, price lists, documents and sourcing queries."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.db.enums import SupplierDocumentStatus
from aris.schemas.auth import UserSession
from aris.schemas.supplier import (
    DocumentCreate,
    DocumentRead,
    DocumentReview,
    PricingCreate,
    PricingRead,
    SupplierCreate,
    SupplierQueryCreate,
    SupplierQueryRead,
    SupplierRead,
    SupplierUpdate,
)
from aris.services import supplier_service

router = APIRouter()


def _get_or_404(db: Session, session: UserSession, supplier_id: UUID):
    try:
        return supplier_service.require_supplier(db, session.org_id, supplier_id)
    except supplier_service.SupplierNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# Sourcing queries
# =============================================================================

@router.get("/queries", response_model=list[SupplierQueryRead] | SupplierQueryRead)
def get_queries(
    id: UUID | None = None,
    limit: int = Query(50, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List the caller's queries, or fetch one with `?id=`."""
    if id is not None:
        try:
            return supplier_service.require_query(db, session.org_id, session.user_id, id)
        except supplier_service.SupplierQueryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
    return supplier_service.list_queries(db, session.org_id, session.user_id, limit=limit)


@router.post(
    "/queries",
    response_model=SupplierQueryRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
async def create_query(
    data: SupplierQueryCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Store a query. Without `ai_response` the assistant answers it."""
    return await supplier_service.create_query(db, session.org_id, session.user_id, data)


@router.delete(
    "/queries/{query_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_query(
    query_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        query = supplier_service.require_query(db, session.org_id, session.user_id, query_id)
    except supplier_service.SupplierQueryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    supplier_service.delete_query(db, query)


# =============================================================================
# Suppliers
# =============================================================================

@router.get("", response_model=list[SupplierRead])
def list_suppliers(
    q: str | None = None,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return supplier_service.list_suppliers(db, session.org_id, q=q)


@router.post(
    "",
    response_model=SupplierRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_supplier(
    data: SupplierCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return supplier_service.create_supplier(db, session.org_id, data)


@router.get("/{supplier_id}", response_model=SupplierRead)
def get_supplier(
    supplier_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session, supplier_id)


@router.patch(
    "/{supplier_id}",
    response_model=SupplierRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_supplier(
    supplier_id: UUID,
    data: SupplierUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    return supplier_service.update_supplier(db, supplier, data)


@router.delete(
    "/{supplier_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_supplier(
    supplier_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    supplier_service.delete_supplier(db, supplier)


# =============================================================================
# Pricing
# =============================================================================

@router.get("/{supplier_id}/pricing", response_model=list[PricingRead])
def list_pricing(
    supplier_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    return supplier_service.list_pricing(db, supplier)


@router.post(
    "/{supplier_id}/pricing",
    response_model=PricingRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def add_pricing(
    supplier_id: UUID,
    data: PricingCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    return supplier_service.add_pricing(db, supplier, data)


# =============================================================================
# Documents
# =============================================================================

@router.get("/{supplier_id}/documents", response_model=list[DocumentRead])
def list_documents(
    supplier_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    return supplier_service.list_documents(db, supplier)


@router.post(
    "/{supplier_id}/documents",
    response_model=DocumentRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def add_document(
    supplier_id: UUID,
    data: DocumentCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """New documents start as pending until reviewed."""
    supplier = _get_or_404(db, session, supplier_id)
    return supplier_service.add_document(db, supplier, data)


@router.post(
    "/{supplier_id}/documents/{document_id}/review",
    response_model=DocumentRead,
    dependencies=[Depends(require_csrf_header)],
)
def review_document(
    supplier_id: UUID,
    document_id: UUID,
    data: DocumentReview,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    supplier = _get_or_404(db, session, supplier_id)
    document = supplier_service.get_document(db, supplier, document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return supplier_service.review_document(
        db, document, SupplierDocumentStatus(data.status), session.user_id, summary=data.summary
    )
