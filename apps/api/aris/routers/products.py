"""Products router - the org's product catalogue."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.schemas.auth import UserSession
from aris.schemas.product import ProductCreate, ProductListResponse, ProductRead, ProductUpdate
from aris.services import product_service

router = APIRouter()


def _get_or_404(db: Session, session: UserSession, product_id: UUID):
    product = product_service.get_product(db, session.org_id, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("", response_model=ProductListResponse)
def list_products(
    q: str | None = None,
    category: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    items, total = product_service.list_products(
        db, session.org_id, q=q, category=category, limit=limit, offset=offset
    )
    return ProductListResponse(items=items, total=total)


@router.post(
    "",
    response_model=ProductRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_product(
    data: ProductCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    try:
        return product_service.create_product(db, session.org_id, data)
    except product_service.DuplicateSkuError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session, product_id)


@router.patch(
    "/{product_id}",
    response_model=ProductRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_product(
    product_id: UUID,
    data: ProductUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    product = _get_or_404(db, session, product_id)
    try:
        return product_service.update_product(db, product, data)
    except product_service.DuplicateSkuError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete(
    "/{product_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_product(
    product_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    product = _get_or_404(db, session, product_id)
    product_service.delete_product(db, product)
