"""Product service - the local product catalogue."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from aris.db.models import Product
from aris.schemas.product import ProductCreate, ProductUpdate


class ProductError(Exception):
    """Base error for product operations."""


class DuplicateSkuError(ProductError):
    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"A product with SKU '{sku}' already exists")


def find_by_sku(db: Session, org_id: UUID, sku: str) -> Product | None:
    return (
        db.query(Product)
        .filter(Product.organization_id == org_id, Product.sku == sku)
        .first()
    )


def list_products(
    db: Session,
    org_id: UUID,
    q: str | None = None,
    category: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.query(Product).filter(Product.organization_id == org_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    total = query.count()
    items = query.order_by(Product.name).offset(offset).limit(limit).all()
    return items, total


def get_product(db: Session, org_id: UUID, product_id: UUID) -> Product | None:
    return (
        db.query(Product)
        .filter(Product.id == product_id, Product.organization_id == org_id)
        .first()
    )


def create_product(db: Session, org_id: UUID, data: ProductCreate) -> Product:
    """
    Raises:
        DuplicateSkuError: SKU already used in the org
    """
    sku = data.sku.strip() if data.sku else None
    if sku and find_by_sku(db, org_id, sku):
        raise DuplicateSkuError(sku)
    product = Product(
        organization_id=org_id,
        name=data.name.strip(),
        sku=sku,
        description=data.description,
        price=Decimal(str(data.price)) if data.price is not None else None,
        currency=data.currency.upper(),
        unit=data.unit,
        category=data.category,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def update_product(db: Session, product: Product, data: ProductUpdate) -> Product:
    updates = data.model_dump(exclude_unset=True)
    if updates.get("sku"):
        sku = updates["sku"].strip()
        existing = find_by_sku(db, product.organization_id, sku)
        if existing and existing.id != product.id:
            raise DuplicateSkuError(sku)
        updates["sku"] = sku
    for field, value in updates.items():
        if value is None and field in ("name", "currency", "unit"):
            continue
        if field == "price" and value is not None:
            value = Decimal(str(value))
        elif field == "currency":
            value = value.upper()
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, product: Product) -> None:
    db.delete(product)
    db.commit()
