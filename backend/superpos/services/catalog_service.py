# backend/superpos/services/catalog_service.py
"""
Catalog Service

The narrow interface the core uses to read and write products.

STOCK: stock_quantity is not a catalog field. It is set only by the stock
ledger; an opening quantity on create becomes an 'in' movement recorded in
the same unit of work as the product row.
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import Product, MovementType
from ..models.catalog import STOCK_STATUS_IN, STOCK_STATUS_LOW, STOCK_STATUS_OUT
from ..validation import ConflictError, ValidationError
from .concurrency import unit_of_work
from .stock_ledger import _append

PRODUCT_MUTABLE_FIELDS = {
    "name", "barcode", "category", "price", "discount", "discount_type",
    "min_stock_level", "is_active",
}
STOCK_STATUSES = {STOCK_STATUS_IN, STOCK_STATUS_LOW, STOCK_STATUS_OUT}

OPENING_BALANCE_REASON = "opening balance"


def apply_product_patch(p: Product, patch: dict) -> None:
    if "stock_quantity" in patch:
        raise ValidationError("stock_quantity is managed by the stock ledger; record a stock movement instead")
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _check_pricing(p: Product) -> None:
    # Validated on the merged row so a patch cannot combine into a bad price
    if p.discount_type == "percentage" and Decimal(p.discount or 0) > 100:
        raise ValidationError("percentage discount cannot exceed 100")


def _check_barcode_unique(barcode: str | None, exclude_id: str | None = None) -> None:
    if not barcode:
        return
    q = db.session.query(Product.id).filter(Product.barcode == barcode)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    with db.session.no_autoflush:
        clash = q.first()
    if clash is not None:
        raise ConflictError("Barcode already assigned to another product")


def get_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def find_by_barcode(barcode: str) -> Product:
    product = db.session.query(Product).filter_by(barcode=barcode.strip()).first()
    if product is None:
        raise NotFoundError("Product not found", details={"barcode": barcode})
    return product


def list_products(
    search: str | None = None,
    category: str | None = None,
    stock_status: str | None = None,
    include_inactive: bool = False,
) -> list[Product]:
    """
    Products ordered by name.

    search matches name or barcode (case-insensitive substring).
    stock_status is one of in_stock, low_stock, out_of_stock.
    """
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(like), Product.barcode.ilike(like)))
    if category:
        q = q.filter(Product.category == category)

    if stock_status is not None:
        if stock_status not in STOCK_STATUSES:
            raise ValidationError("stock_status must be one of: in_stock, low_stock, out_of_stock")
        if stock_status == STOCK_STATUS_OUT:
            q = q.filter(Product.stock_quantity <= 0)
        elif stock_status == STOCK_STATUS_LOW:
            q = q.filter(Product.stock_quantity > 0, Product.stock_quantity < Product.min_stock_level)
        else:
            q = q.filter(Product.stock_quantity > 0, Product.stock_quantity >= Product.min_stock_level)

    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def low_stock_products() -> list[Product]:
    """Active products that are out of stock or below their reorder level."""
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .filter(or_(Product.stock_quantity <= 0, Product.stock_quantity < Product.min_stock_level))
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )


def create_product(*, patch: dict, initial_quantity: int = 0, created_by: str | None = None) -> Product:
    """
    Create product using a validated patch dict.

    initial_quantity > 0 is recorded as an 'in' movement (reason
    'opening balance') committed together with the product.
    """
    if isinstance(initial_quantity, bool) or not isinstance(initial_quantity, int) or initial_quantity < 0:
        raise ValidationError("initial_quantity must be a non-negative integer")

    product = Product(stock_quantity=0)
    apply_product_patch(product, patch)
    if product.discount is None:
        product.discount = Decimal("0")
    if product.discount_type is None:
        product.discount_type = "percentage"
    if product.min_stock_level is None:
        product.min_stock_level = 0
    _check_pricing(product)
    _check_barcode_unique(product.barcode)

    with unit_of_work():
        db.session.add(product)
        db.session.flush()
        if initial_quantity > 0:
            _append(
                product_id=product.id,
                kind=MovementType.IN,
                quantity=initial_quantity,
                reason=OPENING_BALANCE_REASON,
                created_by=created_by,
            )
    return product


def update_product(product_id: str, patch: dict) -> Product:
    """Apply a validated patch; stock_quantity is rejected."""
    product = get_product(product_id)
    with unit_of_work():
        apply_product_patch(product, patch)
        _check_pricing(product)
        if "barcode" in patch:
            _check_barcode_unique(product.barcode, exclude_id=product.id)
    return product


def deactivate_product(product_id: str) -> Product:
    """Soft delete: history and balance stay, the product leaves the register."""
    product = get_product(product_id)
    with unit_of_work():
        product.is_active = False
    return product


def stock_status(product: Product) -> str:
    return product.stock_status
