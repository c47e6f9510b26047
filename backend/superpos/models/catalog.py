from __future__ import annotations

import uuid

from ..extensions import db
from ..services.billing_service import compute_line_price, format_money
from superpos.time_utils import to_utc_z


STOCK_STATUS_IN = "in_stock"
STOCK_STATUS_LOW = "low_stock"
STOCK_STATUS_OUT = "out_of_stock"


def new_id() -> str:
    return str(uuid.uuid4())


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    stock_quantity is a cached balance, a materialized view of the
    stock_movements ledger. It is only ever written by the stock ledger in
    the same unit of work as the movement that changes it. Catalog
    create/update paths never set it directly.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active_category", "is_active", "category"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(120), nullable=True)

    price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    discount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="percentage")

    # Cached ledger balance (see class docstring)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def sale_price(self):
        return compute_line_price(self.price, self.discount, self.discount_type)

    @property
    def stock_status(self) -> str:
        qty = self.stock_quantity or 0
        if qty <= 0:
            return STOCK_STATUS_OUT
        if qty < (self.min_stock_level or 0):
            return STOCK_STATUS_LOW
        return STOCK_STATUS_IN

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "category": self.category,
            "price": format_money(self.price),
            "discount": format_money(self.discount),
            "discount_type": self.discount_type,
            "sale_price": format_money(self.sale_price),
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "stock_status": self.stock_status,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
