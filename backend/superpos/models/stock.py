from __future__ import annotations

from enum import Enum

from ..extensions import db
from ..services.billing_service import format_money
from superpos.time_utils import to_utc_z, utcnow


class MovementType(str, Enum):
    """
    Tagged movement variant. Quantity is always a positive magnitude; the
    signed effect on the balance is:

    IN      -> +quantity
    OUT     -> -quantity
    ADJUST  -> direction * quantity (direction is +1 or -1)
    """
    IN = "in"
    OUT = "out"
    ADJUST = "adjust"

    def direction_for(self, direction: int | None = None) -> int:
        if self is MovementType.IN:
            return 1
        if self is MovementType.OUT:
            return -1
        if self is MovementType.ADJUST:
            if direction not in (1, -1):
                raise ValueError("adjust movements need direction +1 or -1")
            return direction
        raise ValueError(f"unhandled movement type {self!r}")  # pragma: no cover

    def reversed(self) -> "MovementType":
        if self is MovementType.IN:
            return MovementType.OUT
        if self is MovementType.OUT:
            return MovementType.IN
        if self is MovementType.ADJUST:
            return MovementType.ADJUST
        raise ValueError(f"unhandled movement type {self!r}")  # pragma: no cover


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    IMMUTABLE: rows are never updated. Corrections are compensating
    movements (reverses_movement_id). Administrative deletes go through the
    stock ledger, which reverses the cached product quantity in the same
    unit of work.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_date", "product_id", "date"),
        db.Index("ix_stock_movements_invoice", "invoice_id"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("direction IN (1, -1)", name="ck_stock_movements_direction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    direction = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    cost = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=True)
    process_number = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    warehouse_id = db.Column(db.String(64), nullable=True)

    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=True)
    reverses_movement_id = db.Column(
        db.Integer, db.ForeignKey("stock_movements.id"), nullable=True, unique=True
    )
    created_by = db.Column(db.String(64), nullable=True)

    # Business time; ordering is for audit only, balances are order-independent
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    @property
    def movement_type(self) -> MovementType:
        return MovementType(self.type)

    @property
    def signed_quantity(self) -> int:
        return self.direction * self.quantity

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} product_id={self.product_id} {self.type} {self.signed_quantity:+d}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "direction": self.direction,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "cost": format_money(self.cost),
            "total_cost": format_money(self.total_cost),
            "process_number": self.process_number,
            "reason": self.reason,
            "notes": self.notes,
            "warehouse_id": self.warehouse_id,
            "invoice_id": self.invoice_id,
            "reverses_movement_id": self.reverses_movement_id,
            "created_by": self.created_by,
            "date": to_utc_z(self.date),
            "created_at": to_utc_z(self.created_at),
        }
