from __future__ import annotations

from ..extensions import db
from ..services.billing_service import format_money
from superpos.time_utils import to_utc_z, utcnow
from .catalog import new_id


INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_VOID = "void"

INVOICE_STATUSES = (INVOICE_STATUS_PAID, INVOICE_STATUS_PENDING, INVOICE_STATUS_VOID)


class Invoice(db.Model):
    """
    Finalized sale.

    Created in the same unit of work as its stock-out movements, so an
    invoice row exists only if every line's movement committed.

    LIFECYCLE:
    - paid: normal checkout
    - pending: sold on account, balance_due > 0
    - void: terminal; never goes back to paid
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_invoices_number"),
        db.Index("ix_invoices_status_date", "status", "date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    number = db.Column(db.String(32), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    customer_id = db.Column(db.String(64), nullable=True, index=True)
    cashier_id = db.Column(db.String(64), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="percentage")
    discount_amount = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(6, 3, asdecimal=True), nullable=False, default=0)
    tax = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    amount_tendered = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=0)
    change_due = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=0)
    balance_due = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_PAID, index=True)

    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.String(64), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.number!r} status={self.status} total={self.total}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "date": to_utc_z(self.date),
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "subtotal": format_money(self.subtotal),
            "discount_value": str(self.discount_value),
            "discount_type": self.discount_type,
            "discount_amount": format_money(self.discount_amount),
            "tax_rate": str(self.tax_rate),
            "tax": format_money(self.tax),
            "total": format_money(self.total),
            "payment_method": self.payment_method,
            "amount_tendered": format_money(self.amount_tendered),
            "change_due": format_money(self.change_due),
            "balance_due": format_money(self.balance_due),
            "status": self.status,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """Frozen copy of a cart item at checkout time."""
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    line_subtotal = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False)

    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": format_money(self.unit_price),
            "line_subtotal": format_money(self.line_subtotal),
            "movement_id": self.movement_id,
        }


class DocumentSequence(db.Model):
    """
    Per-type document counters (receipt numbers).

    WHY: Invoice numbers must be gapless within a committed history; the
    counter row is bumped inside the checkout unit of work, so a rolled back
    checkout does not consume a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
