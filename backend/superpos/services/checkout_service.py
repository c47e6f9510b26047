# Overview: Checkout and invoice lifecycle; turns a cart into an invoice plus stock-out movements.

"""
Checkout Service

WHY: A sale is only real once the stock leaves the ledger and the invoice
exists. Both happen in one unit of work: every line's 'out' movement, the
cached balances, the receipt number and the invoice commit together or not
at all.

TENDER TYPES:
- cash: cash_received must cover the total; change is returned
- card, mobile: charged exactly the total
- account: sold on credit to a customer; invoice stays pending with a
  balance due until settled

INVOICE LIFECYCLE:
- created -> paid      normal checkout
- created -> pending   account sale
- created -> rejected  payment or movement failure; nothing is persisted
- pending -> paid      settle_invoice
- paid|pending -> void void_invoice (terminal)

VOID DECISION: voiding restocks by default. Every sale movement of the
invoice gets a compensating 'in' movement (reason 'void'), so the ledger
keeps describing the goods actually on the shelf. Pass restock=False (or set
VOID_RESTOCKS_INVENTORY=False) when the goods did not come back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import exists, update
from sqlalchemy.orm import aliased

from ..errors import InsufficientPaymentError, InvalidStateError, NotFoundError, PosError
from ..extensions import db
from ..models import DocumentSequence, Invoice, InvoiceLine, MovementType, Product, StockMovement
from ..models.invoices import (
    INVOICE_STATUSES,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_VOID,
)
from ..validation import ValidationError
from superpos.time_utils import utcnow
from .billing_service import (
    BillSummary,
    CartItem,
    Discount,
    ZERO,
    compute_change,
    compute_summary,
    quantize_money,
    to_decimal,
)
from .concurrency import lock_for_update, product_locks, unit_of_work
from .stock_ledger import _append


logger = logging.getLogger(__name__)


# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

TENDER_CASH = "cash"
TENDER_CARD = "card"
TENDER_MOBILE = "mobile"
TENDER_ACCOUNT = "account"

VALID_TENDER_TYPES = [TENDER_CASH, TENDER_CARD, TENDER_MOBILE, TENDER_ACCOUNT]

SALE_REASON = "sale"
VOID_REASON = "void"
INVOICE_DOCUMENT_TYPE = "INVOICE"
INVOICE_PREFIX = "INV"


@dataclass(frozen=True)
class Payment:
    method: str
    amount: Decimal | None = None

    @classmethod
    def from_payload(cls, payload) -> "Payment":
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("payment must be an object with method and amount")
        method = str(payload.get("method") or "").strip().lower()
        if method not in VALID_TENDER_TYPES:
            raise ValidationError(f"Invalid payment method: {method!r}. Must be one of {VALID_TENDER_TYPES}")
        amount = payload.get("amount")
        return cls(method=method, amount=None if amount is None else to_decimal(amount, field_name="payment.amount"))


@dataclass(frozen=True)
class CheckoutResult:
    invoice: Invoice
    summary: BillSummary
    change: Decimal
    balance_due: Decimal

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice.id,
            "invoice_number": self.invoice.number,
            "status": self.invoice.status,
            "summary": self.summary.to_dict(),
            "change": str(quantize_money(self.change)),
            "balance_due": str(quantize_money(self.balance_due)),
        }


def _default_tax_rate():
    if has_app_context():
        return current_app.config.get("DEFAULT_TAX_RATE_PERCENT", ZERO)
    return ZERO


def _default_void_restocks() -> bool:
    if has_app_context():
        return bool(current_app.config.get("VOID_RESTOCKS_INVENTORY", True))
    return True


def build_cart_items(lines) -> list[CartItem]:
    """
    Cart items from request lines [{product_id, quantity, unit_price?}].

    unit_price is the price snapshotted when the item entered the cart; when
    omitted, the product's current sale price is used.
    A supplied price is rounded to cents once, here.
    """
    if not isinstance(lines, (list, tuple)):
        raise ValidationError("items must be a list")

    items = []
    for index, line in enumerate(lines):
        if isinstance(line, CartItem):
            items.append(line)
            continue
        if not isinstance(line, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = line.get("product_id")
        if not product_id:
            raise ValidationError(f"items[{index}].product_id is required")
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"items[{index}].quantity must be an integer >= 1")

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        if line.get("unit_price") is not None:
            unit_price = quantize_money(to_decimal(line["unit_price"], field_name=f"items[{index}].unit_price"))
            if unit_price < ZERO:
                raise ValidationError(f"items[{index}].unit_price must be >= 0")
        else:
            unit_price = product.sale_price
        items.append(CartItem(product.id, unit_price, quantity, product.name))
    return items


def _merge_lines(items: list[CartItem]) -> list[CartItem]:
    # One line per product keeps the stock check honest for duplicate rows
    merged: dict[tuple, CartItem] = {}
    for item in items:
        key = (item.product_id, item.unit_price)
        if key in merged:
            prev = merged[key]
            merged[key] = CartItem(prev.product_id, prev.unit_price, prev.quantity + item.quantity, prev.name)
        else:
            merged[key] = item
    return list(merged.values())


def _settle_tender(payment: Payment, total: Decimal, customer_id: str | None) -> tuple[str, Decimal, Decimal, Decimal]:
    """Returns (status, amount_tendered, change_due, balance_due)."""
    if payment.method == TENDER_CASH:
        if payment.amount is None:
            raise ValidationError("payment.amount (cash received) is required for cash")
        change = compute_change(total, payment.amount)
        return INVOICE_STATUS_PAID, quantize_money(payment.amount), change, ZERO

    if payment.method in (TENDER_CARD, TENDER_MOBILE):
        amount = total if payment.amount is None else quantize_money(payment.amount)
        if amount < total:
            raise InsufficientPaymentError(
                "Payment is less than the total amount",
                details={"total": str(total), "amount": str(amount)},
            )
        if amount > total:
            raise ValidationError("Non-cash tender cannot exceed the total")
        return INVOICE_STATUS_PAID, amount, ZERO, ZERO

    if payment.method == TENDER_ACCOUNT:
        if not customer_id:
            raise ValidationError("customer_id is required for account sales")
        deposit = ZERO if payment.amount is None else quantize_money(payment.amount)
        if deposit < ZERO or deposit > total:
            raise ValidationError("Account deposit must be between 0 and the total")
        if deposit == total:
            return INVOICE_STATUS_PAID, deposit, ZERO, ZERO
        return INVOICE_STATUS_PENDING, deposit, ZERO, total - deposit

    raise ValidationError(f"Invalid payment method: {payment.method!r}")  # pragma: no cover


def _next_invoice_number() -> str:
    """
    Allocate the next receipt number inside the current unit of work.

    The counter row is bumped in the same transaction as the invoice, so a
    rolled back checkout releases its number.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == INVOICE_DOCUMENT_TYPE)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=INVOICE_DOCUMENT_TYPE)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(DocumentSequence(document_type=INVOICE_DOCUMENT_TYPE, next_number=2))
        db.session.flush()
        number = 1
    return f"{INVOICE_PREFIX}-{number:06d}"


def checkout(
    items,
    payment,
    *,
    discount=None,
    tax_rate_percent=None,
    cashier_id: str | None = None,
    customer_id: str | None = None,
) -> CheckoutResult:
    """
    Finalize a sale.

    1. Compute the bill summary.
    2. Validate the tender (cash must cover the total before anything is written).
    3. Lock every product, then record one 'out' movement per line.
    4. Persist the invoice and its lines.
    Everything commits together; any failure rolls every write back.

    Raises:
        ValidationError: empty cart, bad payment input
        NotFoundError: unknown product
        InsufficientPaymentError: tender below total
        InsufficientStockError: a line exceeds current stock (nothing committed)
        PersistenceError: storage failure (nothing committed)
    """
    cart_items = _merge_lines(build_cart_items(items))
    if not cart_items:
        raise ValidationError("Cannot check out an empty cart")

    payment = Payment.from_payload(payment)
    discount = Discount.from_payload(discount)
    if tax_rate_percent is None:
        tax_rate_percent = _default_tax_rate()

    summary = compute_summary(cart_items, discount, tax_rate_percent)
    status, tendered, change, balance_due = _settle_tender(payment, summary.total, customer_id)

    product_ids = [item.product_id for item in cart_items]
    try:
        with product_locks(product_ids):
            with unit_of_work():
                for item in cart_items:
                    product = db.session.get(Product, item.product_id)
                    if product is None or not product.is_active:
                        raise NotFoundError(
                            "Product is not available for sale",
                            details={"product_id": item.product_id},
                        )

                # Header first so the movements can reference it; nothing is
                # visible to other sessions until commit.
                invoice = Invoice(
                    number=_next_invoice_number(),
                    date=utcnow(),
                    customer_id=customer_id,
                    cashier_id=cashier_id,
                    subtotal=summary.subtotal,
                    discount_value=discount.amount,
                    discount_type=discount.type.value,
                    discount_amount=summary.discount_amount,
                    tax_rate=summary.tax_rate,
                    tax=summary.tax_amount,
                    total=summary.total,
                    payment_method=payment.method,
                    amount_tendered=tendered,
                    change_due=change,
                    balance_due=balance_due,
                    status=status,
                    settled_at=utcnow() if status == INVOICE_STATUS_PAID else None,
                )
                db.session.add(invoice)
                db.session.flush()

                for position, item in enumerate(cart_items, start=1):
                    movement = _append(
                        product_id=item.product_id,
                        kind=MovementType.OUT,
                        quantity=item.quantity,
                        reason=SALE_REASON,
                        process_number=invoice.number,
                        invoice_id=invoice.id,
                        created_by=cashier_id,
                    )
                    db.session.add(InvoiceLine(
                        invoice_id=invoice.id,
                        position=position,
                        product_id=item.product_id,
                        product_name=item.name,
                        quantity=item.quantity,
                        unit_price=quantize_money(item.unit_price),
                        line_subtotal=quantize_money(item.line_subtotal),
                        movement_id=movement.id,
                    ))
                db.session.flush()
    except PosError as exc:
        logger.warning("checkout rejected, nothing committed: %s %s", exc, exc.details)
        raise

    logger.info(
        "checkout committed: invoice=%s number=%s total=%s method=%s lines=%d",
        invoice.id, invoice.number, summary.total, payment.method, len(cart_items),
    )
    return CheckoutResult(invoice=invoice, summary=summary, change=change, balance_due=balance_due)


def get_invoice(invoice_id: str) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    status: str | None = None,
    search: str | None = None,
    customer_id: str | None = None,
    limit: int | None = None,
) -> list[Invoice]:
    """Invoices newest first, optionally filtered by status, number or customer."""
    q = db.session.query(Invoice)
    if status is not None:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of {list(INVOICE_STATUSES)}")
        q = q.filter(Invoice.status == status)
    if search:
        q = q.filter(Invoice.number.ilike(f"%{search.strip()}%"))
    if customer_id:
        q = q.filter(Invoice.customer_id == customer_id)
    q = q.order_by(Invoice.date.desc(), Invoice.number.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def settle_invoice(invoice_id: str, amount, *, method: str = TENDER_CASH) -> Invoice:
    """
    Collect the balance of a pending (account) invoice.

    Cash over-tender is recorded as change_due on the invoice; other
    tenders must match the balance exactly.
    """
    if method not in (TENDER_CASH, TENDER_CARD, TENDER_MOBILE):
        raise ValidationError("Settlement method must be cash, card or mobile")
    amount = quantize_money(to_decimal(amount, field_name="amount"))

    with unit_of_work():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        if invoice.status != INVOICE_STATUS_PENDING:
            raise InvalidStateError(
                f"Cannot settle an invoice with status {invoice.status}",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )

        due = Decimal(invoice.balance_due)
        if method == TENDER_CASH:
            change = compute_change(due, amount)
        else:
            if amount != due:
                raise InsufficientPaymentError(
                    "Non-cash settlement must equal the balance due",
                    details={"balance_due": str(due), "amount": str(amount)},
                )
            change = ZERO

        invoice.amount_tendered = Decimal(invoice.amount_tendered) + amount - change
        invoice.change_due = change
        invoice.balance_due = ZERO
        invoice.status = INVOICE_STATUS_PAID
        invoice.settled_at = utcnow()

    logger.info("invoice %s settled (change %s)", invoice_id, change)
    return invoice


def void_invoice(
    invoice_id: str,
    *,
    voided_by: str | None = None,
    reason: str | None = None,
    restock: bool | None = None,
) -> Invoice:
    """
    Void a paid or pending invoice (one-way).

    With restock (the default), each sale movement of the invoice gets a
    compensating 'in' movement in the same unit of work.
    """
    if restock is None:
        restock = _default_void_restocks()

    invoice = get_invoice(invoice_id)
    if invoice.status == INVOICE_STATUS_VOID:
        raise InvalidStateError("Invoice already voided", details={"invoice_id": invoice_id})

    reversal = aliased(StockMovement)
    sale_movements = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.invoice_id == invoice_id,
            StockMovement.type == MovementType.OUT.value,
            StockMovement.reverses_movement_id.is_(None),
            ~exists().where(reversal.reverses_movement_id == StockMovement.id),
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    product_ids = [m.product_id for m in sale_movements]

    with product_locks(product_ids):
        with unit_of_work():
            invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
            if invoice.status == INVOICE_STATUS_VOID:
                raise InvalidStateError("Invoice already voided", details={"invoice_id": invoice_id})

            if restock:
                for movement in sale_movements:
                    _append(
                        product_id=movement.product_id,
                        kind=MovementType.IN,
                        quantity=movement.quantity,
                        reason=VOID_REASON,
                        process_number=invoice.number,
                        invoice_id=invoice.id,
                        reverses_movement_id=movement.id,
                        created_by=voided_by,
                    )

            invoice.status = INVOICE_STATUS_VOID
            invoice.voided_at = utcnow()
            invoice.voided_by = voided_by
            invoice.void_reason = reason

    logger.info("invoice %s voided (restock=%s)", invoice_id, restock)
    return invoice
