# Overview: Stock ledger; append-only movements plus the cached product balance.

"""
Stock Ledger Invariants (authoritative)

- For every product: products.stock_quantity == SUM(quantity * direction)
  over its stock_movements. The cached column is a materialized view of the
  ledger and is written only here, in the same unit of work as the movement.
- Movements are append-only. Corrections are compensating movements
  (reverse_movement). delete_movement is an administrative escape hatch that
  reverses the cached balance together with the delete.
- Quantity is a positive magnitude; IN is +, OUT is -, ADJUST carries a sign.
- No movement may drive the balance below zero (InsufficientStockError).
- Balances are order-independent; `date` ordering is for audit history only.
- Consistency failures are reported (LedgerConsistencyError), never
  auto-corrected.
"""

import logging
from decimal import Decimal

from sqlalchemy import func

from ..errors import (
    InsufficientStockError,
    InvalidStateError,
    LedgerConsistencyError,
    NotFoundError,
)
from ..extensions import db
from ..models import Product, StockMovement, MovementType
from ..validation import ValidationError
from superpos.time_utils import normalize_datetime
from .billing_service import to_decimal, quantize_money
from .concurrency import lock_for_update, product_locks, unit_of_work


logger = logging.getLogger(__name__)


def _parse_movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(str(value).strip().lower())
    except ValueError:
        raise ValidationError("type must be one of: in, out, adjust")


def _load_product(product_id: str, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _append(
    *,
    product_id: str,
    kind: MovementType,
    quantity: int,
    direction: int | None = None,
    cost=None,
    total_cost=None,
    process_number: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    warehouse_id: str | None = None,
    invoice_id: str | None = None,
    reverses_movement_id: int | None = None,
    created_by: str | None = None,
    date=None,
) -> StockMovement:
    """Core append logic without locking or commit."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    try:
        sign = kind.direction_for(direction)
    except ValueError as exc:
        raise ValidationError(str(exc))

    try:
        occurred_at = normalize_datetime(date)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 datetime")

    unit_cost = None
    if cost is not None:
        unit_cost = quantize_money(to_decimal(cost, field_name="cost"))
    if total_cost is not None:
        total_cost = quantize_money(to_decimal(total_cost, field_name="total_cost"))
    elif unit_cost is not None:
        total_cost = unit_cost * quantity

    product = _load_product(product_id, lock=True)
    available = product.stock_quantity or 0
    delta = sign * quantity
    if available + delta < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}: requested {quantity}, available {available}",
            details={"product_id": product_id, "requested": quantity, "available": available},
        )

    movement = StockMovement(
        product_id=product_id,
        type=kind.value,
        direction=sign,
        quantity=quantity,
        cost=unit_cost,
        total_cost=total_cost,
        process_number=process_number,
        reason=reason,
        notes=notes,
        warehouse_id=warehouse_id,
        invoice_id=invoice_id,
        reverses_movement_id=reverses_movement_id,
        created_by=created_by,
        date=occurred_at,
    )
    db.session.add(movement)
    product.stock_quantity = available + delta
    db.session.flush()

    logger.info(
        "stock movement %s recorded: product=%s type=%s delta=%+d balance=%d",
        movement.id, product_id, kind.value, delta, product.stock_quantity,
    )
    return movement


def record_movement(
    product_id: str,
    movement_type,
    quantity: int,
    *,
    direction: int | None = None,
    cost=None,
    total_cost=None,
    process_number: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    warehouse_id: str | None = None,
    invoice_id: str | None = None,
    created_by: str | None = None,
    date=None,
    commit: bool = True,
) -> StockMovement:
    """
    Append a movement and move the cached balance with it.

    Raises:
        ValidationError: quantity <= 0, unknown type, adjust without direction
        NotFoundError: unknown product
        InsufficientStockError: the movement would make the balance negative
        PersistenceError: storage failure (nothing is written)

    commit=False leaves the unit of work open for the caller (checkout);
    the caller then owns commit/rollback.
    """
    kind = _parse_movement_type(movement_type)
    kwargs = dict(
        product_id=product_id,
        kind=kind,
        quantity=quantity,
        direction=direction,
        cost=cost,
        total_cost=total_cost,
        process_number=process_number,
        reason=reason,
        notes=notes,
        warehouse_id=warehouse_id,
        invoice_id=invoice_id,
        created_by=created_by,
        date=date,
    )

    with product_locks([product_id]):
        if not commit:
            return _append(**kwargs)
        with unit_of_work():
            movement = _append(**kwargs)
        return movement


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise NotFoundError("Stock movement not found", details={"movement_id": movement_id})
    return movement


def current_balance(product_id: str) -> int:
    """Cached on-hand quantity."""
    return int(_load_product(product_id).stock_quantity or 0)


def ledger_balance(product_id: str) -> int:
    """On-hand quantity recomputed from the movement history."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity * StockMovement.direction), 0)
    ).filter(StockMovement.product_id == product_id).scalar()
    return int(total or 0)


def reconcile(product_id: str) -> int:
    """
    Compare the cached balance with the ledger sum.

    Returns the balance when they agree. A mismatch means the data was
    corrupted outside the ledger; it is raised, not repaired.
    """
    cached = current_balance(product_id)
    recomputed = ledger_balance(product_id)
    if cached != recomputed:
        logger.error(
            "ledger mismatch for product %s: cached=%d ledger=%d", product_id, cached, recomputed
        )
        raise LedgerConsistencyError(
            "Cached stock quantity disagrees with the stock ledger",
            details={"product_id": product_id, "cached": cached, "ledger": recomputed},
        )
    return cached


def audit_ledger() -> list[dict]:
    """Every product whose cached balance differs from its ledger sum."""
    sums = (
        db.session.query(
            StockMovement.product_id.label("product_id"),
            func.sum(StockMovement.quantity * StockMovement.direction).label("ledger"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )
    rows = (
        db.session.query(Product, func.coalesce(sums.c.ledger, 0))
        .outerjoin(sums, sums.c.product_id == Product.id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    mismatches = []
    for product, ledger in rows:
        cached = int(product.stock_quantity or 0)
        ledger = int(ledger or 0)
        if cached != ledger:
            mismatches.append({
                "product_id": product.id,
                "name": product.name,
                "cached": cached,
                "ledger": ledger,
                "difference": cached - ledger,
            })
    if mismatches:
        logger.error("ledger audit found %d inconsistent products", len(mismatches))
    return mismatches


def history(
    product_id: str | None = None,
    *,
    movement_type=None,
    limit: int | None = None,
    invoice_id: str | None = None,
) -> list[StockMovement]:
    """Movements newest first (date, then insertion order)."""
    q = db.session.query(StockMovement)
    if product_id is not None:
        _load_product(product_id)
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == _parse_movement_type(movement_type).value)
    if invoice_id is not None:
        q = q.filter(StockMovement.invoice_id == invoice_id)

    q = q.order_by(StockMovement.date.desc(), StockMovement.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def reverse_movement(
    movement_id: int,
    *,
    created_by: str | None = None,
    reason: str | None = None,
    invoice_id: str | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Append the compensating movement for movement_id.

    in <-> out, adjust flips direction. A movement is reversed at most once
    and reversals themselves cannot be reversed. Sale movements are undone
    by voiding their invoice.
    """
    original = get_movement(movement_id)

    if original.invoice_id is not None:
        raise InvalidStateError(
            "Movement belongs to an invoice; void the invoice instead",
            details={"movement_id": movement_id, "invoice_id": original.invoice_id},
        )
    if original.reverses_movement_id is not None:
        raise InvalidStateError(
            "Cannot reverse a reversing movement",
            details={"movement_id": movement_id, "reverses_movement_id": original.reverses_movement_id},
        )
    already = db.session.query(StockMovement.id).filter_by(reverses_movement_id=original.id).first()
    if already is not None:
        raise InvalidStateError(
            "Movement has already been reversed",
            details={"movement_id": movement_id, "reversal_id": already[0]},
        )

    kind = original.movement_type.reversed()
    kwargs = dict(
        product_id=original.product_id,
        kind=kind,
        quantity=original.quantity,
        direction=-original.direction if kind is MovementType.ADJUST else None,
        cost=original.cost,
        process_number=original.process_number,
        reason=reason or f"reversal of movement {original.id}",
        warehouse_id=original.warehouse_id,
        invoice_id=invoice_id if invoice_id is not None else original.invoice_id,
        reverses_movement_id=original.id,
        created_by=created_by,
    )

    with product_locks([original.product_id]):
        if not commit:
            return _append(**kwargs)
        with unit_of_work():
            reversal = _append(**kwargs)
        logger.info("movement %s reversed by %s", movement_id, reversal.id)
        return reversal


def delete_movement(movement_id: int) -> None:
    """
    Administrative delete: remove the row and back its effect out of the
    cached balance in one unit of work.

    Refused for sale movements (void the invoice instead), for movements
    that have been reversed (delete the reversal first), and when backing
    the movement out would make the balance negative.
    """
    movement = get_movement(movement_id)
    product_id = movement.product_id

    if movement.invoice_id is not None:
        raise InvalidStateError(
            "Movement belongs to an invoice; void the invoice instead",
            details={"movement_id": movement_id, "invoice_id": movement.invoice_id},
        )
    reversed_by = db.session.query(StockMovement.id).filter_by(reverses_movement_id=movement.id).first()
    if reversed_by is not None:
        raise ValidationError(
            f"Movement {movement_id} is referenced by reversal {reversed_by[0]}; delete the reversal first"
        )

    with product_locks([product_id]):
        with unit_of_work():
            product = _load_product(product_id, lock=True)
            available = product.stock_quantity or 0
            new_balance = available - movement.signed_quantity
            if new_balance < 0:
                raise InsufficientStockError(
                    "Deleting this movement would make the balance negative",
                    details={
                        "product_id": product.id,
                        "movement_id": movement_id,
                        "available": available,
                        "requested": movement.signed_quantity,
                    },
                )
            product.stock_quantity = new_balance
            db.session.delete(movement)

    logger.warning("movement %s deleted administratively; product %s balance %d",
                   movement_id, product_id, new_balance)


def movement_totals(product_id: str) -> dict:
    """Inbound/outbound unit totals and inbound cost for one product."""
    _load_product(product_id)
    rows = (
        db.session.query(
            StockMovement.direction,
            func.coalesce(func.sum(StockMovement.quantity), 0),
            func.sum(StockMovement.total_cost),
        )
        .filter(StockMovement.product_id == product_id)
        .group_by(StockMovement.direction)
        .all()
    )
    totals = {"units_in": 0, "units_out": 0, "cost_in": Decimal("0.00")}
    for direction, units, cost in rows:
        if direction > 0:
            totals["units_in"] = int(units)
            totals["cost_in"] = quantize_money(to_decimal(cost))
        else:
            totals["units_out"] = int(units)
    return totals
