# Overview: Pure money arithmetic for the register; no database access.

"""
Billing Engine

Computes line prices, bill summaries and change from cart state.

Money invariants (authoritative):
- All amounts are Decimal, never binary floats. Floats coming from JSON are
  converted through their string form so 0.1 stays 0.1.
- Each derived field (sale price, subtotal, discount, tax, total, change) is
  rounded exactly once to 2 places, ROUND_HALF_UP.
- total == taxable + tax_amount holds after rounding.
- Every function is deterministic: same inputs, same output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum

from ..errors import InsufficientPaymentError, NotFoundError, StockLimitExceededError
from ..validation import ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

    @classmethod
    def parse(cls, value) -> "DiscountType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError("discount_type must be 'percentage' or 'fixed'")


def to_decimal(value, *, field_name: str = "amount") -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number")
    else:
        raise ValidationError(f"{field_name} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(quantize_money(Decimal(value)))


def compute_line_price(price, discount=None, discount_type=DiscountType.PERCENTAGE) -> Decimal:
    """
    Unit sale price after the product-level discount, clamped at 0.

    percentage: price - price * discount / 100
    fixed:      price - discount
    """
    price = to_decimal(price, field_name="price")
    discount = to_decimal(discount, field_name="discount")
    kind = DiscountType.parse(discount_type)

    if kind is DiscountType.PERCENTAGE:
        unit = price - price * discount / HUNDRED
    elif kind is DiscountType.FIXED:
        unit = price - discount
    else:  # pragma: no cover
        raise ValidationError(f"unhandled discount type {kind}")

    if unit < ZERO:
        unit = ZERO
    return quantize_money(unit)


@dataclass(frozen=True)
class Discount:
    amount: Decimal = ZERO
    type: DiscountType = DiscountType.PERCENTAGE

    @classmethod
    def from_payload(cls, payload) -> "Discount":
        if payload is None:
            return cls()
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("discount must be an object with amount and type")
        return cls(
            amount=to_decimal(payload.get("amount"), field_name="discount.amount"),
            type=DiscountType.parse(payload.get("type", DiscountType.PERCENTAGE)),
        )

    def to_dict(self) -> dict:
        return {"amount": str(self.amount), "type": self.type.value}


@dataclass(frozen=True)
class CartItem:
    product_id: str
    unit_price: Decimal
    quantity: int
    name: str | None = None

    @property
    def line_subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": format_money(self.unit_price),
            "quantity": self.quantity,
            "line_subtotal": format_money(self.line_subtotal),
        }


@dataclass(frozen=True)
class BillSummary:
    subtotal: Decimal
    discount_amount: Decimal
    taxable: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": format_money(self.subtotal),
            "discount_amount": format_money(self.discount_amount),
            "taxable": format_money(self.taxable),
            "tax_rate": str(self.tax_rate),
            "tax_amount": format_money(self.tax_amount),
            "total": format_money(self.total),
        }


def compute_summary(items, discount: Discount | None = None, tax_rate_percent=ZERO) -> BillSummary:
    """
    Bill summary for a set of cart items.

    1. subtotal = sum of line subtotals
    2. discount_amount = percentage of subtotal or fixed amount, clamped to [0, subtotal]
    3. taxable = subtotal - discount_amount
    4. tax_amount = taxable * rate / 100
    5. total = taxable + tax_amount
    """
    discount = Discount.from_payload(discount)
    rate = to_decimal(tax_rate_percent, field_name="tax_rate")
    if rate < ZERO:
        raise ValidationError("tax_rate must be >= 0")

    subtotal = quantize_money(sum((item.line_subtotal for item in items), ZERO))

    if discount.type is DiscountType.PERCENTAGE:
        raw_discount = subtotal * discount.amount / HUNDRED
    elif discount.type is DiscountType.FIXED:
        raw_discount = discount.amount
    else:  # pragma: no cover
        raise ValidationError(f"unhandled discount type {discount.type}")
    discount_amount = quantize_money(min(max(raw_discount, ZERO), subtotal))

    taxable = subtotal - discount_amount
    tax_amount = quantize_money(taxable * rate / HUNDRED)
    total = taxable + tax_amount

    return BillSummary(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable=taxable,
        tax_rate=rate,
        tax_amount=tax_amount,
        total=total,
    )


def compute_change(total, cash_received) -> Decimal:
    total = quantize_money(to_decimal(total, field_name="total"))
    cash = quantize_money(to_decimal(cash_received, field_name="cash_received"))
    if cash < total:
        raise InsufficientPaymentError(
            "Cash received is less than the total amount",
            details={"total": str(total), "cash_received": str(cash), "short_by": str(total - cash)},
        )
    return cash - total


@dataclass
class Cart:
    """
    In-memory cart for one active sale.

    Products are anything exposing id, name, sale_price and stock_quantity
    (the Product model does). Unit prices are snapshotted at add-time so later
    catalog edits do not change an open cart.
    """
    discount: Discount = field(default_factory=Discount)
    tax_rate_percent: Decimal = ZERO
    _items: dict[str, CartItem] = field(default_factory=dict, init=False, repr=False)
    _summary: BillSummary | None = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.tax_rate_percent = to_decimal(self.tax_rate_percent, field_name="tax_rate")
        self._recompute()

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    @property
    def summary(self) -> BillSummary:
        return self._summary

    def __len__(self) -> int:
        return len(self._items)

    def _recompute(self) -> None:
        self._summary = compute_summary(self.items, self.discount, self.tax_rate_percent)

    @staticmethod
    def _guard(product, quantity: int) -> None:
        available = int(product.stock_quantity or 0)
        if quantity > available:
            raise StockLimitExceededError(
                f"Only {available} units of {product.name} in stock",
                details={"product_id": product.id, "requested": quantity, "available": available},
            )

    def add_product(self, product, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")
        existing = self._items.get(product.id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._guard(product, new_quantity)

        if existing is not None:
            item = CartItem(existing.product_id, existing.unit_price, new_quantity, existing.name)
        else:
            item = CartItem(product.id, Decimal(product.sale_price), new_quantity, product.name)
        self._items[product.id] = item
        self._recompute()
        return item

    def set_quantity(self, product, quantity: int) -> CartItem:
        existing = self._items.get(product.id)
        if existing is None:
            raise NotFoundError("Product is not in the cart", details={"product_id": product.id})
        if quantity < 1:
            raise ValidationError("quantity must be >= 1; remove the item instead")
        self._guard(product, quantity)

        item = CartItem(existing.product_id, existing.unit_price, quantity, existing.name)
        self._items[product.id] = item
        self._recompute()
        return item

    def remove(self, product_id: str) -> None:
        if self._items.pop(product_id, None) is None:
            raise NotFoundError("Product is not in the cart", details={"product_id": product_id})
        self._recompute()

    def set_discount(self, amount, discount_type=DiscountType.PERCENTAGE) -> BillSummary:
        self.discount = Discount(
            amount=to_decimal(amount, field_name="discount.amount"),
            type=DiscountType.parse(discount_type),
        )
        self._recompute()
        return self._summary

    def set_tax_rate(self, rate) -> BillSummary:
        rate = to_decimal(rate, field_name="tax_rate")
        if rate < ZERO:
            raise ValidationError("tax_rate must be >= 0")
        self.tax_rate_percent = rate
        self._recompute()
        return self._summary

    def clear(self) -> None:
        self._items.clear()
        self._recompute()

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "discount": self.discount.to_dict(),
            "summary": self._summary.to_dict(),
        }
