# Overview: Flask API routes for bill computation and checkout; parses input and returns JSON responses.

# backend/superpos/routes/billing.py
"""Billing routes: live bill summary for the register and checkout."""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError
from ..services import checkout_service
from ..services.billing_service import Discount, compute_summary
from ..validation import ValidationError


billing_bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def _tax_rate(data: dict):
    rate = data.get("tax_rate_percent")
    if rate is None:
        rate = current_app.config.get("DEFAULT_TAX_RATE_PERCENT", 0)
    return rate


@billing_bp.post("/summary")
def summary_route():
    """
    Compute a bill summary without writing anything.

    Body: {items: [{product_id, quantity, unit_price?}],
           discount?: {amount, type: percentage|fixed},
           tax_rate_percent?}
    """
    data = request.get_json(silent=True) or {}

    try:
        items = checkout_service.build_cart_items(data.get("items") or [])
        summary = compute_summary(items, Discount.from_payload(data.get("discount")), _tax_rate(data))
        return jsonify({
            "summary": summary.to_dict(),
            "items": [item.to_dict() for item in items],
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@billing_bp.post("/checkout")
def checkout_route():
    """
    Finalize a sale.

    Body: {items, payment: {method: cash|card|mobile|account, amount},
           discount?, tax_rate_percent?, cashier_id?, customer_id?}

    All lines post together or none do.
    """
    data = request.get_json(silent=True) or {}

    try:
        result = checkout_service.checkout(
            data.get("items") or [],
            data.get("payment"),
            discount=data.get("discount"),
            tax_rate_percent=_tax_rate(data),
            cashier_id=data.get("cashier_id"),
            customer_id=data.get("customer_id"),
        )
        current_app.logger.info("Checkout committed invoice %s", result.invoice.number)
        return jsonify(result.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check out")
        return jsonify({"error": "Internal server error"}), 500
