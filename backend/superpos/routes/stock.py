# Overview: Flask API routes for stock ledger operations; parses input and returns JSON responses.

# backend/superpos/routes/stock.py
"""
Stock ledger routes.

Every change to a product's on-hand quantity is a movement posted here (or
a sale posted through checkout). Movements are append-only; corrections are
reversals. DELETE is the administrative escape hatch.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError
from ..models import StockMovement
from ..services import stock_ledger
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_stock_movement,
    ValidationError,
)

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id", "type", "direction", "quantity", "cost", "total_cost",
        "process_number", "reason", "notes", "warehouse_id", "created_by", "date",
    },
    required_on_create={"product_id", "type", "quantity"},
)

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/movements")
def add_movement_route():
    """
    Record a stock movement.

    Body: {product_id, type: in|out|adjust, quantity > 0, direction (adjust
    only, 1 or -1), cost?, total_cost?, process_number?, reason?, notes?,
    warehouse_id?, created_by?, date?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY, partial=False)
        patch["type"] = (patch.get("type") or "").lower()
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    product_id = patch.pop("product_id")
    movement_type = patch.pop("type")
    quantity = patch.pop("quantity")

    try:
        movement = stock_ledger.record_movement(product_id, movement_type, quantity, **patch)
        return jsonify({
            "id": movement.id,
            "movement": movement.to_dict(),
            "balance": movement.product.stock_quantity,
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
def list_movements_route():
    """
    Movement history, newest first.

    Query params: product_id, type, invoice_id, limit (default HISTORY_DEFAULT_LIMIT)
    """
    limit = request.args.get("limit", type=int)
    if limit is None:
        limit = current_app.config.get("HISTORY_DEFAULT_LIMIT", 200)
    if limit < 1:
        return jsonify({"error": "limit must be >= 1"}), 400

    try:
        movements = stock_ledger.history(
            request.args.get("product_id") or None,
            movement_type=request.args.get("type") or None,
            invoice_id=request.args.get("invoice_id") or None,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code

    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200


@stock_bp.get("/movements/<int:movement_id>")
def get_movement_route(movement_id: int):
    try:
        movement = stock_ledger.get_movement(movement_id)
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    return jsonify({"movement": movement.to_dict()}), 200


@stock_bp.post("/movements/<int:movement_id>/reverse")
def reverse_movement_route(movement_id: int):
    data = request.get_json(silent=True) or {}

    try:
        reversal = stock_ledger.reverse_movement(
            movement_id,
            created_by=data.get("created_by"),
            reason=data.get("reason"),
        )
        return jsonify({
            "id": reversal.id,
            "movement": reversal.to_dict(),
            "balance": reversal.product.stock_quantity,
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.delete("/movements/<int:movement_id>")
def delete_movement_route(movement_id: int):
    try:
        stock_ledger.delete_movement(movement_id)
        return jsonify({"ok": True}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<product_id>/balance")
def balance_route(product_id: str):
    """Cached balance, ledger sum and in/out totals for one product."""
    try:
        cached = stock_ledger.current_balance(product_id)
        ledger = stock_ledger.ledger_balance(product_id)
        totals = stock_ledger.movement_totals(product_id)
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code

    return jsonify({
        "product_id": product_id,
        "stock_quantity": cached,
        "ledger_quantity": ledger,
        "consistent": cached == ledger,
        "units_in": totals["units_in"],
        "units_out": totals["units_out"],
        "cost_in": str(totals["cost_in"]),
    }), 200


@stock_bp.get("/audit")
def audit_route():
    """Every product whose cached balance disagrees with its ledger."""
    mismatches = stock_ledger.audit_ledger()
    return jsonify({"ok": not mismatches, "mismatches": mismatches}), 200
