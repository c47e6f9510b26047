# Overview: Flask API routes for invoice lookup and lifecycle; parses input and returns JSON responses.

# backend/superpos/routes/invoices.py
"""Invoice routes: listing, lookup, void and settlement of account sales."""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError
from ..services import checkout_service
from ..validation import ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    """
    Query params: status (paid|pending|void), search (number substring),
    customer_id, limit
    """
    limit = request.args.get("limit", type=int)
    try:
        invoices = checkout_service.list_invoices(
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
            customer_id=request.args.get("customer_id") or None,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "items": [inv.to_dict(include_lines=False) for inv in invoices],
        "count": len(invoices),
    }), 200


@invoices_bp.get("/<invoice_id>")
def get_invoice_route(invoice_id: str):
    try:
        invoice = checkout_service.get_invoice(invoice_id)
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.post("/<invoice_id>/void")
def void_invoice_route(invoice_id: str):
    """
    Void an invoice.

    Body: {voided_by?, reason?, restock?: bool}
    """
    data = request.get_json(silent=True) or {}
    restock = data.get("restock")
    if restock is not None and not isinstance(restock, bool):
        return jsonify({"error": "restock must be a boolean"}), 400

    try:
        invoice = checkout_service.void_invoice(
            invoice_id,
            voided_by=data.get("voided_by"),
            reason=data.get("reason"),
            restock=restock,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<invoice_id>/settle")
def settle_invoice_route(invoice_id: str):
    """
    Collect the balance of a pending invoice.

    Body: {amount, method?: cash|card|mobile}
    """
    data = request.get_json(silent=True) or {}
    if data.get("amount") is None:
        return jsonify({"error": "amount required"}), 400

    try:
        invoice = checkout_service.settle_invoice(
            invoice_id,
            data["amount"],
            method=(data.get("method") or checkout_service.TENDER_CASH),
        )
        return jsonify({"invoice": invoice.to_dict(), "change": str(invoice.change_due)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle invoice")
        return jsonify({"error": "Internal server error"}), 500
