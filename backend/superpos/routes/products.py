# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/superpos/routes/products.py
"""
Product catalog routes.

STOCK: stock_quantity is read-only here. An opening balance can be given on
create as initial_quantity; every later change goes through /api/stock.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError
from ..models import Product
from ..services import catalog_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "barcode", "category", "price", "discount", "discount_type",
        "min_stock_level", "is_active",
    },
    required_on_create={"name", "price"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _parse_bool_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


@products_bp.get("")
def list_products_route():
    """
    List products.

    Query params:
    - search: substring of name or barcode
    - category: exact category
    - stock_status: in_stock | low_stock | out_of_stock
    - include_inactive: true to include deactivated products
    """
    try:
        products = catalog_service.list_products(
            search=request.args.get("search"),
            category=request.args.get("category"),
            stock_status=request.args.get("stock_status") or None,
            include_inactive=_parse_bool_arg("include_inactive"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/low-stock")
def low_stock_route():
    products = catalog_service.low_stock_products()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/barcode/<code>")
def barcode_lookup_route(code: str):
    """Register scan: the product carrying this barcode."""
    try:
        product = catalog_service.find_by_barcode(code)
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    return jsonify({"product": product.to_dict()}), 200


@products_bp.get("/<product_id>")
def get_product_route(product_id: str):
    try:
        product = catalog_service.get_product(product_id)
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("")
def create_product_route():
    """
    Create a product.

    Body: product fields plus optional initial_quantity (opening balance,
    recorded as an 'in' movement) and created_by.
    """
    payload = dict(request.get_json(silent=True) or {})
    initial_quantity = payload.pop("initial_quantity", 0)
    created_by = payload.pop("created_by", None)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = catalog_service.create_product(
            patch=patch, initial_quantity=initial_quantity, created_by=created_by,
        )
        current_app.logger.info("Product %s created", product.id)
        return jsonify({"product": product.to_dict()}), 201
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<product_id>")
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}
    if isinstance(payload, dict) and "stock_quantity" in payload:
        return jsonify({"error": "stock_quantity is managed by the stock ledger; record a stock movement instead"}), 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = catalog_service.update_product(product_id, patch)
        return jsonify({"product": product.to_dict()}), 200
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<product_id>")
def deactivate_product_route(product_id: str):
    """Soft delete; movements and invoices keep referencing the product."""
    try:
        product = catalog_service.deactivate_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "Internal server error"}), 500
