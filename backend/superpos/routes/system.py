# backend/superpos/routes/system.py
"""
System health endpoint.

Reports database connectivity and stock ledger consistency.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, StockMovement, Invoice
from ..services import stock_ledger
from superpos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        movement_count = db.session.query(StockMovement).count()
        invoice_count = db.session.query(Invoice).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "stock_movements": movement_count,
                "invoices": invoice_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    """Degraded when any cached balance disagrees with its ledger."""
    start_time = time.time()
    try:
        mismatches = stock_ledger.audit_ledger()
        elapsed_ms = (time.time() - start_time) * 1000
        if mismatches:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(mismatches)} product(s) out of sync with the stock ledger",
                "details": {"product_ids": [m["product_id"] for m in mismatches]},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger audit error"
        }


@system_bp.get("/api/health")
def health():
    checks = {
        "database": check_database_health(),
        "stock_ledger": check_ledger_health(),
    }
    statuses = {c["status"] for c in checks.values()}
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "degraded" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    body = {"status": overall, "timestamp": to_utc_z(utcnow()), "checks": checks}
    return body, 503 if overall == "unhealthy" else 200
