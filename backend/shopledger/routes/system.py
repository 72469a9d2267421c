# backend/shopledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and a ledger consistency summary for
deployment debugging.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..services import stock_service
from shopledger.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    ok = database["status"] == "healthy"
    return jsonify({
        "status": "ok" if ok else "degraded",
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), 200 if ok else 503


@system_bp.get("/api/health/ledger")
def ledger_health():
    """Materialized stock vs ledger sum, for every variant."""
    try:
        report = stock_service.verify_ledger()
        inconsistent = [row for row in report if not row["consistent"]]
        return jsonify({
            "variants_checked": len(report),
            "inconsistent": inconsistent,
            "consistent": not inconsistent,
        }), 200
    except Exception:
        current_app.logger.exception("Ledger health check failed")
        return jsonify({"error": "Internal server error"}), 500
