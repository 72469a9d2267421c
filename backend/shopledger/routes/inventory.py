# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_staff
from ..errors import DomainError, ValidationError
from ..services import stock_service
from ..validation import coerce_int, require_choice, require_int, require_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@require_actor
@require_staff
def list_stock_route():
    """
    Current stock per variant.

    Query: low_stock=<threshold>, include_inactive=true
    """
    try:
        threshold = request.args.get("low_stock")
        variants = stock_service.list_stock(
            low_stock_threshold=coerce_int(threshold, "low_stock") if threshold is not None else None,
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        )
        return jsonify({"variants": [v.to_dict() for v in variants]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/adjust")
@require_actor
@require_staff
def adjust_stock_route():
    """
    Operator stock adjustment (RESTOCK, ADJUSTMENT or RETURN).

    SALE entries are system-generated and cannot be posted here.
    Body: {variant_id, quantity_change, change_type, reason}
    """
    try:
        data = request.get_json(silent=True) or {}
        variant_id = require_int(data, "variant_id")
        quantity_change = require_int(data, "quantity_change")
        if quantity_change == 0:
            raise ValidationError("quantity_change must be non-zero", {"field": "quantity_change"})
        change_type = require_choice(data.get("change_type"), "change_type", stock_service.MANUAL_CHANGE_TYPES)
        reason = require_str(data, "reason", max_length=255)

        change = stock_service.adjust_stock(
            variant_id,
            quantity_change,
            change_type,
            reason,
            performed_by=g.actor_id,
        )
        return jsonify(change.to_dict()), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:variant_id>/history")
@require_actor
@require_staff
def ledger_history_route(variant_id: int):
    try:
        limit = request.args.get("limit")
        entries = stock_service.get_ledger(
            variant_id,
            limit=coerce_int(limit, "limit") if limit is not None else 100,
            change_type=(request.args.get("change_type") or "").upper() or None,
        )
        variant = stock_service.get_variant(variant_id)
        return jsonify({
            "variant": variant.to_dict(),
            "entries": [e.to_dict() for e in entries],
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/audit")
@require_actor
@require_staff
def ledger_audit_route():
    """Compare each variant's stock_quantity with its ledger sum."""
    try:
        variant_id = request.args.get("variant_id")
        report = stock_service.verify_ledger(
            coerce_int(variant_id, "variant_id") if variant_id is not None else None
        )
        return jsonify({
            "variants": report,
            "consistent": all(row["consistent"] for row in report),
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to audit ledger")
        return jsonify({"error": "Internal server error"}), 500
