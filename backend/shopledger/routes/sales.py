# Overview: Flask API routes for point-of-sale sales; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_staff
from ..errors import DomainError
from ..services import report_service, sale_service
from ..validation import coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
@require_staff
def create_sale_route():
    """
    Execute a point-of-sale sale in one atomic unit.

    Body: {
        customer_id?: str,
        payment_method: CASH | MOBILE_MONEY,
        payment_details: {amount_received_cents} | {provider, phone, reference},
        items: [{variant_id, quantity}]
    }
    Returns the order, its transaction and change_due_cents (CASH only).
    """
    try:
        data = request.get_json(silent=True) or {}
        result = sale_service.execute_sale(
            customer_id=data.get("customer_id"),
            payment_method=data.get("payment_method"),
            payment_details=data.get("payment_details"),
            line_items=data.get("items"),
            performed_by=g.actor_id,
        )
        return jsonify(result.to_dict()), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to execute sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_actor
@require_staff
def list_sales_route():
    """
    Till sales, newest first, with a summary over every match.

    Query: start?, end? (ISO-8601, end exclusive), payment_method?, limit, offset
    """
    try:
        sales, total, summary = report_service.list_sales(
            start=request.args.get("start"),
            end=request.args.get("end"),
            payment_method=request.args.get("payment_method"),
            limit=coerce_int(request.args.get("limit", "20"), "limit"),
            offset=coerce_int(request.args.get("offset", "0"), "offset"),
        )
        return jsonify({
            "sales": [
                {
                    **order.to_dict(),
                    "item_count": sum(item.quantity for item in order.items),
                    "transaction": order.transactions[0].to_dict() if order.transactions else None,
                }
                for order in sales
            ],
            "total": total,
            "summary": summary,
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/reports/daily")
@require_actor
@require_staff
def daily_report_route():
    """Query: date? (YYYY-MM-DD, UTC; defaults to today)."""
    try:
        return jsonify(report_service.daily_sales_report(request.args.get("date"))), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build daily sales report")
        return jsonify({"error": "Internal server error"}), 500
