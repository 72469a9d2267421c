# Overview: Flask API routes for returns (RMA); parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import actor_owns, require_actor, require_staff
from ..errors import DomainError
from ..services import return_service
from ..validation import coerce_int, require_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _not_found():
    return jsonify({"error": "Return not found", "code": "RETURN_NOT_FOUND", "details": {}}), 404


@returns_bp.post("")
@require_actor
def create_return_route():
    """
    Request a return against a delivered order.

    Body: {order_id, reason, description?, items: [{order_item_id, quantity,
           condition, restockable? (staff only)}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        rma = return_service.create_return(
            require_int(data, "order_id"),
            requested_by=g.actor_id,
            is_staff=g.is_staff,
            reason=data.get("reason"),
            description=data.get("description"),
            items=data.get("items"),
        )
        return jsonify({"return": rma.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_actor
def list_returns_route():
    try:
        order_id = request.args.get("order_id")
        returns = return_service.list_returns(
            order_id=coerce_int(order_id, "order_id") if order_id is not None else None,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id") if g.is_staff else g.actor_id,
        )
        return jsonify({"returns": [r.to_dict(include_items=False) for r in returns]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.get("/<int:return_id>")
@require_actor
def get_return_route(return_id: int):
    try:
        rma = return_service.get_return(return_id)
        if not actor_owns(rma.customer_id):
            return _not_found()
        return jsonify({"return": rma.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.get("/by-rma/<string:rma_number>")
@require_actor
def get_return_by_rma_route(rma_number: str):
    try:
        rma = return_service.get_return_by_rma(rma_number)
        if not actor_owns(rma.customer_id):
            return _not_found()
        return jsonify({"return": rma.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.post("/<int:return_id>/transition")
@require_actor
@require_staff
def transition_return_route(return_id: int):
    """
    Body: {status, note?}. RECEIVED restocks restockable items.
    """
    try:
        data = request.get_json(silent=True) or {}
        rma = return_service.transition_return(
            return_id, data.get("status"), actor_id=g.actor_id, note=data.get("note")
        )
        return jsonify({"return": rma.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transition return")
        return jsonify({"error": "Internal server error"}), 500
