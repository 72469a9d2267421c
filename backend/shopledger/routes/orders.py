# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import actor_owns, require_actor, require_staff
from ..errors import DomainError, ValidationError
from ..services import order_service
from ..services.delivery_fee import list_zones, quote_delivery
from ..services.order_state import DELIVERY_METHODS, OrderStatus
from ..validation import coerce_int, require_choice


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

# Customers may withdraw an order until it is being prepared
CUSTOMER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def _not_found():
    return jsonify({"error": "Order not found", "code": "ORDER_NOT_FOUND", "details": {}}), 404


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Online checkout. Customers order for themselves; staff may pass customer_id.

    Body: {payment_method, delivery_method, items: [{variant_id, quantity}],
           delivery_address?: {recipient_name, phone, street, commune, city},
           delivery_zone?, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        customer_id = data.get("customer_id") if g.is_staff else g.actor_id
        order = order_service.create_order(
            customer_id=customer_id,
            payment_method=data.get("payment_method"),
            delivery_method=data.get("delivery_method"),
            items=data.get("items"),
            delivery_address=data.get("delivery_address"),
            delivery_zone=data.get("delivery_zone"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    """Staff see all orders (filterable); customers see their own."""
    try:
        orders, total = order_service.list_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            source=request.args.get("source"),
            customer_id=request.args.get("customer_id") if g.is_staff else g.actor_id,
            limit=coerce_int(request.args.get("limit", "50"), "limit"),
            offset=coerce_int(request.args.get("offset", "0"), "offset"),
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "total": total,
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/delivery-quote")
@require_actor
def delivery_quote_route():
    """Query: delivery_method, zone, subtotal_cents."""
    try:
        method = require_choice(request.args.get("delivery_method"), "delivery_method", DELIVERY_METHODS)
        subtotal = coerce_int(request.args.get("subtotal_cents", "0"), "subtotal_cents")
        if subtotal < 0:
            raise ValidationError("subtotal_cents must be >= 0", {"field": "subtotal_cents"})
        quote = quote_delivery(method, request.args.get("zone"), subtotal)
        return jsonify({"quote": quote.to_dict(), "zones": list_zones()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if not actor_owns(order.customer_id):
            return _not_found()
        data = order.to_dict()
        data["transactions"] = [t.to_dict() for t in order.transactions]
        data["shipment"] = order.shipment.to_dict() if order.shipment else None
        return jsonify({"order": data}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/by-number/<string:order_number>")
@require_actor
def get_order_by_number_route(order_number: str):
    try:
        order = order_service.get_order_by_number(order_number)
        if not actor_owns(order.customer_id):
            return _not_found()
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>/history")
@require_actor
def order_history_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if not actor_owns(order.customer_id):
            return _not_found()
        return jsonify({"history": [c.to_dict() for c in order.status_changes]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.post("/<int:order_id>/transition")
@require_actor
@require_staff
def transition_order_route(order_id: int):
    """
    Move an order along the state machine.

    Body: {status, note?}. SHIPPED is reached by creating a shipment, and
    home-delivery orders are DELIVERED by their shipment.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required", "code": "VALIDATION_ERROR",
                            "details": {"field": "status"}}), 400
        order = order_service.transition_order(
            order_id, data["status"], actor_id=g.actor_id, note=data.get("note")
        )
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """Staff cancel any pre-delivery order; customers their own PENDING/CONFIRMED ones."""
    try:
        data = request.get_json(silent=True) or {}
        if not g.is_staff:
            order = order_service.get_order(order_id)
            if not actor_owns(order.customer_id):
                return _not_found()
            if order.status not in CUSTOMER_CANCELLABLE:
                return jsonify({
                    "error": "Order can no longer be cancelled online",
                    "code": "INVALID_STATE_TRANSITION",
                    "details": {"from": order.status, "to": OrderStatus.CANCELLED},
                }), 409
        order = order_service.cancel_order(order_id, actor_id=g.actor_id, note=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/pickup")
@require_actor
@require_staff
def confirm_pickup_route(order_id: int):
    try:
        order = order_service.confirm_pickup(order_id, actor_id=g.actor_id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm pickup")
        return jsonify({"error": "Internal server error"}), 500
