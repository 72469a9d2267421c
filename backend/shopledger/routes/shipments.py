# Overview: Flask API routes for shipments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import actor_owns, require_actor, require_staff
from ..errors import DomainError
from ..services import shipment_service
from ..validation import require_int


shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


@shipments_bp.post("")
@require_actor
@require_staff
def create_shipment_route():
    """
    Ship a PROCESSING home-delivery order (order becomes SHIPPED).

    Body: {order_id, carrier, recipient?: {name, phone},
           address?: {street, commune, city}, estimated_delivery?}
    """
    try:
        data = request.get_json(silent=True) or {}
        shipment = shipment_service.create_shipment(
            require_int(data, "order_id"),
            carrier=data.get("carrier"),
            recipient=data.get("recipient"),
            address=data.get("address"),
            estimated_delivery=data.get("estimated_delivery"),
            performed_by=g.actor_id,
        )
        return jsonify({"shipment": shipment.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/<int:shipment_id>/status")
@require_actor
@require_staff
def update_shipment_status_route(shipment_id: int):
    try:
        data = request.get_json(silent=True) or {}
        shipment = shipment_service.update_shipment_status(
            shipment_id, data.get("status"), performed_by=g.actor_id
        )
        return jsonify({"shipment": shipment.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update shipment status")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.get("/<int:shipment_id>")
@require_actor
@require_staff
def get_shipment_route(shipment_id: int):
    try:
        shipment = shipment_service.get_shipment(shipment_id)
        return jsonify({"shipment": shipment.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@shipments_bp.get("/track/<string:tracking_number>")
@require_actor
def track_shipment_route(tracking_number: str):
    try:
        shipment = shipment_service.get_shipment_by_tracking(tracking_number)
        if not actor_owns(shipment.order.customer_id):
            return jsonify({"error": "Shipment not found", "code": "SHIPMENT_NOT_FOUND", "details": {}}), 404
        return jsonify({
            "shipment": shipment.to_dict(),
            "order_number": shipment.order.order_number,
            "order_status": shipment.order.status,
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
