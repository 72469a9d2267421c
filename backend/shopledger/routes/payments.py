# Overview: Flask API routes for payments; provider webhook, initiation and verification.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import actor_owns, require_actor, require_staff
from ..errors import DomainError
from ..services import order_service, payment_service
from ..validation import coerce_int, require_int, require_str


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/webhook")
def payment_webhook_route():
    """
    Provider callback. Idempotent; unknown references are acknowledged.

    Body: {reference, status: SUCCEEDED|FAILED|CANCELLED|REFUNDED,
           order_number?, amount_cents?, provider?}
    Header: X-Signature = hex HMAC-SHA256(body) when a webhook secret is set.
    """
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if secret:
        raw = request.get_data(cache=True)
        if not payment_service.verify_webhook_signature(raw, request.headers.get("X-Signature"), secret):
            current_app.logger.warning("Rejected payment webhook with invalid signature")
            return jsonify({"error": "Invalid signature"}), 401

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload", "code": "VALIDATION_ERROR", "details": {}}), 400

    try:
        order_id = None
        if data.get("order_number"):
            try:
                order_id = order_service.get_order_by_number(str(data["order_number"])).id
            except DomainError:
                order_id = None

        tx = payment_service.apply_payment_event(
            data.get("reference"),
            data.get("status"),
            order_id=order_id,
            amount_cents=coerce_int(data["amount_cents"], "amount_cents") if data.get("amount_cents") is not None else None,
            provider=data.get("provider"),
            verified_by="provider-webhook",
        )
        return jsonify({"received": True, "applied": tx is not None}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/initiate")
@require_actor
def initiate_payment_route():
    """Body: {order_id, provider?, phone?}"""
    try:
        data = request.get_json(silent=True) or {}
        order_id = require_int(data, "order_id")
        order = order_service.get_order(order_id)
        if not actor_owns(order.customer_id):
            return jsonify({"error": "Order not found", "code": "ORDER_NOT_FOUND", "details": {}}), 404

        tx = payment_service.initiate_payment(
            order_id, provider=data.get("provider"), phone=data.get("phone")
        )
        return jsonify({"transaction": tx.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/verify")
@require_actor
@require_staff
def verify_payment_route():
    """Body: {reference}. Reconciles the provider's current answer."""
    try:
        data = request.get_json(silent=True) or {}
        tx, provider_status = payment_service.verify_payment(
            require_str(data, "reference", max_length=128), verified_by=g.actor_id
        )
        return jsonify({"transaction": tx.to_dict(), "provider_status": provider_status}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/transactions")
@require_actor
@require_staff
def list_transactions_route():
    try:
        order_id = request.args.get("order_id")
        transactions = payment_service.list_transactions(
            order_id=coerce_int(order_id, "order_id") if order_id is not None else None,
            status=request.args.get("status"),
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
