# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_staff
from ..errors import DomainError
from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/products")


@catalog_bp.post("")
@require_actor
@require_staff
def create_product_route():
    """
    Create a product with its variants; initial_stock is posted as RESTOCK.

    Body: {name, base_price_cents, description?, variants: [{sku, size?, color?,
           color_hex?, additional_price_cents?, initial_stock?}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        product = catalog_service.create_product(
            name=data.get("name"),
            base_price_cents=data.get("base_price_cents"),
            description=data.get("description"),
            variants=data.get("variants") or [],
            performed_by=g.actor_id,
        )
        return jsonify({"product": product.to_dict(include_variants=True)}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("")
@require_actor
def list_products_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true" and g.is_staff
    products = catalog_service.list_products(include_inactive=include_inactive)
    return jsonify({"products": [p.to_dict(include_variants=True) for p in products]}), 200


@catalog_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict(include_variants=True)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.post("/<int:product_id>/variants")
@require_actor
@require_staff
def add_variant_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        variant = catalog_service.add_variant(product_id, data, performed_by=g.actor_id)
        return jsonify({"variant": variant.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add variant")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.patch("/variants/<int:variant_id>")
@require_actor
@require_staff
def set_variant_active_route(variant_id: int):
    """Soft (de)activate a variant: {is_active: bool}."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data.get("is_active"), bool):
            return jsonify({"error": "is_active (boolean) required", "code": "VALIDATION_ERROR",
                            "details": {"field": "is_active"}}), 400
        variant = catalog_service.set_variant_active(variant_id, data["is_active"])
        return jsonify({"variant": variant.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update variant")
        return jsonify({"error": "Internal server error"}), 500
