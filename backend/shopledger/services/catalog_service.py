# Overview: Service-layer operations for catalog; products and their variants.

from __future__ import annotations

from ..errors import DuplicateReference, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Variant
from ..validation import coerce_int, optional_str, require_price_cents, require_str
from .concurrency import lock_for_update, run_with_retry
from .stock_service import apply_stock_change, get_variant


def _parse_variant_spec(spec: dict, index: int) -> dict:
    if not isinstance(spec, dict):
        raise ValidationError(f"variants[{index}] must be an object", {"field": f"variants[{index}]"})
    initial_stock = coerce_int(spec.get("initial_stock", 0), f"variants[{index}].initial_stock")
    if initial_stock < 0:
        raise ValidationError(
            "initial_stock must be >= 0", {"field": f"variants[{index}].initial_stock"}
        )
    return {
        "sku": require_str(spec, "sku", max_length=64).upper(),
        "size": optional_str(spec, "size", max_length=32),
        "color": optional_str(spec, "color", max_length=64),
        "color_hex": optional_str(spec, "color_hex", max_length=7),
        "additional_price_cents": require_price_cents(
            spec.get("additional_price_cents", 0), f"variants[{index}].additional_price_cents"
        ),
        "initial_stock": initial_stock,
    }


def _add_variant_locked(product: Product, parsed: dict, performed_by: str | None) -> Variant:
    if db.session.query(Variant.id).filter_by(sku=parsed["sku"]).first():
        raise DuplicateReference(f"SKU {parsed['sku']} already exists", {"sku": parsed["sku"]})

    # Starts at zero; opening stock is a ledger RESTOCK so the sum invariant holds from day one
    variant = Variant(
        product_id=product.id,
        sku=parsed["sku"],
        size=parsed["size"],
        color=parsed["color"],
        color_hex=parsed["color_hex"],
        additional_price_cents=parsed["additional_price_cents"],
        stock_quantity=0,
        is_active=True,
    )
    db.session.add(variant)
    db.session.flush()

    if parsed["initial_stock"] > 0:
        apply_stock_change(
            variant_id=variant.id,
            quantity_change=parsed["initial_stock"],
            change_type="RESTOCK",
            reason="Initial stock",
            performed_by=performed_by,
        )
    return variant


def create_product(
    *,
    name: str,
    base_price_cents: int,
    variants: list[dict],
    description: str | None = None,
    performed_by: str | None = None,
) -> Product:
    """Create a product with its variants (and opening stock) in one unit."""
    payload = {"name": name, "description": description}
    name = require_str(payload, "name", max_length=255)
    description = optional_str(payload, "description")
    price = require_price_cents(base_price_cents, "base_price_cents")
    if not variants:
        raise ValidationError("At least one variant is required", {"field": "variants"})
    parsed = [_parse_variant_spec(spec, i) for i, spec in enumerate(variants)]

    skus = [p["sku"] for p in parsed]
    if len(set(skus)) != len(skus):
        raise ValidationError("Duplicate SKU in request", {"field": "variants"})

    def _op():
        product = Product(name=name, description=description, base_price_cents=price, is_active=True)
        db.session.add(product)
        db.session.flush()
        for spec in parsed:
            _add_variant_locked(product, spec, performed_by)
        db.session.commit()
        return product

    return run_with_retry(_op)


def add_variant(product_id: int, spec: dict, performed_by: str | None = None) -> Variant:
    parsed = _parse_variant_spec(spec, 0)

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError("Product not found", {"product_id": product_id})
        variant = _add_variant_locked(product, parsed, performed_by)
        db.session.commit()
        return variant

    return run_with_retry(_op)


def set_variant_active(variant_id: int, is_active: bool) -> Variant:
    """Soft (de)activation; variants are never hard-deleted."""
    def _op():
        variant = get_variant(variant_id)
        variant.is_active = bool(is_active)
        db.session.commit()
        return variant

    return run_with_retry(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def list_products(*, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc()).all()
