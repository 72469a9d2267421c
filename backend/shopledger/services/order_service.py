# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Aggregate + State Machine side effects.

WHY: status changes on an order are never "just a column update". Entering
PROCESSING commits stock for online orders, CANCELLED re-credits it,
DELIVERED stamps completed_at, and every change leaves a history row. All of
that happens here, inside one unit of work per transition.

STOCK POLICY (online orders):
- create_order() checks availability but deducts nothing.
- Stock is deducted exactly once (stock_committed_at) at the first of
  payment SUCCEEDED (payment_service) or entering PROCESSING (covers
  cash-on-delivery orders that never see an online payment).
- Cancelling re-credits committed stock unless the goods already shipped.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..errors import InvalidStateTransition, OrderNotFound, ValidationError, VariantNotFound
from ..extensions import db
from ..models import DeliveryAddress, Order, OrderItem, OrderStatusChange, Variant
from ..validation import coerce_int, optional_str, require_choice, require_str
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .delivery_fee import quote_delivery
from .order_state import (
    DELIVERY_METHODS,
    ONLINE_PAYMENT_METHODS,
    VIA_DIRECT,
    VIA_PICKUP,
    OrderStatus,
    PaymentStatus,
    check_transition,
    validate_status,
)
from .sequence_service import next_number
from .stock_service import StockRequirement, apply_stock_change, check_availability

logger = logging.getLogger(__name__)


# =============================================================================
# Input parsing (shared with the POS orchestrator)
# =============================================================================

def parse_line_items(items) -> list[tuple[int, int]]:
    """[{variant_id, quantity}, ...] -> [(variant_id, quantity), ...]"""
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one line item is required", {"field": "items"})

    lines = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object", {"field": f"items[{i}]"})
        if item.get("variant_id") is None:
            raise ValidationError("variant_id is required", {"field": f"items[{i}].variant_id"})
        if item.get("quantity") is None:
            raise ValidationError("quantity is required", {"field": f"items[{i}].quantity"})
        variant_id = coerce_int(item["variant_id"], f"items[{i}].variant_id")
        quantity = coerce_int(item["quantity"], f"items[{i}].quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0", {"field": f"items[{i}].quantity"})
        lines.append((variant_id, quantity))
    return lines


def parse_delivery_address(data) -> DeliveryAddress:
    if not isinstance(data, dict):
        raise ValidationError("delivery_address must be an object", {"field": "delivery_address"})
    return DeliveryAddress(
        recipient_name=require_str(data, "recipient_name", max_length=128),
        phone=require_str(data, "phone", max_length=32),
        street=require_str(data, "street", max_length=255),
        commune=require_str(data, "commune", max_length=64),
        city=require_str(data, "city", max_length=64),
    )


def load_sellable_variants(lines: list[tuple[int, int]]) -> dict[int, Variant]:
    """Resolve every line's variant; unknown or inactive variants fail the line."""
    variants: dict[int, Variant] = {}
    for i, (variant_id, _quantity) in enumerate(lines):
        variant = variants.get(variant_id) or db.session.get(Variant, variant_id)
        if not variant:
            raise VariantNotFound(
                f"Line {i + 1}: variant not found",
                {"line": i, "variant_id": variant_id},
            )
        if not variant.is_active or not variant.product.is_active:
            raise ValidationError(
                f"Line {i + 1}: SKU {variant.sku} is not available for sale",
                {"line": i, "sku": variant.sku},
            )
        variants[variant_id] = variant
    return variants


def build_order_items(order: Order, lines: list[tuple[int, int]], variants: dict[int, Variant]) -> int:
    """Snapshot name/details/price onto order items; returns the subtotal in cents."""
    subtotal = 0
    for variant_id, quantity in lines:
        variant = variants[variant_id]
        price = variant.unit_price_cents
        item = OrderItem(
            variant_id=variant.id,
            product_name=variant.product.name,
            sku=variant.sku,
            size=variant.size,
            color=variant.color,
            quantity=quantity,
            price_at_purchase_cents=price,
        )
        order.items.append(item)
        subtotal += price * quantity
    return subtotal


def record_status_change(
    order: Order,
    from_status: str | None,
    to_status: str,
    changed_by: str | None = None,
    note: str | None = None,
) -> OrderStatusChange:
    change = OrderStatusChange(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        note=note,
    )
    db.session.add(change)
    return change


# =============================================================================
# Stock side effects (no commit)
# =============================================================================

def commit_order_stock(order: Order, performed_by: str | None = None) -> bool:
    """
    Deduct stock for every order line, once.

    Availability of all lines is checked before the first deduction, so a
    shortage leaves the ledger untouched. Returns False if already committed.
    """
    if order.stock_committed_at is not None:
        return False

    check_availability([
        StockRequirement(variant_id=item.variant_id, quantity=item.quantity, line=i)
        for i, item in enumerate(order.items)
    ])
    for item in order.items:
        apply_stock_change(
            variant_id=item.variant_id,
            quantity_change=-item.quantity,
            change_type="SALE",
            reason=f"Order {order.order_number}",
            performed_by=performed_by,
            order_id=order.id,
        )
    order.stock_committed_at = utcnow()
    logger.info(
        "Committed stock for order",
        extra={"order_number": order.order_number, "lines": len(order.items)},
    )
    return True


def _restore_order_stock(order: Order, performed_by: str | None) -> None:
    for item in order.items:
        apply_stock_change(
            variant_id=item.variant_id,
            quantity_change=item.quantity,
            change_type="RETURN",
            reason=f"Order {order.order_number} cancelled",
            performed_by=performed_by,
            order_id=order.id,
        )


def apply_transition(
    order: Order,
    target: str,
    *,
    actor_id: str | None = None,
    note: str | None = None,
    via: str = VIA_DIRECT,
) -> Order:
    """
    Validate and apply one status transition with its side effects.

    Runs inside the caller's unit of work (no commit). Validation happens
    before any write, so a rejected transition leaves the order untouched.
    """
    check_transition(order, target, via=via)
    previous = order.status

    if target == OrderStatus.PROCESSING and order.source == "ONLINE":
        commit_order_stock(order, performed_by=actor_id)

    if target == OrderStatus.CANCELLED:
        # Goods that left the store come back through the returns flow
        if order.stock_committed_at is not None and previous != OrderStatus.SHIPPED:
            _restore_order_stock(order, actor_id)
        if order.payment_status == PaymentStatus.PAID:
            logger.warning(
                "Paid order cancelled; refund required",
                extra={"order_number": order.order_number, "total_cents": order.total_cents},
            )
        order.cancelled_at = utcnow()

    if target == OrderStatus.DELIVERED:
        order.completed_at = utcnow()

    order.status = target
    record_status_change(order, previous, target, actor_id, note)
    return order


def lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFound("Order not found", {"order_id": order_id})
    return order


# =============================================================================
# Public operations
# =============================================================================

def create_order(
    *,
    customer_id: str | None,
    payment_method: str,
    delivery_method: str,
    items,
    delivery_address: dict | None = None,
    delivery_zone: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Online checkout: PENDING order, payment PENDING, no stock deducted.

    Prices and variant details are snapshotted server-side; client-supplied
    prices are never trusted.
    """
    payment_method = require_choice(payment_method, "payment_method", ONLINE_PAYMENT_METHODS)
    delivery_method = require_choice(delivery_method, "delivery_method", DELIVERY_METHODS)
    lines = parse_line_items(items)

    address = None
    if delivery_method == "HOME_DELIVERY":
        if delivery_address is None:
            raise ValidationError(
                "delivery_address is required for home delivery", {"field": "delivery_address"}
            )
        address = parse_delivery_address(delivery_address)
        delivery_zone = optional_str({"zone": delivery_zone}, "zone", max_length=64) or address.commune
    else:
        delivery_zone = None
    notes = optional_str({"notes": notes}, "notes")

    def _op():
        variants = load_sellable_variants(lines)
        check_availability([
            StockRequirement(variant_id=variant_id, quantity=quantity, line=i)
            for i, (variant_id, quantity) in enumerate(lines)
        ])

        order_number = next_number(
            document_type="ORDER",
            prefix=current_app.config["ORDER_NUMBER_PREFIX"],
        )
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            status=OrderStatus.PENDING,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            delivery_method=delivery_method,
            delivery_zone=delivery_zone,
            source="ONLINE",
            notes=notes,
        )
        order.set_delivery_address(address)
        db.session.add(order)
        db.session.flush()

        subtotal = build_order_items(order, lines, variants)
        quote = quote_delivery(delivery_method, delivery_zone, subtotal)
        order.subtotal_cents = subtotal
        order.delivery_fee_cents = quote.fee_cents
        order.total_cents = subtotal + quote.fee_cents

        record_status_change(order, None, OrderStatus.PENDING, customer_id, "Order placed")
        db.session.commit()
        return order

    return run_with_retry(_op)


def transition_order(
    order_id: int,
    target_status: str,
    *,
    actor_id: str | None = None,
    note: str | None = None,
) -> Order:
    """Move an order to target_status or fail with InvalidStateTransition."""
    target = validate_status(str(target_status or "").strip().upper())

    def _op():
        order = lock_order(order_id)
        apply_transition(order, target, actor_id=actor_id, note=note, via=VIA_DIRECT)
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, *, actor_id: str | None = None, note: str | None = None) -> Order:
    return transition_order(order_id, OrderStatus.CANCELLED, actor_id=actor_id, note=note)


def confirm_pickup(order_id: int, *, actor_id: str | None = None, note: str | None = None) -> Order:
    """READY_FOR_PICKUP -> DELIVERED for store-pickup orders."""
    def _op():
        order = lock_order(order_id)
        if order.delivery_method != "STORE_PICKUP":
            raise InvalidStateTransition(
                "Pickup confirmation applies to store-pickup orders only",
                {"from": order.status, "to": OrderStatus.DELIVERED, "allowed": []},
            )
        apply_transition(
            order, OrderStatus.DELIVERED, actor_id=actor_id, note=note or "Picked up", via=VIA_PICKUP
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFound("Order not found", {"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise OrderNotFound("Order not found", {"order_number": order_number})
    return order


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    source: str | None = None,
    customer_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == validate_status(status.upper()))
    if payment_status:
        query = query.filter(
            Order.payment_status == require_choice(payment_status, "payment_status", PaymentStatus.all())
        )
    if source:
        query = query.filter(Order.source == source.upper())
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)

    total = query.count()
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    orders = query.order_by(Order.id.desc()).offset(offset).limit(limit).all()
    return orders, total
