# Overview: Order status and payment-status rules; the single source of truth for order transitions.

"""
Order Fulfillment State Machine

================================================================================
    PENDING -> CONFIRMED -> PROCESSING -> READY_FOR_PICKUP -> DELIVERED
                                       -> SHIPPED          -> DELIVERED
    CANCELLED is reachable from every state before DELIVERED.
================================================================================

RULES (enforced by check_transition):
1. Only adjacency-listed transitions are legal (PENDING -> DELIVERED fails).
2. READY_FOR_PICKUP only for STORE_PICKUP orders.
3. SHIPPED only for HOME_DELIVERY orders, and only via shipment creation.
4. DELIVERED for HOME_DELIVERY orders only via a shipment status update;
   for STORE_PICKUP orders it is the pickup confirmation.
5. No progress past CONFIRMED while payment_status = FAILED.
6. Prepaid online orders (MOBILE_MONEY, CARD) enter PROCESSING only once
   PAID, so their stock is committed by the payment, never ahead of it.

This module holds no state and performs no writes; order_service applies the
side effects (stock commit, re-credit, timestamps, history).
"""

from __future__ import annotations

from ..errors import InvalidStateTransition, ValidationError


class OrderStatus:
    """Order status constants - use these instead of strings."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def all(cls) -> list[str]:
        return [
            cls.PENDING, cls.CONFIRMED, cls.PROCESSING,
            cls.READY_FOR_PICKUP, cls.SHIPPED,
            cls.DELIVERED, cls.CANCELLED,
        ]


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.PENDING, cls.PAID, cls.FAILED, cls.REFUNDED]


PAYMENT_METHODS = ("CASH", "MOBILE_MONEY", "CARD", "CASH_ON_DELIVERY")
ONLINE_PAYMENT_METHODS = ("MOBILE_MONEY", "CARD", "CASH_ON_DELIVERY")
# Collected before fulfillment; stock waits for payment success
PREPAID_METHODS = ("MOBILE_MONEY", "CARD")
DELIVERY_METHODS = ("HOME_DELIVERY", "STORE_PICKUP")
ORDER_SOURCES = ("ONLINE", "IN_STORE")

# Transition sources for rules 3 and 4
VIA_DIRECT = "direct"
VIA_SHIPMENT = "shipment"
VIA_PICKUP = "pickup"


ORDER_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

# Entering any of these counts as progressing past CONFIRMED
_PAYMENT_GATED = {
    OrderStatus.PROCESSING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
}


def validate_status(status: str) -> str:
    if status not in ORDER_TRANSITIONS:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(OrderStatus.all())}",
            details={"field": "status"},
        )
    return status


def allowed_transitions(current: str) -> list[str]:
    return sorted(ORDER_TRANSITIONS.get(current, set()))


def _reject(order, target: str, reason: str) -> None:
    raise InvalidStateTransition(
        f"Cannot transition order from {order.status} to {target}: {reason}",
        details={
            "from": order.status,
            "to": target,
            "allowed": allowed_transitions(order.status),
        },
    )


def check_transition(order, target: str, *, via: str = VIA_DIRECT) -> None:
    """Raise InvalidStateTransition unless order may move to target."""
    validate_status(target)

    if target not in ORDER_TRANSITIONS.get(order.status, set()):
        if order.status in TERMINAL_STATUSES:
            _reject(order, target, f"{order.status} is terminal")
        _reject(order, target, "not an allowed transition")

    if target == OrderStatus.READY_FOR_PICKUP and order.delivery_method != "STORE_PICKUP":
        _reject(order, target, "only store-pickup orders can be ready for pickup")

    if target == OrderStatus.SHIPPED:
        if order.delivery_method != "HOME_DELIVERY":
            _reject(order, target, "only home-delivery orders can be shipped")
        if via != VIA_SHIPMENT:
            _reject(order, target, "create a shipment to ship an order")

    if target == OrderStatus.DELIVERED and order.delivery_method == "HOME_DELIVERY" and via != VIA_SHIPMENT:
        _reject(order, target, "home-delivery orders are delivered by their shipment")

    if target in _PAYMENT_GATED and order.payment_status == PaymentStatus.FAILED:
        _reject(order, target, "payment failed")

    if (
        target == OrderStatus.PROCESSING
        and order.source == "ONLINE"
        and order.payment_method in PREPAID_METHODS
        and order.payment_status != PaymentStatus.PAID
    ):
        _reject(order, target, "awaiting payment")
