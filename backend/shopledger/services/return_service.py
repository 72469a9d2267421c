# Overview: Service-layer operations for returns (RMA); encapsulates business logic and database work.

"""
Return / RMA State Machine

================================================================================
    REQUESTED -> APPROVED -> RECEIVED -> REFUNDED -> COMPLETED
                                      -> COMPLETED
    REQUESTED -> REJECTED  (terminal)
================================================================================

PRECONDITIONS (create_return, not state-machine rules):
- the order is DELIVERED
- the requester is the order's customer, or staff acting for them
- every item references an order item of the same order
- per order item, requested + already claimed (non-rejected) <= ordered

CRITICAL: RECEIVED is the only inventory trigger. Each restockable item is
re-credited once with a RETURN ledger entry correlated to the original order;
non-restockable items (DEFECTIVE / DAMAGED by default) never touch the ledger.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidItems, InvalidStateTransition, OrderNotEligible, ReturnNotFound, ValidationError
from ..extensions import db
from ..models import Return, ReturnItem
from ..validation import coerce_int, optional_str, require_choice, require_str
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import lock_order
from .order_state import OrderStatus
from .sequence_service import next_number
from .stock_service import apply_stock_change

logger = logging.getLogger(__name__)


class ReturnStatus:
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RECEIVED = "RECEIVED"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.REQUESTED, cls.APPROVED, cls.REJECTED, cls.RECEIVED, cls.REFUNDED, cls.COMPLETED]


RETURN_TRANSITIONS: dict[str, set[str]] = {
    ReturnStatus.REQUESTED: {ReturnStatus.APPROVED, ReturnStatus.REJECTED},
    ReturnStatus.APPROVED: {ReturnStatus.RECEIVED},
    ReturnStatus.RECEIVED: {ReturnStatus.REFUNDED, ReturnStatus.COMPLETED},
    ReturnStatus.REFUNDED: {ReturnStatus.COMPLETED},
    ReturnStatus.REJECTED: set(),
    ReturnStatus.COMPLETED: set(),
}

CONDITIONS = ("UNOPENED", "OPENED_UNUSED", "DEFECTIVE", "DAMAGED")
RESTOCKABLE_CONDITIONS = {"UNOPENED", "OPENED_UNUSED"}


def default_restockable(condition: str) -> bool:
    return condition in RESTOCKABLE_CONDITIONS


def _parse_return_items(items, *, is_staff: bool) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one return item is required", {"field": "items"})

    parsed = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object", {"field": f"items[{i}]"})
        if item.get("order_item_id") is None:
            raise ValidationError("order_item_id is required", {"field": f"items[{i}].order_item_id"})
        if item.get("quantity") is None:
            raise ValidationError("quantity is required", {"field": f"items[{i}].quantity"})

        quantity = coerce_int(item["quantity"], f"items[{i}].quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0", {"field": f"items[{i}].quantity"})
        condition = require_choice(item.get("condition"), f"items[{i}].condition", CONDITIONS)

        restockable = default_restockable(condition)
        if item.get("restockable") is not None:
            if not is_staff:
                raise ValidationError(
                    "Only staff can override restockable", {"field": f"items[{i}].restockable"}
                )
            if not isinstance(item["restockable"], bool):
                raise ValidationError("restockable must be a boolean", {"field": f"items[{i}].restockable"})
            restockable = item["restockable"]

        parsed.append({
            "order_item_id": coerce_int(item["order_item_id"], f"items[{i}].order_item_id"),
            "quantity": quantity,
            "condition": condition,
            "restockable": restockable,
        })
    return parsed


def _claimed_quantities(order_id: int) -> dict[int, int]:
    """Quantities per order item already claimed by non-rejected returns."""
    rows = (
        db.session.query(ReturnItem.order_item_id, func.sum(ReturnItem.quantity))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(Return.order_id == order_id, Return.status != ReturnStatus.REJECTED)
        .group_by(ReturnItem.order_item_id)
        .all()
    )
    return {order_item_id: int(total or 0) for order_item_id, total in rows}


def create_return(
    order_id: int,
    *,
    requested_by: str | None,
    is_staff: bool,
    reason: str,
    items,
    description: str | None = None,
) -> Return:
    """Open an RMA against a delivered order; see module docstring for preconditions."""
    reason = require_str({"reason": reason}, "reason", max_length=255)
    description = optional_str({"description": description}, "description")
    parsed = _parse_return_items(items, is_staff=is_staff)

    def _op():
        order = lock_order(order_id)

        if order.status != OrderStatus.DELIVERED:
            raise OrderNotEligible(
                "Only delivered orders can be returned", {"order_status": order.status}
            )
        if not is_staff and (order.customer_id is None or order.customer_id != requested_by):
            raise OrderNotEligible("Order does not belong to the requesting customer")

        order_items = {item.id: item for item in order.items}
        foreign = [i for i, line in enumerate(parsed) if line["order_item_id"] not in order_items]
        if foreign:
            raise InvalidItems("Return items must belong to the order", {"lines": foreign})

        claimed = _claimed_quantities(order.id)
        requested: dict[int, int] = {}
        for i, line in enumerate(parsed):
            order_item = order_items[line["order_item_id"]]
            requested[order_item.id] = requested.get(order_item.id, 0) + line["quantity"]
            remaining = order_item.quantity - claimed.get(order_item.id, 0)
            if requested[order_item.id] > remaining:
                raise InvalidItems(
                    f"Only {max(remaining, 0)} units of {order_item.product_name} "
                    f"(SKU {order_item.sku}) can still be returned",
                    {"line": i, "remaining": max(remaining, 0), "requested": requested[order_item.id]},
                )

        rma = Return(
            rma_number=next_number(
                document_type="RMA",
                prefix=current_app.config["RMA_NUMBER_PREFIX"],
            ),
            order_id=order.id,
            customer_id=order.customer_id,
            requested_by=requested_by,
            status=ReturnStatus.REQUESTED,
            reason=reason,
            description=description,
        )
        db.session.add(rma)
        db.session.flush()

        refund = 0
        for line in parsed:
            order_item = order_items[line["order_item_id"]]
            rma.items.append(ReturnItem(
                order_item_id=order_item.id,
                variant_id=order_item.variant_id,
                quantity=line["quantity"],
                condition=line["condition"],
                restockable=line["restockable"],
            ))
            refund += order_item.price_at_purchase_cents * line["quantity"]
        rma.refund_amount_cents = refund

        db.session.commit()
        return rma

    return run_with_retry(_op)


def _receive_items(rma: Return, performed_by: str | None) -> int:
    """Re-credit restockable items once; returns units restocked."""
    restocked = 0
    for item in rma.items:
        if not item.restockable or item.restocked_entry_id is not None:
            continue
        change = apply_stock_change(
            variant_id=item.variant_id,
            quantity_change=item.quantity,
            change_type="RETURN",
            reason=f"RMA return received: {rma.rma_number}",
            performed_by=performed_by,
            order_id=rma.order_id,
        )
        item.restocked_entry_id = change.ledger_entry_id
        restocked += item.quantity
    return restocked


def transition_return(
    return_id: int,
    target_status: str,
    *,
    actor_id: str | None = None,
    note: str | None = None,
) -> Return:
    target = require_choice(target_status, "status", ReturnStatus.all())

    def _op():
        rma = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
        if not rma:
            raise ReturnNotFound("Return not found", {"return_id": return_id})

        # Current status is re-read under lock: RECEIVED can only be entered once
        if target not in RETURN_TRANSITIONS[rma.status]:
            raise InvalidStateTransition(
                f"Cannot transition return from {rma.status} to {target}",
                {"from": rma.status, "to": target, "allowed": sorted(RETURN_TRANSITIONS[rma.status])},
            )

        now = utcnow()
        if target == ReturnStatus.APPROVED:
            rma.approved_at = now
            rma.approved_by = actor_id
        elif target == ReturnStatus.REJECTED:
            rma.rejected_at = now
            rma.rejected_by = actor_id
            rma.rejection_note = note
        elif target == ReturnStatus.RECEIVED:
            rma.received_at = now
            rma.received_by = actor_id
            units = _receive_items(rma, actor_id)
            logger.info("Return received", extra={"rma_number": rma.rma_number, "restocked_units": units})
        elif target == ReturnStatus.REFUNDED:
            rma.refunded_at = now
        elif target == ReturnStatus.COMPLETED:
            rma.completed_at = now

        rma.status = target
        db.session.commit()
        return rma

    return run_with_retry(_op)


def get_return(return_id: int) -> Return:
    rma = db.session.get(Return, return_id)
    if not rma:
        raise ReturnNotFound("Return not found", {"return_id": return_id})
    return rma


def get_return_by_rma(rma_number: str) -> Return:
    rma = db.session.query(Return).filter_by(rma_number=rma_number).first()
    if not rma:
        raise ReturnNotFound("Return not found", {"rma_number": rma_number})
    return rma


def list_returns(
    *,
    order_id: int | None = None,
    status: str | None = None,
    customer_id: str | None = None,
) -> list[Return]:
    query = db.session.query(Return)
    if order_id is not None:
        query = query.filter(Return.order_id == order_id)
    if status:
        query = query.filter(Return.status == require_choice(status, "status", ReturnStatus.all()))
    if customer_id:
        query = query.filter(Return.customer_id == customer_id)
    return query.order_by(Return.id.desc()).all()
