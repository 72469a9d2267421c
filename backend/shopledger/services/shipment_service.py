# Overview: Service-layer operations for shipments; drives home-delivery orders to SHIPPED and DELIVERED.

from __future__ import annotations

from ..errors import ConflictError, InvalidStateTransition, ShipmentNotFound, ValidationError
from ..extensions import db
from ..models import Shipment
from ..validation import require_choice
from shopledger.time_utils import parse_iso_datetime, utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import apply_transition, lock_order, parse_delivery_address
from .order_state import VIA_SHIPMENT, OrderStatus, check_transition
from .sequence_service import next_number


CARRIERS = ("DHL", "FEDEX", "UPS", "LOCAL", "OTHER")

SHIPMENT_STATUSES = (
    "PENDING", "PICKED_UP", "IN_TRANSIT", "OUT_FOR_DELIVERY", "DELIVERED", "FAILED", "RETURNED",
)

# Forward-only; FAILED may be re-attempted or sent back
SHIPMENT_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"PICKED_UP", "IN_TRANSIT", "FAILED"},
    "PICKED_UP": {"IN_TRANSIT", "FAILED"},
    "IN_TRANSIT": {"OUT_FOR_DELIVERY", "DELIVERED", "FAILED", "RETURNED"},
    "OUT_FOR_DELIVERY": {"DELIVERED", "FAILED", "RETURNED"},
    "FAILED": {"OUT_FOR_DELIVERY", "RETURNED"},
    "DELIVERED": set(),
    "RETURNED": set(),
}


def create_shipment(
    order_id: int,
    *,
    carrier: str,
    recipient: dict | None = None,
    address: dict | None = None,
    estimated_delivery: str | None = None,
    performed_by: str | None = None,
) -> Shipment:
    """
    Hand a PROCESSING home-delivery order to a carrier.

    Creates the shipment (with a unique tracking number) and moves the order
    to SHIPPED in the same unit. Recipient and address default to the order's
    delivery snapshot when omitted.
    """
    carrier = require_choice(carrier, "carrier", CARRIERS)
    eta = None
    if estimated_delivery:
        try:
            eta = parse_iso_datetime(estimated_delivery)
        except ValueError:
            raise ValidationError(
                "estimated_delivery must be an ISO-8601 datetime", {"field": "estimated_delivery"}
            )

    def _op():
        order = lock_order(order_id)
        if order.shipment is not None:
            raise ConflictError("Order already has a shipment", {"order_number": order.order_number})
        check_transition(order, OrderStatus.SHIPPED, via=VIA_SHIPMENT)

        snapshot = order.delivery_address
        merged = dict(snapshot.to_dict()) if snapshot else {}
        if recipient:
            merged["recipient_name"] = recipient.get("name", merged.get("recipient_name"))
            merged["phone"] = recipient.get("phone", merged.get("phone"))
        if address:
            merged.update({k: address[k] for k in ("street", "commune", "city") if k in address})
        ship_to = parse_delivery_address(merged)

        apply_transition(
            order, OrderStatus.SHIPPED, actor_id=performed_by, note=f"Shipped via {carrier}", via=VIA_SHIPMENT
        )

        tracking_number = next_number(document_type=f"TRACKING_{carrier}", prefix=carrier)
        shipment = Shipment(
            order_id=order.id,
            tracking_number=tracking_number,
            carrier=carrier,
            status="PENDING",
            recipient_name=ship_to.recipient_name,
            recipient_phone=ship_to.phone,
            street=ship_to.street,
            commune=ship_to.commune,
            city=ship_to.city,
            estimated_delivery=eta,
        )
        db.session.add(shipment)
        db.session.commit()
        return shipment

    return run_with_retry(_op)


def update_shipment_status(shipment_id: int, status: str, *, performed_by: str | None = None) -> Shipment:
    """
    Advance a shipment. DELIVERED stamps actual_delivery and delivers the
    order (stamping its completed_at).
    """
    target = require_choice(status, "status", SHIPMENT_STATUSES)

    def _op():
        shipment = lock_for_update(db.session.query(Shipment).filter_by(id=shipment_id)).first()
        if not shipment:
            raise ShipmentNotFound("Shipment not found", {"shipment_id": shipment_id})

        if target not in SHIPMENT_TRANSITIONS[shipment.status]:
            raise InvalidStateTransition(
                f"Cannot transition shipment from {shipment.status} to {target}",
                {
                    "from": shipment.status,
                    "to": target,
                    "allowed": sorted(SHIPMENT_TRANSITIONS[shipment.status]),
                },
            )

        if target == "DELIVERED":
            order = lock_order(shipment.order_id)
            apply_transition(
                order,
                OrderStatus.DELIVERED,
                actor_id=performed_by,
                note=f"Delivered by {shipment.carrier} ({shipment.tracking_number})",
                via=VIA_SHIPMENT,
            )
            shipment.actual_delivery = utcnow()

        shipment.status = target
        db.session.commit()
        return shipment

    return run_with_retry(_op)


def get_shipment(shipment_id: int) -> Shipment:
    shipment = db.session.get(Shipment, shipment_id)
    if not shipment:
        raise ShipmentNotFound("Shipment not found", {"shipment_id": shipment_id})
    return shipment


def get_shipment_by_tracking(tracking_number: str) -> Shipment:
    shipment = db.session.query(Shipment).filter_by(tracking_number=tracking_number).first()
    if not shipment:
        raise ShipmentNotFound("Shipment not found", {"tracking_number": tracking_number})
    return shipment
