# Overview: Service-layer operations for point-of-sale sales; one atomic unit per sale.

"""
Sale Transaction Orchestrator (point of sale)

================================================================================
execute_sale(customer?, method, payment_details, lines) -> SaleResult
================================================================================

One unit of work, all-or-nothing:
    1. validate lines and the payment fields the method requires
         CASH          -> amount_received_cents
         MOBILE_MONEY  -> provider, phone, reference
    2. lock every variant and confirm aggregate availability
    3. subtotal from catalog prices; CASH must cover it
    4. allocate the order number; create the order DELIVERED, source IN_STORE
         payment PAID (CASH) or PENDING (MOBILE_MONEY awaiting confirmation)
    5. snapshot order items; one SALE ledger entry per line
    6. one Transaction for the tendered total
    7. change_due = received - subtotal (CASH only)

Any failure rolls the whole unit back: no order, items, ledger entries or
transaction survive a failed sale. Stock errors are annotated with the
failing line index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app

from ..errors import DuplicateReference, InsufficientPayment, InsufficientStock, ValidationError
from ..extensions import db
from ..models import Order, Transaction
from ..validation import require_choice, require_int, require_str
from shopledger.time_utils import utcnow
from .concurrency import run_with_retry
from .order_service import build_order_items, load_sellable_variants, parse_line_items, record_status_change
from .order_state import OrderStatus, PaymentStatus
from .sequence_service import next_number
from .stock_service import StockRequirement, apply_stock_change, check_availability

logger = logging.getLogger(__name__)

SALE_PAYMENT_METHODS = ("CASH", "MOBILE_MONEY")


@dataclass
class SaleResult:
    order: Order
    transaction: Transaction
    change_due_cents: int | None = None

    def to_dict(self) -> dict:
        data = {
            "order": self.order.to_dict(),
            "transaction": self.transaction.to_dict(),
        }
        if self.change_due_cents is not None:
            data["change_due_cents"] = self.change_due_cents
        return data


def _parse_payment_details(method: str, details) -> dict:
    if details is None:
        details = {}
    if not isinstance(details, dict):
        raise ValidationError("payment_details must be an object", {"field": "payment_details"})

    if method == "CASH":
        return {"amount_received_cents": require_int(details, "amount_received_cents", minimum=0)}

    return {
        "provider": require_str(details, "provider", max_length=32).upper(),
        "phone": require_str(details, "phone", max_length=32),
        "reference": require_str(details, "reference", max_length=128),
    }


def _money(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def execute_sale(
    *,
    customer_id: str | None,
    payment_method: str,
    payment_details: dict | None,
    line_items,
    performed_by: str | None = None,
) -> SaleResult:
    """Execute a point-of-sale sale; see module docstring."""
    method = require_choice(payment_method, "payment_method", SALE_PAYMENT_METHODS)
    lines = parse_line_items(line_items)
    payment = _parse_payment_details(method, payment_details)

    def _op():
        variants = load_sellable_variants(lines)
        check_availability([
            StockRequirement(variant_id=variant_id, quantity=quantity, line=i)
            for i, (variant_id, quantity) in enumerate(lines)
        ])

        subtotal = sum(variants[variant_id].unit_price_cents * quantity for variant_id, quantity in lines)

        change_due = None
        if method == "CASH":
            received = payment["amount_received_cents"]
            if received < subtotal:
                raise InsufficientPayment(
                    f"Amount received {_money(received)} is less than total {_money(subtotal)}",
                    {
                        "amount_received_cents": received,
                        "total_cents": subtotal,
                        "shortfall_cents": subtotal - received,
                    },
                )
            change_due = max(0, received - subtotal)
        elif db.session.query(Transaction.id).filter_by(reference=payment["reference"]).first():
            raise DuplicateReference(
                "Payment reference has already been used",
                {"field": "payment_details.reference"},
            )

        order_number = next_number(
            document_type="ORDER",
            prefix=current_app.config["ORDER_NUMBER_PREFIX"],
        )
        now = utcnow()
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            status=OrderStatus.DELIVERED,
            payment_method=method,
            payment_status=PaymentStatus.PAID if method == "CASH" else PaymentStatus.PENDING,
            payment_reference=payment.get("reference"),
            # Handed over at the till: picked up in store, source IN_STORE
            delivery_method="STORE_PICKUP",
            source="IN_STORE",
            completed_at=now,
            stock_committed_at=now,
        )
        db.session.add(order)
        db.session.flush()

        order.subtotal_cents = build_order_items(order, lines, variants)
        order.delivery_fee_cents = 0
        order.total_cents = order.subtotal_cents

        for i, (variant_id, quantity) in enumerate(lines):
            try:
                apply_stock_change(
                    variant_id=variant_id,
                    quantity_change=-quantity,
                    change_type="SALE",
                    reason=f"POS sale {order_number}",
                    performed_by=performed_by,
                    order_id=order.id,
                )
            except InsufficientStock as exc:
                exc.details["line"] = i
                raise

        transaction = Transaction(
            order_id=order.id,
            amount_cents=order.total_cents,
            method=method,
            reference=payment.get("reference") or order_number,
        )
        if method == "CASH":
            transaction.tendered_cents = payment["amount_received_cents"]
            transaction.change_cents = change_due
            transaction.status = "COMPLETED"
            transaction.verified_by = performed_by
            transaction.verified_at = now
        else:
            transaction.provider = payment["provider"]
            transaction.phone = payment["phone"]
            transaction.status = "PENDING"
        db.session.add(transaction)

        record_status_change(order, None, OrderStatus.DELIVERED, performed_by, "Point-of-sale sale")
        db.session.commit()

        logger.info(
            "POS sale completed",
            extra={"order_number": order_number, "method": method, "total_cents": order.total_cents},
        )
        return SaleResult(order=order, transaction=transaction, change_due_cents=change_due)

    return run_with_retry(_op)
