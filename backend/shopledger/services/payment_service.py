# Overview: Service-layer operations for payment reconciliation; encapsulates business logic and database work.

"""
Payment Reconciliation

================================================================================
apply_payment_event(reference, outcome) -- idempotent
================================================================================

The Transaction row looked up by external reference is the idempotency key:
- same outcome replayed          -> logged, no change
- outcome outside the adjacency  -> logged, no change (late / out-of-order event)
- unknown reference, no order    -> logged, ignored (unrelated provider activity)

    outcome     Transaction   Order.payment_status   inventory
    SUCCEEDED   COMPLETED     PAID                   online order: commit stock once
    FAILED      FAILED        FAILED                 untouched
    CANCELLED   CANCELLED     PENDING (retryable)    untouched
    REFUNDED    REFUNDED      REFUNDED               untouched (returns re-credit goods)

Outcomes only ever come from a provider callback or a verified provider
read; nothing here fabricates an outcome.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConflictError,
    DuplicateReference,
    InsufficientStock,
    NotFoundError,
    PaymentDeclined,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Transaction
from ..validation import optional_str, require_choice
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import apply_transition, commit_order_stock, get_order, lock_order
from .order_state import OrderStatus, PaymentStatus
from .payment_provider import get_provider_client

logger = logging.getLogger(__name__)


OUTCOMES = ("SUCCEEDED", "FAILED", "CANCELLED", "REFUNDED")

OUTCOME_TO_TRANSACTION_STATUS = {
    "SUCCEEDED": "COMPLETED",
    "FAILED": "FAILED",
    "CANCELLED": "CANCELLED",
    "REFUNDED": "REFUNDED",
}

TRANSACTION_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"COMPLETED", "FAILED", "CANCELLED"},
    "FAILED": {"COMPLETED"},
    "CANCELLED": {"COMPLETED"},
    "COMPLETED": {"REFUNDED"},
    "REFUNDED": set(),
}

ONLINE_COLLECTION_METHODS = ("MOBILE_MONEY", "CARD")


def verify_webhook_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _find_transaction(reference: str) -> Transaction | None:
    return lock_for_update(db.session.query(Transaction).filter_by(reference=reference)).first()


def _insert_transaction(
    order: Order,
    reference: str,
    *,
    amount_cents: int | None,
    provider: str | None,
    method: str | None,
) -> Transaction:
    tx = Transaction(
        order_id=order.id,
        amount_cents=amount_cents if amount_cents is not None else order.total_cents,
        method=method or order.payment_method,
        provider=provider,
        reference=reference,
        status="PENDING",
    )
    db.session.add(tx)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # A concurrent delivery inserted the same reference; retry sees it
        raise StaleDataError(f"Transaction reference {reference} inserted concurrently") from exc
    return tx


def _commit_stock_on_payment(order: Order, actor: str | None) -> None:
    if order.source != "ONLINE" or order.stock_committed_at is not None:
        return
    if order.status == OrderStatus.CANCELLED:
        logger.warning(
            "Payment succeeded for cancelled order; refund required",
            extra={"order_number": order.order_number},
        )
        return
    try:
        commit_order_stock(order, performed_by=actor)
    except InsufficientStock as exc:
        # Availability is checked before any deduction, so nothing was written
        logger.warning(
            "Stock unavailable at payment confirmation; cancelling order, refund required",
            extra={"order_number": order.order_number, "details": exc.details},
        )
        apply_transition(
            order,
            OrderStatus.CANCELLED,
            actor_id=actor,
            note="Stock unavailable at payment confirmation",
        )


def apply_payment_event(
    external_reference: str,
    outcome: str,
    *,
    order_id: int | None = None,
    amount_cents: int | None = None,
    provider: str | None = None,
    method: str | None = None,
    verified_by: str | None = None,
) -> Transaction | None:
    """Apply one provider outcome; see module docstring. Returns the transaction, or None if ignored."""
    reference = optional_str({"reference": external_reference}, "reference", max_length=128)
    if not reference:
        raise ValidationError("reference is required", {"field": "reference"})
    outcome = require_choice(outcome, "outcome", OUTCOMES)
    target = OUTCOME_TO_TRANSACTION_STATUS[outcome]

    def _op():
        tx = _find_transaction(reference)
        if tx is None:
            order = db.session.get(Order, order_id) if order_id is not None else None
            if order is None:
                logger.warning(
                    "Ignoring payment event for unknown reference",
                    extra={"reference": reference, "outcome": outcome},
                )
                return None
            # A first event must be reachable from PENDING, or nothing is recorded
            if target not in TRANSACTION_TRANSITIONS["PENDING"]:
                logger.warning(
                    "Ignoring out-of-order first payment event",
                    extra={"reference": reference, "outcome": outcome, "order_id": order.id},
                )
                return None
            tx = _insert_transaction(
                order, reference, amount_cents=amount_cents, provider=provider, method=method
            )

        if tx.status == target:
            logger.info(
                "Duplicate payment event ignored",
                extra={"reference": reference, "outcome": outcome},
            )
            db.session.commit()
            return tx

        if target not in TRANSACTION_TRANSITIONS.get(tx.status, set()):
            logger.warning(
                "Out-of-order payment event ignored",
                extra={"reference": reference, "outcome": outcome, "current": tx.status},
            )
            db.session.commit()
            return tx

        order = lock_order(tx.order_id)
        tx.status = target

        if outcome == "SUCCEEDED":
            tx.verified_at = utcnow()
            tx.verified_by = verified_by
            order.payment_status = PaymentStatus.PAID
            order.payment_reference = tx.reference
            _commit_stock_on_payment(order, verified_by)
        elif outcome == "FAILED":
            # Another attempt may already have paid this order
            if order.payment_status != PaymentStatus.PAID:
                order.payment_status = PaymentStatus.FAILED
            if order.source == "IN_STORE":
                logger.warning(
                    "In-store payment failed after goods were handed over",
                    extra={"order_number": order.order_number, "reference": reference},
                )
        elif outcome == "CANCELLED":
            if order.payment_status != PaymentStatus.PAID:
                order.payment_status = PaymentStatus.PENDING
        elif outcome == "REFUNDED":
            order.payment_status = PaymentStatus.REFUNDED

        db.session.commit()
        logger.info(
            "Payment event applied",
            extra={"reference": reference, "outcome": outcome, "order_number": order.order_number},
        )
        return tx

    return run_with_retry(_op)


def initiate_payment(
    order_id: int,
    *,
    provider: str | None = None,
    phone: str | None = None,
) -> Transaction:
    """
    Ask the provider to collect an online order's total.

    The provider call happens outside any database unit and is never retried;
    the PENDING transaction is recorded once the provider has answered.
    """
    order = get_order(order_id)
    if order.source != "ONLINE":
        raise ValidationError("Only online orders are paid through the provider", {"field": "order_id"})
    if order.payment_method not in ONLINE_COLLECTION_METHODS:
        raise ValidationError(
            f"Payment method {order.payment_method} is not collected online", {"field": "payment_method"}
        )
    if order.status == OrderStatus.CANCELLED:
        raise ConflictError("Order is cancelled", {"order_status": order.status})
    if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        raise ConflictError("Order is already paid", {"payment_status": order.payment_status})
    if order.payment_method == "MOBILE_MONEY" and (not provider or not phone):
        raise ValidationError("provider and phone are required for mobile money", {"field": "provider"})

    order_number, total, method = order.order_number, order.total_cents, order.payment_method
    provider = provider.upper() if provider else None
    db.session.rollback()

    created = get_provider_client().create_payment(
        order_number=order_number,
        amount_cents=total,
        method=method,
        provider=provider,
        phone=phone,
    )
    if not created.reference:
        raise PaymentDeclined("Payment was declined by the provider", {"order_number": order_number})

    def _op():
        if _find_transaction(created.reference) is not None:
            raise DuplicateReference("Provider returned a reference that is already recorded")
        locked = lock_order(order_id)
        tx = Transaction(
            order_id=locked.id,
            amount_cents=total,
            method=method,
            provider=provider,
            phone=phone,
            reference=created.reference,
            status="PENDING",
        )
        db.session.add(tx)
        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    if created.status in OUTCOMES:
        apply_payment_event(created.reference, created.status, verified_by="provider")
        db.session.refresh(tx)
    return tx


def verify_payment(reference: str, *, verified_by: str | None = None) -> tuple[Transaction, str]:
    """
    Query the provider for a recorded reference and reconcile the result.

    Returns (transaction, provider_status); PENDING changes nothing.
    """
    tx = db.session.query(Transaction).filter_by(reference=reference).first()
    if tx is None:
        raise NotFoundError("Payment not found", {"reference": reference})
    db.session.rollback()

    result = get_provider_client().get_payment_status(reference)
    if result.status in OUTCOMES:
        apply_payment_event(reference, result.status, verified_by=verified_by)

    tx = db.session.query(Transaction).filter_by(reference=reference).one()
    return tx, result.status


def list_transactions(*, order_id: int | None = None, status: str | None = None) -> list[Transaction]:
    query = db.session.query(Transaction)
    if order_id is not None:
        query = query.filter(Transaction.order_id == order_id)
    if status:
        query = query.filter(Transaction.status == status.upper())
    return query.order_by(Transaction.id.desc()).all()
