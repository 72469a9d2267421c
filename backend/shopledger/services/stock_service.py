# Overview: Service-layer operations for stock; the only code path that mutates variant quantities.

"""
Stock Adjustment Service

================================================================================
CONTRACT: adjust(variant, change, type, reason, actor, order?) -> (new_qty, entry_id)
================================================================================

Every stock mutation in the system (POS sales, online order commits,
cancellations, return receipts, operator restocks and corrections) goes through
apply_stock_change(). It performs, inside the caller's transaction:

    1. lock the variant row and read previous quantity
    2. compute new = previous + change
    3. reject with InsufficientStock if new < 0 (NO write of any kind)
    4. compare-and-swap UPDATE variants SET stock_quantity = new
       WHERE id = :id AND stock_quantity = previous
    5. append exactly one LedgerEntry(previous, change, new)

A lost compare-and-swap race (rowcount != 1) raises StaleDataError so
run_with_retry re-runs the whole unit against fresh data. Different variants
lock different rows, so there is no cross-variant contention.

apply_stock_change never commits. adjust_stock() is the standalone unit of
work (retry + commit) used by operators; orchestrators (sales, orders,
returns) call apply_stock_change inside their own unit.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, update
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InsufficientStock, ValidationError, VariantNotFound
from ..extensions import db
from ..models import LedgerEntry, Variant
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


CHANGE_TYPES = ("RESTOCK", "ADJUSTMENT", "SALE", "RETURN")

# SALE is system-driven only (POS and order stock commits)
MANUAL_CHANGE_TYPES = ("RESTOCK", "ADJUSTMENT", "RETURN")


@dataclass(frozen=True)
class StockChange:
    new_quantity: int
    ledger_entry_id: int

    def to_dict(self) -> dict:
        return {"new_quantity": self.new_quantity, "ledger_entry_id": self.ledger_entry_id}


@dataclass(frozen=True)
class StockRequirement:
    """One line of demand checked by check_availability()."""
    variant_id: int
    quantity: int
    line: int | None = None


def _lock_variant(variant_id: int) -> Variant:
    variant = lock_for_update(db.session.query(Variant).filter_by(id=variant_id)).first()
    if not variant:
        raise VariantNotFound("Variant not found", details={"variant_id": variant_id})
    return variant


def apply_stock_change(
    *,
    variant_id: int,
    quantity_change: int,
    change_type: str,
    reason: str,
    performed_by: str | None = None,
    order_id: int | None = None,
) -> StockChange:
    """Core adjustment without retry or commit; see module docstring."""
    if change_type not in CHANGE_TYPES:
        raise ValidationError(
            f"Invalid change_type '{change_type}'. Must be one of: {', '.join(CHANGE_TYPES)}",
            details={"field": "change_type"},
        )
    if not isinstance(quantity_change, int) or isinstance(quantity_change, bool) or quantity_change == 0:
        raise ValidationError("quantity_change must be a non-zero integer", details={"field": "quantity_change"})
    if not reason or not reason.strip():
        raise ValidationError("reason is required", details={"field": "reason"})

    variant = _lock_variant(variant_id)
    previous = variant.stock_quantity
    new_quantity = previous + quantity_change

    if new_quantity < 0:
        raise InsufficientStock(
            f"Only {previous} units of SKU {variant.sku} remain",
            details={
                "variant_id": variant.id,
                "sku": variant.sku,
                "requested": -quantity_change,
                "available": previous,
            },
        )

    result = db.session.execute(
        update(Variant)
        .where(Variant.id == variant.id, Variant.stock_quantity == previous)
        .values(stock_quantity=new_quantity, updated_at=utcnow())
    )
    if result.rowcount != 1:
        raise StaleDataError(f"Variant {variant.id} stock changed concurrently")

    entry = LedgerEntry(
        variant_id=variant.id,
        change_type=change_type,
        quantity_change=quantity_change,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason.strip(),
        performed_by=performed_by,
        order_id=order_id,
    )
    if entry.new_quantity != entry.previous_quantity + entry.quantity_change:
        raise RuntimeError("Ledger arithmetic invariant violated")

    db.session.add(entry)
    db.session.flush()
    return StockChange(new_quantity=new_quantity, ledger_entry_id=entry.id)


def adjust_stock(
    variant_id: int,
    quantity_change: int,
    change_type: str,
    reason: str,
    performed_by: str | None = None,
    order_id: int | None = None,
) -> StockChange:
    """Standalone stock adjustment: one ledger entry, committed atomically."""
    def _op():
        change = apply_stock_change(
            variant_id=variant_id,
            quantity_change=quantity_change,
            change_type=change_type,
            reason=reason,
            performed_by=performed_by,
            order_id=order_id,
        )
        db.session.commit()
        return change

    return run_with_retry(_op)


def check_availability(requirements: list[StockRequirement]) -> dict[int, Variant]:
    """
    Lock every demanded variant and confirm the aggregate demand fits.

    Quantities for the same variant across lines are summed. Variants are
    locked in id order so concurrent multi-line units cannot deadlock.
    Raises InsufficientStock naming the first failing line; writes nothing.
    """
    demand: dict[int, int] = {}
    first_line: dict[int, int | None] = {}
    for req in requirements:
        demand[req.variant_id] = demand.get(req.variant_id, 0) + req.quantity
        first_line.setdefault(req.variant_id, req.line)

    variants: dict[int, Variant] = {}
    for variant_id in sorted(demand):
        variants[variant_id] = _lock_variant(variant_id)

    for req in requirements:
        variant = variants[req.variant_id]
        wanted = demand[req.variant_id]
        if wanted > variant.stock_quantity:
            raise InsufficientStock(
                f"Only {variant.stock_quantity} units of SKU {variant.sku} remain",
                details={
                    "line": first_line[req.variant_id],
                    "variant_id": variant.id,
                    "sku": variant.sku,
                    "requested": wanted,
                    "available": variant.stock_quantity,
                },
            )
    return variants


# =============================================================================
# Queries
# =============================================================================

def get_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if not variant:
        raise VariantNotFound("Variant not found", details={"variant_id": variant_id})
    return variant


def get_ledger(variant_id: int, *, limit: int = 100, change_type: str | None = None) -> list[LedgerEntry]:
    """Ledger history for a variant, newest first."""
    get_variant(variant_id)
    query = db.session.query(LedgerEntry).filter_by(variant_id=variant_id)
    if change_type:
        if change_type not in CHANGE_TYPES:
            raise ValidationError(f"Invalid change_type '{change_type}'", details={"field": "change_type"})
        query = query.filter(LedgerEntry.change_type == change_type)
    limit = max(1, min(limit, 500))
    return query.order_by(LedgerEntry.id.desc()).limit(limit).all()


def list_stock(*, low_stock_threshold: int | None = None, include_inactive: bool = False) -> list[Variant]:
    query = db.session.query(Variant)
    if not include_inactive:
        query = query.filter(Variant.is_active.is_(True))
    if low_stock_threshold is not None:
        query = query.filter(Variant.stock_quantity <= low_stock_threshold)
    return query.order_by(Variant.stock_quantity.asc(), Variant.sku.asc()).all()


def verify_ledger(variant_id: int | None = None) -> list[dict]:
    """
    Audit the materialized quantity against the ledger's running sum.

    Returns one row per variant: stock_quantity, ledger_sum, consistent.
    """
    ledger_sum = (
        db.session.query(
            LedgerEntry.variant_id.label("variant_id"),
            func.coalesce(func.sum(LedgerEntry.quantity_change), 0).label("total"),
        )
        .group_by(LedgerEntry.variant_id)
        .subquery()
    )
    query = (
        db.session.query(Variant, func.coalesce(ledger_sum.c.total, 0))
        .outerjoin(ledger_sum, ledger_sum.c.variant_id == Variant.id)
    )
    if variant_id is not None:
        query = query.filter(Variant.id == variant_id)

    report = []
    for variant, total in query.order_by(Variant.id).all():
        total = int(total or 0)
        report.append({
            "variant_id": variant.id,
            "sku": variant.sku,
            "stock_quantity": variant.stock_quantity,
            "ledger_sum": total,
            "consistent": variant.stock_quantity == total,
        })
    return report
