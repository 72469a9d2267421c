from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from shopledger.time_utils import to_utc_z


class LedgerEntry(db.Model):
    """
    Immutable stock-change fact (append-only audit trail).

    INVARIANTS:
    - new_quantity = previous_quantity + quantity_change (checked at write time
      by the service and by a table CHECK constraint)
    - for every variant, SUM(quantity_change) == variants.stock_quantity
    - rows are never updated or deleted (enforced by mapper events below)

    change_type is informational: RESTOCK / ADJUSTMENT are operator-driven,
    SALE / RETURN are system-driven. The arithmetic is identical.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint(
            "new_quantity = previous_quantity + quantity_change",
            name="ck_ledger_entries_arithmetic",
        ),
        db.CheckConstraint("new_quantity >= 0", name="ck_ledger_entries_nonnegative"),
        db.Index("ix_ledger_entries_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    # RESTOCK, ADJUSTMENT, SALE, RETURN
    change_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    performed_by = db.Column(db.String(64), nullable=True)

    # Correlation to the order that caused a SALE / RETURN
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("Variant", backref=db.backref("ledger_entries", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} variant_id={self.variant_id} "
            f"{self.change_type} {self.quantity_change:+d}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a ledger entry."""


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} cannot be deleted")
