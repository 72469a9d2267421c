from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class Return(db.Model):
    """
    Return Merchandise Authorization (RMA).

    STATE MACHINE:
        REQUESTED -> APPROVED -> RECEIVED -> REFUNDED -> COMPLETED
        REQUESTED -> REJECTED
        RECEIVED  -> COMPLETED (no refund owed, e.g. exchange)

    RECEIVED is the only transition with an inventory side effect.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("rma_number", name="uq_returns_rma_number"),
        db.Index("ix_returns_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "RMA-20260115-0003")
    rma_number = db.Column(db.String(32), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    requested_by = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="REQUESTED", index=True)
    reason = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(64), nullable=True)
    rejection_note = db.Column(db.String(255), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by = db.Column(db.String(64), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    items = db.relationship("ReturnItem", back_populates="rma", lazy=True, order_by="ReturnItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Return id={self.id} rma={self.rma_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "rma_number": self.rma_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "requested_by": self.requested_by,
            "status": self.status,
            "reason": self.reason,
            "description": self.description,
            "refund_amount_cents": self.refund_amount_cents,
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_note": self.rejection_note,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
            "refunded_at": to_utc_z(self.refunded_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    """
    Returned quantity of one order item.

    restockable defaults from condition (UNOPENED / OPENED_UNUSED -> True)
    and may be overridden by staff when the return is created.
    restocked_entry_id records the RETURN ledger entry, once.
    """
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    # UNOPENED, OPENED_UNUSED, DEFECTIVE, DAMAGED
    condition = db.Column(db.String(16), nullable=False)
    restockable = db.Column(db.Boolean, nullable=False, default=False)

    restocked_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)

    rma = db.relationship("Return", back_populates="items")
    order_item = db.relationship("OrderItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_item_id": self.order_item_id,
            "variant_id": self.variant_id,
            "product_name": self.order_item.product_name if self.order_item else None,
            "quantity": self.quantity,
            "condition": self.condition,
            "restockable": self.restockable,
            "restocked_entry_id": self.restocked_entry_id,
        }
