from __future__ import annotations

from dataclasses import asdict, dataclass

from ..extensions import db
from shopledger.time_utils import to_utc_z


@dataclass(frozen=True)
class DeliveryAddress:
    """Fixed-schema delivery address snapshot (orders and shipments)."""
    recipient_name: str
    phone: str
    street: str
    commune: str
    city: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VariantSnapshot:
    """Variant attributes frozen onto an order item at time of sale."""
    sku: str
    size: str | None
    color: str | None

    def to_dict(self) -> dict:
        return asdict(self)


class Order(db.Model):
    """
    Order aggregate header.

    status and payment_status evolve independently:
    - status is owned by the order state machine (order_service)
    - payment_status is owned by payment reconciliation (payment_service)

    Orders are financial records: never deleted.

    STOCK: online orders deduct stock exactly once, recorded by
    stock_committed_at. POS orders are created with stock already committed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "MLA-20260115-0007")
    order_number = db.Column(db.String(32), nullable=False)

    # External actor reference; NULL for anonymous in-store sales
    customer_id = db.Column(db.String(64), nullable=True)

    # PENDING, CONFIRMED, PROCESSING, READY_FOR_PICKUP, SHIPPED, DELIVERED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="PENDING", index=True)

    # CASH, MOBILE_MONEY, CARD, CASH_ON_DELIVERY
    payment_method = db.Column(db.String(24), nullable=False)
    # PENDING, PAID, FAILED, REFUNDED
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    # HOME_DELIVERY, STORE_PICKUP
    delivery_method = db.Column(db.String(16), nullable=False)
    delivery_zone = db.Column(db.String(64), nullable=True)

    # Delivery address snapshot (HOME_DELIVERY only)
    recipient_name = db.Column(db.String(128), nullable=True)
    recipient_phone = db.Column(db.String(32), nullable=True)
    street = db.Column(db.String(255), nullable=True)
    commune = db.Column(db.String(64), nullable=True)
    city = db.Column(db.String(64), nullable=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # ONLINE, IN_STORE
    source = db.Column(db.String(16), nullable=False, default="ONLINE", index=True)
    notes = db.Column(db.Text, nullable=True)

    stock_committed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", back_populates="order", lazy=True, order_by="OrderItem.id")
    transactions = db.relationship("Transaction", back_populates="order", lazy=True, order_by="Transaction.id")
    shipment = db.relationship("Shipment", back_populates="order", uselist=False, lazy=True)
    status_changes = db.relationship(
        "OrderStatusChange", back_populates="order", lazy=True, order_by="OrderStatusChange.id"
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    @property
    def delivery_address(self) -> DeliveryAddress | None:
        if not self.street:
            return None
        return DeliveryAddress(
            recipient_name=self.recipient_name,
            phone=self.recipient_phone,
            street=self.street,
            commune=self.commune,
            city=self.city,
        )

    def set_delivery_address(self, address: DeliveryAddress | None) -> None:
        self.recipient_name = address.recipient_name if address else None
        self.recipient_phone = address.phone if address else None
        self.street = address.street if address else None
        self.commune = address.commune if address else None
        self.city = address.city if address else None

    def to_dict(self, include_items: bool = True) -> dict:
        address = self.delivery_address
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "delivery_method": self.delivery_method,
            "delivery_zone": self.delivery_zone,
            "delivery_address": address.to_dict() if address else None,
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "total_cents": self.total_cents,
            "source": self.source,
            "notes": self.notes,
            "stock_committed_at": to_utc_z(self.stock_committed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line snapshot.

    product_name, sku/size/color and price_at_purchase_cents are copied from
    the catalog when the order is created and never change afterwards.
    variant_id is a historical reference only, never a live join for pricing.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_purchase_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    @property
    def variant_details(self) -> VariantSnapshot:
        return VariantSnapshot(sku=self.sku, size=self.size, color=self.color)

    @property
    def line_total_cents(self) -> int:
        return self.price_at_purchase_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_details": self.variant_details.to_dict(),
            "quantity": self.quantity,
            "price_at_purchase_cents": self.price_at_purchase_cents,
            "line_total_cents": self.line_total_cents,
        }


class Transaction(db.Model):
    """
    Payment attempt for an order.

    reference is the external correlation id (provider reference, or the
    order number for cash tendered at the till) and is unique: it is the
    idempotency key for payment reconciliation.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_transactions_reference"),
        db.Index("ix_transactions_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    # Cash tender details (POS only)
    tendered_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=True)

    method = db.Column(db.String(24), nullable=False)
    provider = db.Column(db.String(32), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    reference = db.Column(db.String(128), nullable=False)

    # PENDING, COMPLETED, FAILED, CANCELLED, REFUNDED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    verified_by = db.Column(db.String(64), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", back_populates="transactions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "method": self.method,
            "provider": self.provider,
            "phone": self.phone,
            "reference": self.reference,
            "status": self.status,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Shipment(db.Model):
    """Carrier hand-off for a HOME_DELIVERY order (zero or one per order)."""
    __tablename__ = "shipments"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_shipments_order"),
        db.UniqueConstraint("tracking_number", name="uq_shipments_tracking_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    tracking_number = db.Column(db.String(64), nullable=False)
    # DHL, FEDEX, UPS, LOCAL, OTHER
    carrier = db.Column(db.String(16), nullable=False)
    # PENDING, PICKED_UP, IN_TRANSIT, OUT_FOR_DELIVERY, DELIVERED, FAILED, RETURNED
    status = db.Column(db.String(24), nullable=False, default="PENDING", index=True)

    recipient_name = db.Column(db.String(128), nullable=False)
    recipient_phone = db.Column(db.String(32), nullable=False)
    street = db.Column(db.String(255), nullable=False)
    commune = db.Column(db.String(64), nullable=False)
    city = db.Column(db.String(64), nullable=False)

    estimated_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", back_populates="shipment")

    @property
    def address(self) -> DeliveryAddress:
        return DeliveryAddress(
            recipient_name=self.recipient_name,
            phone=self.recipient_phone,
            street=self.street,
            commune=self.commune,
            city=self.city,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "status": self.status,
            "address": self.address.to_dict(),
            "estimated_delivery": to_utc_z(self.estimated_delivery),
            "actual_delivery": to_utc_z(self.actual_delivery),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderStatusChange(db.Model):
    """Append-only status history for an order."""
    __tablename__ = "order_status_changes"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    changed_by = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="status_changes")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
