from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product; the priced parent of one or more Variants.

    PRICING: unit price of a variant = base_price_cents + additional_price_cents.
    Prices are snapshotted onto order items at sale time, so later edits here
    never change historical orders.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    base_price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship("Variant", back_populates="product", lazy=True, order_by="Variant.id")

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self, include_variants: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class Variant(db.Model):
    """
    Purchasable size/color combination; the unit inventory is tracked against.

    CRITICAL: stock_quantity is a materialized view of the ledger. It is only
    ever written by stock_service.apply_stock_change, which appends the
    matching LedgerEntry in the same transaction.

    Variants referenced by orders are never deleted; set is_active=False.
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_variants_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_variants_stock_nonnegative"),
        db.Index("ix_variants_product_active", "product_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    color_hex = db.Column(db.String(7), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    additional_price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="variants")

    def __repr__(self) -> str:
        return f"<Variant id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def unit_price_cents(self) -> int:
        return self.product.base_price_cents + (self.additional_price_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "color_hex": self.color_hex,
            "stock_quantity": self.stock_quantity,
            "additional_price_cents": self.additional_price_cents,
            "unit_price_cents": self.unit_price_cents if self.product else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
