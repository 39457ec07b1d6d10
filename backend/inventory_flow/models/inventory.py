from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class Product(db.Model):
    """
    Product master data and the on-hand piece count.

    STOCK INVARIANT:
    on_hand_pieces is the single shared mutable resource of the engine.
    It is written only by services.stock_service, always under a row lock,
    and never goes below zero (CHECK constraint backs the service check).

    Prices are authoritative in cents per piece; a case is just
    pieces_per_case pieces at the piece price.
    """
    __tablename__ = "products"
    __audited__ = True
    __table_args__ = (
        db.CheckConstraint("on_hand_pieces >= 0", name="ck_products_on_hand_non_negative"),
        db.CheckConstraint("pieces_per_case >= 1", name="ck_products_pieces_per_case_positive"),
        db.CheckConstraint("price_per_piece_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price_per_piece_cents = db.Column(db.Integer, nullable=False)
    # Admin-only visibility; used for margin reporting on order lines
    wholesale_cost_per_piece_cents = db.Column(db.Integer, nullable=True)
    pieces_per_case = db.Column(db.Integer, nullable=False, default=1)

    on_hand_pieces = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.on_hand_pieces <= self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} on_hand={self.on_hand_pieces}>"

    def to_dict(self, *, include_cost: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_per_piece_cents": self.price_per_piece_cents,
            "pieces_per_case": self.pieces_per_case,
            "on_hand_pieces": self.on_hand_pieces,
            # No reservation bucket: everything on hand is sellable
            "available_pieces": self.on_hand_pieces,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_cost:
            data["wholesale_cost_per_piece_cents"] = self.wholesale_cost_per_piece_cents
        return data


ADJUSTMENT_TYPES = (
    "restock",
    "sale",
    "cancellation",
    "return",
    "damaged",
    "expired",
    "theft",
    "correction",
    "transfer",
    "other",
)


class InventoryAdjustment(db.Model):
    """
    One row per successful Stock Ledger call.

    Append-only: rows are never updated or deleted (mapper guard in
    services.audit_service, trigger on PostgreSQL).
    """
    __tablename__ = "inventory_adjustments"
    __append_only__ = True
    __table_args__ = (
        db.Index("ix_inventory_adjustments_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    adjustment_type = db.Column(db.String(32), nullable=False, index=True)

    # positive = add, negative = remove
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    # Triggering documents, when there is one
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "adjustment_type": self.adjustment_type,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "order_id": self.order_id,
            "return_id": self.return_id,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
