from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


ORDER_STATUSES = ("draft", "confirmed", "delivered", "cancelled")


class Order(db.Model):
    """
    Order document.

    LIFECYCLE:
        draft --confirm--> confirmed --deliver--> delivered
        draft --cancel---> cancelled
        confirmed --cancel--> cancelled
        draft --expire--> (deleted by the draft reaper)

    Drafts never touch stock. Confirmation deducts on-hand pieces for every
    line in one transaction; cancelling a confirmed order puts them back.
    Totals are always recomputed server-side from the line snapshots.
    """
    __tablename__ = "orders"
    __audited__ = True
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft', 'confirmed', 'delivered', 'cancelled')",
            name="ck_orders_status",
        ),
        db.CheckConstraint(
            "discount_kind IN ('none', 'percent', 'fixed')",
            name="ck_orders_discount_kind",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "ORD-2026-00042"
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    # Registered customer; required for installment orders
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    reference_number = db.Column(db.String(128), nullable=True)

    # percent: basis points (1000 = 10%); fixed: cents
    discount_kind = db.Column(db.String(16), nullable=False, default="none")
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    # Server-computed money fields (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    confirmed_at = db.Column(db.DateTime, nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    delivered_at = db.Column(db.DateTime, nullable=True)
    delivered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    customer = db.relationship("Customer")
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "created_by_user_id": self.created_by_user_id,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "discount_kind": self.discount_kind,
            "discount_value": self.discount_value,
            "subtotal_cents": self.subtotal_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "delivered_by_user_id": self.delivered_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Line item with frozen packaging and price.

    A line ordered by the case stores cases in cases_ordered and the
    product's pieces_per_case at the time; a line ordered by the piece
    stores pieces in cases_ordered with a snapshot of 1. Either way
    computed_pieces = cases_ordered * pieces_per_case_snapshot, so later
    price or packaging edits on the product never change history.
    """
    __tablename__ = "order_lines"
    __audited__ = True
    __table_args__ = (
        db.CheckConstraint("cases_ordered > 0", name="ck_order_lines_cases_positive"),
        db.CheckConstraint("pieces_per_case_snapshot >= 1", name="ck_order_lines_ppc_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # "case" or "piece": how the line was entered, for display
    order_unit = db.Column(db.String(8), nullable=False, default="case")

    cases_ordered = db.Column(db.Integer, nullable=False)
    pieces_per_case_snapshot = db.Column(db.Integer, nullable=False)
    unit_price_snapshot_cents = db.Column(db.Integer, nullable=False)
    unit_cost_snapshot_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    @property
    def computed_pieces(self) -> int:
        return self.cases_ordered * self.pieces_per_case_snapshot

    @property
    def line_total_cents(self) -> int:
        return self.computed_pieces * self.unit_price_snapshot_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "order_unit": self.order_unit,
            "cases_ordered": self.cases_ordered,
            "pieces_per_case_snapshot": self.pieces_per_case_snapshot,
            "unit_price_snapshot_cents": self.unit_price_snapshot_cents,
            "computed_pieces": self.computed_pieces,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Exactly one invoice per order.

    The UNIQUE constraint on order_id is what settles two concurrent issue
    requests; the loser reads the winner's row. document_ref is written once
    after rendering and never changes afterwards.
    """
    __tablename__ = "invoices"
    __audited__ = True
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_invoices_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    # Opaque pointer to the rendered artifact; empty until rendering succeeds
    document_ref = db.Column(db.String(512), nullable=True)

    # Frozen from the order's line snapshots at claim time
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_amount_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))

    @property
    def is_rendered(self) -> bool:
        return self.document_ref is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "document_ref": self.document_ref,
            "is_rendered": self.is_rendered,
            "subtotal_cents": self.subtotal_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
