from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


RETURN_STATUSES = ("pending", "approved", "rejected")
RETURN_CONDITIONS = ("resellable", "damaged", "expired")


class ReturnRequest(db.Model):
    """
    Customer return against a confirmed or delivered order.

    LIFECYCLE:
    1. pending: submitted, awaiting an administrator
    2. approved: resellable lines restored to stock
    3. rejected: closed with no stock effect

    Pending and approved requests both count against the returnable
    pieces of an order line, so a line can never be returned twice.
    """
    __tablename__ = "return_requests"
    __audited__ = True
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_return_requests_status",
        ),
        db.Index("ix_return_requests_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "RET-2026-00007"
    return_number = db.Column(db.String(32), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    reason = db.Column(db.Text, nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    resolved_at = db.Column(db.DateTime, nullable=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    # Sum of resellable pieces put back on the shelf at approval
    pieces_restored = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        back_populates="return_request",
        cascade="all, delete-orphan",
        order_by="ReturnLine.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "status": self.status,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolution_note": self.resolution_note,
            "pieces_restored": self.pieces_restored,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __audited__ = True
    __table_args__ = (
        db.CheckConstraint("pieces_returned > 0", name="ck_return_lines_pieces_positive"),
        db.CheckConstraint(
            "condition IN ('resellable', 'damaged', 'expired')",
            name="ck_return_lines_condition",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    pieces_returned = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False)

    # Set when approval put these pieces back into on-hand stock
    restored = db.Column(db.Boolean, nullable=False, default=False)

    return_request = db.relationship("ReturnRequest", back_populates="lines")
    order_line = db.relationship("OrderLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_line_id": self.order_line_id,
            "product_id": self.product_id,
            "pieces_returned": self.pieces_returned,
            "condition": self.condition,
            "restored": self.restored,
        }
