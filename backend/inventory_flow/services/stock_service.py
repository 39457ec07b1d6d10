# Overview: Service-layer operations for the stock ledger; sole writer of Product.on_hand_pieces.

"""
Stock Ledger

Every change to on-hand pieces goes through apply_stock_change() while the
product row is locked, and leaves exactly one InventoryAdjustment behind
with the quantities before and after.

LOCK ORDER:
Callers that touch several products lock them through lock_products(),
which always takes the locks in ascending product id. Order-level callers
lock the order row first. Two transactions therefore never wait on each
other in a cycle.

Public operations (deduct, restore, manual_adjust, restock) each run in
their own short transaction. The in-transaction primitives
(lock_products, apply_stock_change) are for other services that already
hold a transaction open.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product, InventoryAdjustment
from .concurrency import lock_for_update, run_in_transaction
from .errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from . import permission_service


# Reason codes accepted for manual adjustments (restock has its own operation)
MANUAL_REASON_CODES = ("damaged", "expired", "theft", "correction", "transfer", "other")


def require_positive_pieces(value, field: str = "pieces") -> int:
    """Reject zero, negative, boolean and non-integer piece counts."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{field} must be an integer", details={field: value})
    if value <= 0:
        raise InvalidArgumentError(f"{field} must be positive", details={field: value})
    return value


# =============================================================================
# IN-TRANSACTION PRIMITIVES
# =============================================================================


def lock_products(product_ids) -> dict[int, Product]:
    """
    Lock every product in `product_ids`, ascending by id.

    Rows are locked one at a time so the acquisition order is explicit
    rather than left to the planner. Returns {product_id: Product}.
    """
    locked: dict[int, Product] = {}
    for product_id in sorted(set(product_ids)):
        product = (
            lock_for_update(db.session.query(Product).filter(Product.id == product_id))
            .populate_existing()
            .one_or_none()
        )
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        locked[product_id] = product
    return locked


def apply_stock_change(
    product: Product,
    delta: int,
    *,
    adjustment_type: str,
    actor_user_id: int | None,
    reason: str | None = None,
    order_id: int | None = None,
    return_id: int | None = None,
) -> InventoryAdjustment:
    """
    Change on-hand pieces of an already locked product by `delta`.

    Raises InsufficientStockError, leaving the product untouched, if the
    result would be negative.
    """
    before = product.on_hand_pieces
    after = before + delta
    if after < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.sku}",
            details={
                "product_id": product.id,
                "sku": product.sku,
                "requested_pieces": -delta,
                "on_hand_pieces": before,
            },
        )

    product.on_hand_pieces = after

    adjustment = InventoryAdjustment(
        product_id=product.id,
        adjustment_type=adjustment_type,
        quantity_change=delta,
        quantity_before=before,
        quantity_after=after,
        reason=reason,
        order_id=order_id,
        return_id=return_id,
        actor_user_id=actor_user_id,
    )
    db.session.add(adjustment)
    return adjustment


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================


def _single_product_change(product_id: int, delta: int, *, adjustment_type: str,
                           actor_user_id: int | None, reason: str | None,
                           admin_only: bool = False) -> InventoryAdjustment:
    def _op():
        if admin_only:
            permission_service.require_admin(actor_user_id)
        else:
            permission_service.get_actor(actor_user_id)
        product = lock_products([product_id])[product_id]
        adjustment = apply_stock_change(
            product,
            delta,
            adjustment_type=adjustment_type,
            actor_user_id=actor_user_id,
            reason=reason,
        )
        db.session.flush()
        return adjustment

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


def deduct(product_id: int, pieces: int, actor_user_id: int | None, reason: str | None = None) -> InventoryAdjustment:
    """Remove `pieces` from on-hand stock. Fails rather than go below zero."""
    require_positive_pieces(pieces)
    return _single_product_change(
        product_id,
        -pieces,
        adjustment_type="sale",
        actor_user_id=actor_user_id,
        reason=reason,
    )


def restore(product_id: int, pieces: int, actor_user_id: int | None, reason: str | None = None) -> InventoryAdjustment:
    """Put `pieces` back into on-hand stock."""
    require_positive_pieces(pieces)
    return _single_product_change(
        product_id,
        pieces,
        adjustment_type="return",
        actor_user_id=actor_user_id,
        reason=reason,
    )


def manual_adjust(
    product_id: int,
    delta: int,
    reason_code: str,
    actor_user_id: int | None,
    note: str | None = None,
) -> InventoryAdjustment:
    """
    Administrator correction of on-hand stock.

    reason_code must be one of MANUAL_REASON_CODES; delta may be negative
    but never zero, and never drives stock below zero.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidArgumentError("delta must be an integer", details={"delta": delta})
    if delta == 0:
        raise InvalidArgumentError("delta must not be zero")
    if reason_code not in MANUAL_REASON_CODES:
        raise InvalidArgumentError(
            "Unknown reason code",
            details={"reason_code": reason_code, "allowed": list(MANUAL_REASON_CODES)},
        )

    return _single_product_change(
        product_id,
        delta,
        adjustment_type=reason_code,
        actor_user_id=actor_user_id,
        reason=note,
        admin_only=True,
    )


def restock(product_id: int, added_pieces: int, actor_user_id: int | None, note: str | None = None) -> InventoryAdjustment:
    """Administrator receipt of new stock; additions only."""
    require_positive_pieces(added_pieces, "added_pieces")
    return _single_product_change(
        product_id,
        added_pieces,
        adjustment_type="restock",
        actor_user_id=actor_user_id,
        reason=note,
        admin_only=True,
    )


# =============================================================================
# READS (never lock)
# =============================================================================


def get_stock_level(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return {
        "product_id": product.id,
        "sku": product.sku,
        "on_hand_pieces": product.on_hand_pieces,
        "available_pieces": product.on_hand_pieces,
        "pieces_per_case": product.pieces_per_case,
        "full_cases": product.on_hand_pieces // product.pieces_per_case,
        "loose_pieces": product.on_hand_pieces % product.pieces_per_case,
        "is_low_stock": product.is_low_stock,
    }


def list_adjustments(
    *,
    product_id: int | None = None,
    adjustment_type: str | None = None,
    order_id: int | None = None,
    limit: int = 200,
) -> list[InventoryAdjustment]:
    q = db.session.query(InventoryAdjustment)
    if product_id is not None:
        q = q.filter(InventoryAdjustment.product_id == product_id)
    if adjustment_type:
        q = q.filter(InventoryAdjustment.adjustment_type == adjustment_type)
    if order_id is not None:
        q = q.filter(InventoryAdjustment.order_id == order_id)
    limit = max(1, min(int(limit), 1000))
    return q.order_by(InventoryAdjustment.id.desc()).limit(limit).all()


def list_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.on_hand_pieces <= Product.low_stock_threshold,
        )
        .order_by(Product.on_hand_pieces.asc(), Product.id.asc())
        .all()
    )
