# Overview: Service-layer operations for products; catalog maintenance around the stock ledger.

"""
Products Service

Catalog fields (name, price, packaging, threshold, active flag) are edited
here by administrators. On-hand stock is not: it only moves through
stock_service, so every piece is accounted for by an adjustment row.
A product created with initial stock starts at zero and is restocked, so
its adjustment trail is complete from the first piece.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product, OrderLine, InventoryAdjustment, ReturnLine
from ..validation import PRODUCT_POLICY, validate_payload, enforce_rules_product
from .concurrency import run_in_transaction
from .errors import ConflictError, InvalidArgumentError, NotFoundError
from . import permission_service, stock_service


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable_fields:
            continue
        setattr(p, k, v)


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def list_products(*, active_only: bool = False, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.sku.ilike(like), Product.name.ilike(like)))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def create_product(*, payload: dict, actor_user_id: int | None, initial_pieces: int = 0) -> Product:
    """
    Create a product from a client payload.

    Raises:
        InvalidArgumentError: payload fails validation
        ConflictError: SKU already exists
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    if initial_pieces:
        stock_service.require_positive_pieces(initial_pieces, "initial_pieces")

    def _op():
        permission_service.require_admin(actor_user_id)
        if _sku_taken(patch["sku"]):
            raise ConflictError("SKU already exists", details={"sku": patch["sku"]})

        p = Product(on_hand_pieces=0)
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()

        if initial_pieces:
            stock_service.apply_stock_change(
                p,
                initial_pieces,
                adjustment_type="restock",
                actor_user_id=actor_user_id,
                reason="Initial stock",
            )
        return p

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=bool(initial_pieces))


def update_product(*, product_id: int, payload: dict, actor_user_id: int | None) -> Product:
    """Patch catalog fields. on_hand_pieces is not writable here."""
    if isinstance(payload, dict) and "on_hand_pieces" in payload:
        raise InvalidArgumentError(
            "on_hand_pieces can only change through restock or adjustment",
            details={"field": "on_hand_pieces"},
        )
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        permission_service.require_admin(actor_user_id)
        p = stock_service.lock_products([product_id])[product_id]

        if "sku" in patch and patch["sku"] != p.sku and _sku_taken(patch["sku"], exclude_id=p.id):
            raise ConflictError("SKU already exists", details={"sku": patch["sku"]})

        apply_product_patch(p, patch)
        return p

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def delete_product(*, product_id: int, actor_user_id: int | None) -> None:
    """
    Delete a product nothing refers to.

    Products on any order line, return line or adjustment row keep their
    history; deactivate them instead.
    """
    def _op():
        permission_service.require_admin(actor_user_id)
        p = stock_service.lock_products([product_id])[product_id]

        for model, label in (
            (OrderLine, "order lines"),
            (ReturnLine, "return lines"),
            (InventoryAdjustment, "inventory adjustments"),
        ):
            in_use = db.session.query(model.id).filter(model.product_id == p.id).first()
            if in_use is not None:
                raise ConflictError(
                    f"Product is referenced by {label}; deactivate it instead",
                    details={"product_id": p.id},
                )

        db.session.delete(p)

    run_in_transaction(_op, actor_user_id=actor_user_id)
