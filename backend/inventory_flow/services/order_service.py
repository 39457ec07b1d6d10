# Overview: Service-layer operations for orders; draft editing and the confirm/deliver/cancel state machine.

"""
Order State Machine

    draft --confirm--> confirmed --deliver--> delivered (terminal)
    draft --cancel---> cancelled (terminal)
    confirmed --cancel--> cancelled (terminal)
    draft --expire--> <deleted> (reaper_service)

Drafts are free-form and never touch stock. Confirmation is the one
point where an order turns into a stock commitment: every product on the
order is checked and deducted inside a single transaction, or nothing is.

LOCK ORDER (shared with return_service and reaper_service):
1. the order row
2. the customer row, for installment orders (customer_service.lock_customer)
3. product rows, ascending id (stock_service.lock_products)

Totals are never taken from the client; they are recomputed from the line
snapshots after every edit and again at confirmation.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, Order, OrderLine, Product, ReturnRequest
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .document_service import ORDER_PREFIX, next_document_number
from .errors import InsufficientStockError, InvalidArgumentError, InvalidStateError, NotFoundError
from . import customer_service, permission_service, stock_service


PAYMENT_METHODS = ("cash", "gcash", "bank_transfer", "check", "credit", "installment")

# Non-cash methods that must carry a transaction/cheque/account reference
REFERENCE_REQUIRED_METHODS = frozenset({"gcash", "bank_transfer", "check", "credit"})

DISCOUNT_KINDS = ("none", "percent", "fixed")

# Percent discounts are stored in basis points: 10000 = 100%
MAX_PERCENT_BASIS_POINTS = 10000

ORDER_UNITS = ("case", "piece")

_UNSET = object()


# =============================================================================
# VALIDATION
# =============================================================================


def validate_payment(payment_method: str, reference_number: str | None) -> str | None:
    """Return the normalized reference number, or raise InvalidArgumentError."""
    if payment_method not in PAYMENT_METHODS:
        raise InvalidArgumentError(
            "Unknown payment method",
            details={"payment_method": payment_method, "allowed": list(PAYMENT_METHODS)},
        )
    reference = (reference_number or "").strip() or None
    if payment_method in REFERENCE_REQUIRED_METHODS and not reference:
        raise InvalidArgumentError(
            f"reference_number is required for {payment_method} payments",
            details={"payment_method": payment_method},
        )
    return reference


def validate_customer_requirement(payment_method: str, customer_id) -> None:
    """Installment orders are charged to a registered customer's balance."""
    if customer_id is not None and (isinstance(customer_id, bool) or not isinstance(customer_id, int)):
        raise InvalidArgumentError("customer_id must be an integer", details={"customer_id": customer_id})
    if payment_method == "installment" and customer_id is None:
        raise InvalidArgumentError("Installment orders require a registered customer")


def validate_discount(discount_kind: str, discount_value) -> int:
    if discount_kind not in DISCOUNT_KINDS:
        raise InvalidArgumentError(
            "Unknown discount kind",
            details={"discount_kind": discount_kind, "allowed": list(DISCOUNT_KINDS)},
        )
    if isinstance(discount_value, bool) or not isinstance(discount_value, int):
        raise InvalidArgumentError("discount_value must be an integer", details={"discount_value": discount_value})

    if discount_kind == "none":
        return 0
    if discount_value < 0:
        raise InvalidArgumentError("discount_value must be >= 0", details={"discount_value": discount_value})
    if discount_kind == "percent" and discount_value > MAX_PERCENT_BASIS_POINTS:
        raise InvalidArgumentError(
            "Percent discount must be between 0 and 10000 basis points",
            details={"discount_value": discount_value},
        )
    return discount_value


def _validate_unit(unit: str) -> str:
    if unit not in ORDER_UNITS:
        raise InvalidArgumentError("unit must be 'case' or 'piece'", details={"unit": unit})
    return unit


def _normalize_line_inputs(lines) -> list[dict]:
    if lines is None:
        return []
    if not isinstance(lines, list):
        raise InvalidArgumentError("lines must be a list")

    normalized = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise InvalidArgumentError("Each line must be an object", details={"index": index})
        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise InvalidArgumentError("product_id must be an integer", details={"index": index})
        quantity = stock_service.require_positive_pieces(raw.get("quantity"), "quantity")
        unit = _validate_unit(raw.get("unit", "case"))
        normalized.append({"product_id": product_id, "quantity": quantity, "unit": unit})
    return normalized


# =============================================================================
# TOTALS
# =============================================================================


def compute_discount_cents(subtotal_cents: int, discount_kind: str, discount_value: int) -> int:
    """Discount in cents, rounded half-up and never more than the subtotal."""
    if discount_kind == "percent":
        amount = (subtotal_cents * discount_value + MAX_PERCENT_BASIS_POINTS // 2) // MAX_PERCENT_BASIS_POINTS
    elif discount_kind == "fixed":
        amount = discount_value
    else:
        amount = 0
    return max(0, min(amount, subtotal_cents))


def compute_totals(order: Order) -> dict:
    subtotal = sum(line.line_total_cents for line in order.lines)
    discount = compute_discount_cents(subtotal, order.discount_kind, order.discount_value)
    return {
        "subtotal_cents": subtotal,
        "discount_amount_cents": discount,
        "total_amount_cents": subtotal - discount,
    }


def _apply_totals(order: Order) -> None:
    totals = compute_totals(order)
    order.subtotal_cents = totals["subtotal_cents"]
    order.discount_amount_cents = totals["discount_amount_cents"]
    order.total_amount_cents = totals["total_amount_cents"]


# =============================================================================
# HELPERS
# =============================================================================


def lock_order(order_id: int) -> Order:
    order = (
        lock_for_update(db.session.query(Order).filter(Order.id == order_id))
        .populate_existing()
        .one_or_none()
    )
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def _require_status(order: Order, *allowed: str, action: str) -> None:
    if order.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} an order with status {order.status}",
            details={"order_id": order.id, "status": order.status, "allowed": list(allowed)},
        )


def _lock_draft_for_edit(order_id: int, actor_user_id: int | None) -> Order:
    order = lock_order(order_id)
    _require_status(order, "draft", action="edit")
    permission_service.require_owner_or_admin(actor_user_id, order.created_by_user_id)
    return order


def _build_line(product_id: int, quantity: int, unit: str) -> OrderLine:
    """Freeze price and packaging from the live product onto a new line."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if not product.is_active:
        raise InvalidArgumentError("Product is not active", details={"product_id": product_id})

    return OrderLine(
        product_id=product.id,
        order_unit=unit,
        cases_ordered=quantity,
        pieces_per_case_snapshot=product.pieces_per_case if unit == "case" else 1,
        unit_price_snapshot_cents=product.price_per_piece_cents,
        unit_cost_snapshot_cents=product.wholesale_cost_per_piece_cents,
    )


def _find_line(order: Order, line_id: int) -> OrderLine:
    for line in order.lines:
        if line.id == line_id:
            return line
    raise NotFoundError("Order line not found", details={"order_id": order.id, "line_id": line_id})


def _resolve_customer(customer_id: int | None) -> Customer | None:
    """Active customer for a draft, or None for a walk-in sale."""
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    if not customer.is_active:
        raise InvalidArgumentError("Customer is not active", details={"customer_id": customer_id})
    return customer


def _pieces_by_product(lines) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.computed_pieces
    return totals


# =============================================================================
# DRAFTS
# =============================================================================


def create_draft(
    user_id: int,
    lines=None,
    *,
    payment_method: str = "cash",
    reference_number: str | None = None,
    discount_kind: str = "none",
    discount_value: int = 0,
    customer_name: str | None = None,
    customer_id: int | None = None,
) -> Order:
    """
    Create a draft order. `lines` items: {"product_id", "quantity", "unit"}.

    Installment orders need `customer_id`; the customer's name is used when
    no customer_name is given.
    """
    line_inputs = _normalize_line_inputs(lines)
    reference = validate_payment(payment_method, reference_number)
    validate_customer_requirement(payment_method, customer_id)
    discount_value = validate_discount(discount_kind, discount_value)

    def _op():
        permission_service.get_actor(user_id)
        customer = _resolve_customer(customer_id)
        name = (customer_name or "").strip() or (customer.name if customer else None)
        order = Order(
            order_number=next_document_number("order", ORDER_PREFIX),
            created_by_user_id=user_id,
            status="draft",
            customer_id=customer.id if customer else None,
            customer_name=name,
            payment_method=payment_method,
            reference_number=reference,
            discount_kind=discount_kind,
            discount_value=discount_value,
        )
        for item in line_inputs:
            order.lines.append(_build_line(item["product_id"], item["quantity"], item["unit"]))
        _apply_totals(order)
        db.session.add(order)
        return order

    return run_in_transaction(_op, actor_user_id=user_id)


def add_line(order_id: int, actor_user_id: int | None, product_id: int, quantity: int, unit: str = "case") -> OrderLine:
    item = _normalize_line_inputs([{"product_id": product_id, "quantity": quantity, "unit": unit}])[0]

    def _op():
        order = _lock_draft_for_edit(order_id, actor_user_id)
        line = _build_line(item["product_id"], item["quantity"], item["unit"])
        order.lines.append(line)
        _apply_totals(order)
        return line

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def update_line(order_id: int, line_id: int, actor_user_id: int | None, quantity: int) -> OrderLine:
    """Change the quantity of a draft line; snapshots stay as first taken."""
    stock_service.require_positive_pieces(quantity, "quantity")

    def _op():
        order = _lock_draft_for_edit(order_id, actor_user_id)
        line = _find_line(order, line_id)
        line.cases_ordered = quantity
        _apply_totals(order)
        return line

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def remove_line(order_id: int, line_id: int, actor_user_id: int | None) -> Order:
    def _op():
        order = _lock_draft_for_edit(order_id, actor_user_id)
        line = _find_line(order, line_id)
        order.lines.remove(line)
        _apply_totals(order)
        return order

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def update_draft(
    order_id: int,
    actor_user_id: int | None,
    *,
    payment_method=_UNSET,
    reference_number=_UNSET,
    discount_kind=_UNSET,
    discount_value=_UNSET,
    customer_name=_UNSET,
    customer_id=_UNSET,
) -> Order:
    """Edit header fields of a draft. Arguments left out keep their value."""
    def _op():
        order = _lock_draft_for_edit(order_id, actor_user_id)

        method = order.payment_method if payment_method is _UNSET else payment_method
        reference = order.reference_number if reference_number is _UNSET else reference_number
        kind = order.discount_kind if discount_kind is _UNSET else discount_kind
        value = order.discount_value if discount_value is _UNSET else discount_value
        cust_id = order.customer_id if customer_id is _UNSET else customer_id

        order.reference_number = validate_payment(method, reference)
        order.payment_method = method
        validate_customer_requirement(method, cust_id)
        if customer_id is not _UNSET:
            customer = _resolve_customer(cust_id)
            order.customer_id = customer.id if customer else None
            if customer is not None and customer_name is _UNSET:
                order.customer_name = customer.name
        order.discount_value = validate_discount(kind, value)
        order.discount_kind = kind
        if customer_name is not _UNSET:
            order.customer_name = (customer_name or "").strip() or None

        _apply_totals(order)
        return order

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def delete_draft(order_id: int, actor_user_id: int | None) -> None:
    def _op():
        order = _lock_draft_for_edit(order_id, actor_user_id)
        db.session.delete(order)

    run_in_transaction(_op, actor_user_id=actor_user_id)


# =============================================================================
# TRANSITIONS
# =============================================================================


def confirm_order(order_id: int, actor_user_id: int | None) -> Order:
    """
    draft -> confirmed, deducting every line's pieces from stock.

    All-or-nothing: the first product (in line order) whose on-hand stock
    cannot cover the order's total demand for it aborts the transaction
    with InsufficientStockError, and no product is touched.

    An installment order also adds its total to the customer's balance in
    the same transaction.
    """
    def _op():
        order = lock_order(order_id)
        _require_status(order, "draft", action="confirm")
        permission_service.require_owner_or_admin(actor_user_id, order.created_by_user_id)

        lines = list(order.lines)
        if not lines:
            raise InvalidArgumentError("Cannot confirm an order with no lines", details={"order_id": order.id})
        validate_payment(order.payment_method, order.reference_number)
        validate_customer_requirement(order.payment_method, order.customer_id)

        customer = None
        if order.payment_method == "installment":
            customer = customer_service.lock_customer(order.customer_id)

        required = _pieces_by_product(lines)
        products = stock_service.lock_products(required.keys())

        checked = set()
        for line in lines:
            if line.product_id in checked:
                continue
            checked.add(line.product_id)
            product = products[line.product_id]
            if product.on_hand_pieces < required[line.product_id]:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.sku}",
                    details={
                        "order_id": order.id,
                        "order_line_id": line.id,
                        "product_id": product.id,
                        "sku": product.sku,
                        "requested_pieces": required[line.product_id],
                        "on_hand_pieces": product.on_hand_pieces,
                    },
                )

        for product_id in sorted(required):
            stock_service.apply_stock_change(
                products[product_id],
                -required[product_id],
                adjustment_type="sale",
                actor_user_id=actor_user_id,
                reason=f"Order {order.order_number} confirmed",
                order_id=order.id,
            )

        _apply_totals(order)
        if customer is not None:
            customer_service.charge_installment(customer, order.total_amount_cents)

        order.status = "confirmed"
        order.confirmed_at = utcnow()
        order.confirmed_by_user_id = actor_user_id
        return order

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


def deliver_order(order_id: int, actor_user_id: int | None) -> Order:
    """confirmed -> delivered. No stock effect."""
    def _op():
        order = lock_order(order_id)
        _require_status(order, "confirmed", action="deliver")
        permission_service.get_actor(actor_user_id)

        order.status = "delivered"
        order.delivered_at = utcnow()
        order.delivered_by_user_id = actor_user_id
        return order

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


def cancel_order(order_id: int, actor_user_id: int | None, reason: str | None = None) -> Order:
    """
    draft|confirmed -> cancelled.

    A confirmed order gives back exactly what confirmation took. Orders
    with a pending or approved return are refused, since those pieces are
    already on their way back through the returns flow. A confirmed
    installment order takes its total back off the customer's balance.
    """
    def _op():
        order = lock_order(order_id)
        _require_status(order, "draft", "confirmed", action="cancel")
        permission_service.require_owner_or_admin(actor_user_id, order.created_by_user_id)

        if order.status == "confirmed":
            open_return = (
                db.session.query(ReturnRequest.id)
                .filter(
                    ReturnRequest.order_id == order.id,
                    ReturnRequest.status.in_(("pending", "approved")),
                )
                .first()
            )
            if open_return is not None:
                raise InvalidStateError(
                    "Cannot cancel an order with pending or approved returns",
                    details={"order_id": order.id, "return_id": open_return.id},
                )

            if order.payment_method == "installment" and order.customer_id is not None:
                customer = customer_service.lock_customer(order.customer_id)
                customer_service.reverse_installment(customer, order.total_amount_cents)

            restored = _pieces_by_product(order.lines)
            products = stock_service.lock_products(restored.keys())
            for product_id in sorted(restored):
                stock_service.apply_stock_change(
                    products[product_id],
                    restored[product_id],
                    adjustment_type="cancellation",
                    actor_user_id=actor_user_id,
                    reason=f"Order {order.order_number} cancelled",
                    order_id=order.id,
                )

        order.status = "cancelled"
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = actor_user_id
        order.cancel_reason = (reason or "").strip() or None
        return order

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


# =============================================================================
# READS
# =============================================================================


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(
    *,
    status: str | None = None,
    created_by_user_id: int | None = None,
    limit: int = 200,
) -> list[Order]:
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if created_by_user_id is not None:
        q = q.filter(Order.created_by_user_id == created_by_user_id)
    limit = max(1, min(int(limit), 1000))
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
