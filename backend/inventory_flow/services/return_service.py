# Overview: Service-layer operations for returns; submission against order lines and administrator resolution.

"""
Returns Processor

LIFECYCLE:
1. pending: submitted by the order's creator (or an administrator)
2. approved: administrator approved; resellable lines go back into stock
3. rejected: administrator rejected; no stock effect

RETURNABLE PIECES:
For every order line, pieces on pending and approved returns are already
spoken for. A new request may only claim what is left, so the same piece
can never be restored twice. Damaged and expired lines are recorded on
approval but never restored.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLine, ReturnLine, ReturnRequest, RETURN_CONDITIONS
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .document_service import RETURN_PREFIX, next_document_number
from .errors import InvalidArgumentError, InvalidStateError, NotFoundError
from .order_service import lock_order
from . import permission_service, stock_service


RETURN_DECISIONS = ("approve", "reject")


def _claimed_pieces(order_line_ids) -> dict[int, int]:
    """Pieces already on pending or approved returns, per order line."""
    ids = list(order_line_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(ReturnLine.order_line_id, func.coalesce(func.sum(ReturnLine.pieces_returned), 0))
        .join(ReturnRequest, ReturnRequest.id == ReturnLine.return_id)
        .filter(
            ReturnLine.order_line_id.in_(ids),
            ReturnRequest.status.in_(("pending", "approved")),
        )
        .group_by(ReturnLine.order_line_id)
        .all()
    )
    return {order_line_id: int(total) for order_line_id, total in rows}


def returnable_pieces(order_line_id: int, *, order_id: int | None = None) -> int:
    """Pieces of the line not yet claimed by a pending or approved return."""
    line = db.session.get(OrderLine, order_line_id)
    if line is None or (order_id is not None and line.order_id != order_id):
        raise NotFoundError("Order line not found", details={"order_line_id": order_line_id})
    claimed = _claimed_pieces([order_line_id]).get(order_line_id, 0)
    return max(0, line.computed_pieces - claimed)


def _normalize_return_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise InvalidArgumentError("A return needs at least one line")

    normalized = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise InvalidArgumentError("Each line must be an object", details={"index": index})
        order_line_id = raw.get("order_line_id")
        if isinstance(order_line_id, bool) or not isinstance(order_line_id, int):
            raise InvalidArgumentError("order_line_id must be an integer", details={"index": index})
        pieces = stock_service.require_positive_pieces(raw.get("pieces_returned"), "pieces_returned")
        condition = raw.get("condition", "resellable")
        if condition not in RETURN_CONDITIONS:
            raise InvalidArgumentError(
                "Unknown condition",
                details={"index": index, "condition": condition, "allowed": list(RETURN_CONDITIONS)},
            )
        normalized.append({"order_line_id": order_line_id, "pieces_returned": pieces, "condition": condition})
    return normalized


def submit_return(order_id: int, actor_user_id: int | None, lines, reason: str) -> ReturnRequest:
    """
    Create a pending return for a confirmed or delivered order.

    `lines` items: {"order_line_id", "pieces_returned", "condition"}.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidArgumentError("reason is required")
    items = _normalize_return_lines(lines)

    def _op():
        # The order row lock serializes submissions against the same order
        order = lock_order(order_id)
        if order.status not in ("confirmed", "delivered"):
            raise InvalidStateError(
                f"Cannot return items from an order with status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )
        permission_service.require_owner_or_admin(actor_user_id, order.created_by_user_id)

        order_lines = {line.id: line for line in order.lines}
        claimed = _claimed_pieces(order_lines.keys())
        requested: dict[int, int] = {}

        for item in items:
            line = order_lines.get(item["order_line_id"])
            if line is None:
                raise InvalidArgumentError(
                    "Order line does not belong to this order",
                    details={"order_id": order.id, "order_line_id": item["order_line_id"]},
                )
            requested[line.id] = requested.get(line.id, 0) + item["pieces_returned"]
            remaining = line.computed_pieces - claimed.get(line.id, 0)
            if requested[line.id] > remaining:
                raise InvalidArgumentError(
                    "Return exceeds the pieces still returnable on this line",
                    details={
                        "order_line_id": line.id,
                        "requested_pieces": requested[line.id],
                        "returnable_pieces": max(0, remaining),
                    },
                )

        request = ReturnRequest(
            return_number=next_document_number("return", RETURN_PREFIX),
            order_id=order.id,
            status="pending",
            reason=reason,
            created_by_user_id=actor_user_id,
        )
        for item in items:
            request.lines.append(ReturnLine(
                order_line_id=item["order_line_id"],
                product_id=order_lines[item["order_line_id"]].product_id,
                pieces_returned=item["pieces_returned"],
                condition=item["condition"],
            ))
        db.session.add(request)
        return request

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def _lock_return(return_id: int) -> ReturnRequest:
    request = (
        lock_for_update(db.session.query(ReturnRequest).filter(ReturnRequest.id == return_id))
        .populate_existing()
        .one_or_none()
    )
    if request is None:
        raise NotFoundError("Return not found", details={"return_id": return_id})
    return request


def resolve_return(return_id: int, decision: str, actor_user_id: int | None, note: str | None = None) -> ReturnRequest:
    """
    Approve or reject a pending return. Administrator only.

    Locks follow the shared order: order row, return row, then products in
    ascending id. Approval restores each resellable line through the stock
    ledger.
    """
    if decision not in RETURN_DECISIONS:
        raise InvalidArgumentError("decision must be 'approve' or 'reject'", details={"decision": decision})

    def _op():
        permission_service.require_admin(actor_user_id)
        order_id = db.session.query(ReturnRequest.order_id).filter(ReturnRequest.id == return_id).scalar()
        if order_id is None:
            raise NotFoundError("Return not found", details={"return_id": return_id})
        lock_order(order_id)
        request = _lock_return(return_id)
        if request.status != "pending":
            raise InvalidStateError(
                f"Return is already {request.status}",
                details={"return_id": request.id, "status": request.status},
            )

        restored_total = 0
        if decision == "approve":
            resellable = [line for line in request.lines if line.condition == "resellable"]
            if resellable:
                products = stock_service.lock_products(line.product_id for line in resellable)
                for line in sorted(resellable, key=lambda l: (l.product_id, l.id)):
                    stock_service.apply_stock_change(
                        products[line.product_id],
                        line.pieces_returned,
                        adjustment_type="return",
                        actor_user_id=actor_user_id,
                        reason=f"Return {request.return_number} approved",
                        order_id=request.order_id,
                        return_id=request.id,
                    )
                    line.restored = True
                    restored_total += line.pieces_returned
            request.status = "approved"
        else:
            request.status = "rejected"

        request.pieces_restored = restored_total
        request.resolved_at = utcnow()
        request.resolved_by_user_id = actor_user_id
        request.resolution_note = (note or "").strip() or None
        return request

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


def get_return(return_id: int) -> ReturnRequest:
    request = db.session.get(ReturnRequest, return_id)
    if request is None:
        raise NotFoundError("Return not found", details={"return_id": return_id})
    return request


def list_returns(*, status: str | None = None, order_id: int | None = None, limit: int = 200) -> list[ReturnRequest]:
    q = db.session.query(ReturnRequest)
    if status:
        q = q.filter(ReturnRequest.status == status)
    if order_id is not None:
        if db.session.get(Order, order_id) is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        q = q.filter(ReturnRequest.order_id == order_id)
    limit = max(1, min(int(limit), 1000))
    return q.order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc()).limit(limit).all()
