# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

# backend/inventory_flow/routes/orders.py
"""
Order routes: draft editing, state transitions and invoice issuing.

Ownership (creator or administrator) is enforced in order_service, so the
same rules hold for the CLI and any other caller.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import invoice_service, order_service, return_service
from ..services.errors import DomainError, InvalidArgumentError

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

DRAFT_FIELDS = (
    "payment_method", "reference_number", "discount_kind", "discount_value", "customer_name", "customer_id",
)


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create a draft order.

    Body:
        lines: [{"product_id": int, "quantity": int, "unit": "case"|"piece"}]
        payment_method, reference_number, discount_kind, discount_value, customer_name,
        customer_id (required for installment)
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.create_draft(
            g.current_user.id,
            data.get("lines") or [],
            payment_method=data.get("payment_method", "cash"),
            reference_number=data.get("reference_number"),
            discount_kind=data.get("discount_kind", "none"),
            discount_value=data.get("discount_value", 0),
            customer_name=data.get("customer_name"),
            customer_id=data.get("customer_id"),
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params:
    - status: draft|confirmed|delivered|cancelled
    - mine: "1" to list only orders created by the caller
    - limit: default 200
    """
    mine = request.args.get("mine", "").lower() in ("1", "true", "yes")
    orders = order_service.list_orders(
        status=request.args.get("status"),
        created_by_user_id=g.current_user.id if mine else None,
        limit=request.args.get("limit", 200, type=int),
    )
    return jsonify({"orders": [o.to_dict() for o in orders]})


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"order": order.to_dict(include_lines=True)})


@orders_bp.patch("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    """Edit draft header fields; keys left out of the body are unchanged."""
    data = request.get_json(silent=True) or {}
    unknown = sorted(k for k in data if k not in DRAFT_FIELDS)
    try:
        if unknown:
            raise InvalidArgumentError(f"Field not allowed: {', '.join(unknown)}")
        order = order_service.update_draft(
            order_id,
            g.current_user.id,
            **{k: data[k] for k in DRAFT_FIELDS if k in data},
        )
        return jsonify({"order": order.to_dict(include_lines=True)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
def delete_order_route(order_id: int):
    try:
        order_service.delete_draft(order_id, g.current_user.id)
        return jsonify({"deleted": True, "order_id": order_id})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete draft order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/lines")
@require_auth
def add_line_route(order_id: int):
    """Body: {"product_id": int, "quantity": int, "unit": "case"|"piece"}"""
    data = request.get_json(silent=True) or {}
    try:
        line = order_service.add_line(
            order_id,
            g.current_user.id,
            data.get("product_id"),
            data.get("quantity"),
            data.get("unit", "case"),
        )
        return jsonify({"line": line.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add order line")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/lines/<int:line_id>")
@require_auth
def update_line_route(order_id: int, line_id: int):
    """Body: {"quantity": int}"""
    data = request.get_json(silent=True) or {}
    try:
        line = order_service.update_line(order_id, line_id, g.current_user.id, data.get("quantity"))
        return jsonify({"line": line.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order line")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/lines/<int:line_id>")
@require_auth
def remove_line_route(order_id: int, line_id: int):
    try:
        order = order_service.remove_line(order_id, line_id, g.current_user.id)
        return jsonify({"order": order.to_dict(include_lines=True)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove order line")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================


@orders_bp.post("/<int:order_id>/confirm")
@require_auth
def confirm_order_route(order_id: int):
    """
    Confirm a draft and deduct stock.

    409 insufficient_stock names the offending line in "details" so the
    client can fix that line instead of retrying blindly.
    """
    try:
        order = order_service.confirm_order(order_id, g.current_user.id)
        return jsonify({"order": order.to_dict(include_lines=True)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/deliver")
@require_auth
def deliver_order_route(order_id: int):
    try:
        order = order_service.deliver_order(order_id, g.current_user.id)
        return jsonify({"order": order.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deliver order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Body: {"reason": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.cancel_order(order_id, g.current_user.id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/invoice")
@require_auth
def issue_invoice_route(order_id: int):
    """Idempotent: repeated calls return the same invoice."""
    try:
        invoice = invoice_service.issue_invoice(order_id, g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to issue invoice")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/lines/<int:line_id>/returnable")
@require_auth
def returnable_pieces_route(order_id: int, line_id: int):
    """Pieces of this line a new return may still claim."""
    try:
        pieces = return_service.returnable_pieces(line_id, order_id=order_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"order_id": order_id, "order_line_id": line_id, "returnable_pieces": pieces})
