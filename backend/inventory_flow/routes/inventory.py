# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/inventory_flow/routes/inventory.py
"""
Stock ledger routes.

Restock and manual adjustment are administrator operations; stock levels,
adjustment history and the low-stock list are readable by any approved user.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_admin
from ..services import stock_service
from ..services.errors import DomainError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>")
@require_auth
def stock_level_route(product_id: int):
    try:
        return jsonify({"stock": stock_service.get_stock_level(product_id)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/<int:product_id>/restock")
@require_auth
@require_admin
def restock_route(product_id: int):
    """Body: {"added_pieces": int, "note": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        adjustment = stock_service.restock(
            product_id,
            data.get("added_pieces"),
            g.current_user.id,
            note=data.get("note"),
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/adjust")
@require_auth
@require_admin
def adjust_route(product_id: int):
    """Body: {"delta": int, "reason_code": str, "note": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        adjustment = stock_service.manual_adjust(
            product_id,
            data.get("delta"),
            data.get("reason_code"),
            g.current_user.id,
            note=data.get("note"),
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/adjustments")
@require_auth
def list_adjustments_route():
    adjustments = stock_service.list_adjustments(
        product_id=request.args.get("product_id", type=int),
        adjustment_type=request.args.get("adjustment_type"),
        order_id=request.args.get("order_id", type=int),
        limit=request.args.get("limit", 200, type=int),
    )
    return jsonify({"adjustments": [a.to_dict() for a in adjustments]})


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    products = stock_service.list_low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products]})
