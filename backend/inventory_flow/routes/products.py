# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/inventory_flow/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require authentication.
- Reads: any approved user (wholesale cost only shown to administrators)
- Writes: administrators
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_admin
from ..services import products_service
from ..services.errors import DomainError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - active_only: "1"/"true" to hide inactive products
    - q: substring match on sku or name
    """
    active_only = request.args.get("active_only", "").lower() in ("1", "true", "yes")
    search = request.args.get("q")
    products = products_service.list_products(active_only=active_only, search=search)
    include_cost = g.current_user.is_admin
    return jsonify({"products": [p.to_dict(include_cost=include_cost) for p in products]})


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    """
    Create a product. Optional "initial_pieces" is booked as a restock so the
    adjustment history starts at zero.
    """
    payload = dict(request.get_json(silent=True) or {})
    initial_pieces = payload.pop("initial_pieces", 0)

    try:
        product = products_service.create_product(
            payload=payload,
            actor_user_id=g.current_user.id,
            initial_pieces=initial_pieces,
        )
        return jsonify({"product": product.to_dict(include_cost=True)}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"product": product.to_dict(include_cost=g.current_user.is_admin)})


@products_bp.patch("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.update_product(
            product_id=product_id,
            payload=payload,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"product": product.to_dict(include_cost=True)})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id=product_id, actor_user_id=g.current_user.id)
        return jsonify({"deleted": True, "product_id": product_id})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
