# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

# backend/inventory_flow/routes/customers.py
"""
Customer registry and installment payments.

SECURITY: All routes require authentication.
- Reads and payments: any approved user
- Registry writes: administrators
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_admin
from ..services import customer_service
from ..services.errors import DomainError

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """
    Query params:
    - active_only: "1"/"true" to hide inactive customers
    - q: substring match on name or phone
    """
    active_only = request.args.get("active_only", "").lower() in ("1", "true", "yes")
    customers = customer_service.list_customers(active_only=active_only, search=request.args.get("q"))
    return jsonify({"customers": [c.to_dict() for c in customers]})


@customers_bp.post("")
@require_auth
@require_admin
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        customer = customer_service.create_customer(payload=payload, actor_user_id=g.current_user.id)
        return jsonify({"customer": customer.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"customer": customer.to_dict()})


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_admin
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        customer = customer_service.update_customer(
            customer_id=customer_id,
            payload=payload,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"customer": customer.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_admin
def delete_customer_route(customer_id: int):
    try:
        customer_service.delete_customer(customer_id=customer_id, actor_user_id=g.current_user.id)
        return jsonify({"deleted": True, "customer_id": customer_id})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/payments")
@require_auth
def list_payments_route(customer_id: int):
    try:
        payments = customer_service.list_payments(customer_id, limit=request.args.get("limit", 200, type=int))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"payments": [p.to_dict() for p in payments]})


@customers_bp.post("/<int:customer_id>/payments")
@require_auth
def record_payment_route(customer_id: int):
    """Body: {"amount_cents": int, "payment_method": str, "reference_number": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        payment = customer_service.record_payment(
            customer_id,
            data.get("amount_cents"),
            g.current_user.id,
            payment_method=data.get("payment_method", "cash"),
            reference_number=data.get("reference_number"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record customer payment")
        return jsonify({"error": "Internal server error"}), 500
