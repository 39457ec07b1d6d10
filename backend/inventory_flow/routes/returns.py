# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/inventory_flow/routes/returns.py
"""
Return routes.

Submitting is open to the order's creator (or an administrator); resolving
(approve or reject) is administrator only.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_admin
from ..services import return_service
from ..services.errors import DomainError

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_auth
def submit_return_route():
    """
    Body:
        order_id: int
        reason: str
        lines: [{"order_line_id": int, "pieces_returned": int, "condition": "resellable"|"damaged"|"expired"}]
    """
    data = request.get_json(silent=True) or {}
    try:
        request_obj = return_service.submit_return(
            data.get("order_id"),
            g.current_user.id,
            data.get("lines"),
            data.get("reason"),
        )
        return jsonify({"return": request_obj.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_auth
def list_returns_route():
    try:
        returns = return_service.list_returns(
            status=request.args.get("status"),
            order_id=request.args.get("order_id", type=int),
            limit=request.args.get("limit", 200, type=int),
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"returns": [r.to_dict(include_lines=False) for r in returns]})


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    try:
        request_obj = return_service.get_return(return_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"return": request_obj.to_dict()})


@returns_bp.post("/<int:return_id>/resolve")
@require_auth
@require_admin
def resolve_return_route(return_id: int):
    """Body: {"decision": "approve"|"reject", "note": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        request_obj = return_service.resolve_return(
            return_id,
            data.get("decision"),
            g.current_user.id,
            note=data.get("note"),
        )
        return jsonify({"return": request_obj.to_dict()})
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve return")
        return jsonify({"error": "Internal server error"}), 500
