# Overview: Flask API routes for the audit ledger; read-only, administrators only.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_admin
from ..services import audit_service
from ..services.errors import DomainError

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_admin
def list_audit_route():
    """
    Query params: entity_type, entity_id, action (INSERT|UPDATE|DELETE),
    actor_user_id, limit.

    Read-only: audit entries have no write endpoint.
    """
    try:
        entries = audit_service.list_audit_entries(
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id"),
            action=request.args.get("action"),
            actor_user_id=request.args.get("actor_user_id", type=int),
            limit=request.args.get("limit", 200, type=int),
        )
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"entries": [entry.to_dict() for entry in entries]})
