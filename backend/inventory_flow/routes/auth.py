# Overview: Flask API routes for bearer-token sessions; identity lookup and logout.

# backend/inventory_flow/routes/auth.py
"""
Session routes.

Tokens are issued from the CLI (`flask users issue-token`); callers can see
who a token belongs to and revoke it.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import session_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "session": g.session_context.session.to_dict(),
    })


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the presented token.

    Expects Authorization header: Bearer <token>
    """
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not session_service.revoke_session(token):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500
