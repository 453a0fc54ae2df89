# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/storepos/routes/auth.py
"""
Authentication API routes

Operators log in with username (or email) and password and receive an opaque
bearer token. Users are created by administrators via `flask users create`.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..permissions import get_role_permissions
from ..services import auth_service
from ..services import session_service
from ..time_utils import to_utc_z
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "InvalidInput", "message": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)

        if not user:
            current_app.logger.warning("Failed login for %r from %s", username, request.remote_addr)
            return jsonify({"error": "Unauthenticated", "message": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(get_role_permissions(user.role_enum)),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the caller's bearer token."""
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token, reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user and the capabilities of their role."""
    return jsonify({
        "user": g.current_user.to_dict(),
        "permissions": sorted(get_role_permissions(g.session_context.role)),
    }), 200
