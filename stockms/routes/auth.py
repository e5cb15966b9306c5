# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Token-based sessions (Authorization: Bearer <token>)
- No self-registration: users are created through the CLI
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..services import access_service, auth_service, session_service
from ..decorators import require_auth
from .helpers import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info, permissions, accessible locations and the token.
    """
    try:
        data = json_body()
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", username, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "permissions": sorted(access_service.get_user_permissions(user)),
            "locations": [loc.to_summary() for loc in access_service.list_accessible_locations(user)],
        }), 200

    except Exception:
        current_app.logger.exception("Login failed unexpectedly")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.token, reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/session")
@require_auth
def session_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "session": g.session_context.session.to_dict(),
        "permissions": sorted(access_service.get_user_permissions(user)),
        "locations": [loc.to_summary() for loc in access_service.list_accessible_locations(user)],
    }), 200
