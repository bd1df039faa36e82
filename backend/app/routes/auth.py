# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

SECURITY FEATURES:
- bcrypt password verification
- Opaque bearer tokens (SHA-256 hashed at rest, 24h absolute / 2h idle)
- Deactivated users cannot log in and lose their open sessions
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..services.entity_service import accessible_entity_ids
from ..models.entities import ENTITY_TYPES
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        errors = {}
        if not email:
            errors["email"] = ["The email field is required."]
        if not password:
            errors["password"] = ["The password field is required."]
        if errors:
            return jsonify({"message": "The given data was invalid.", "errors": errors}), 422

        user = auth_service.authenticate(email, password)
        if not user:
            current_app.logger.info("Failed login for %s", email)
            return jsonify({
                "message": "Invalid credentials",
                "errors": {"email": ["These credentials do not match our records."]},
            }), 422

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(permission_service.get_user_permissions(user.id)),
            "roles": permission_service.get_user_role_names(user.id),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
        "roles": permission_service.get_user_role_names(user.id),
        "entities": {entity_type: accessible_entity_ids(user, entity_type) for entity_type in ENTITY_TYPES},
        "active_sessions": session_service.active_session_count(user.id),
    }), 200
