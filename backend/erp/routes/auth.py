# Overview: Flask API routes for login, logout and the current session.

"""
Authentication API routes

SECURITY FEATURES:
- Opaque bearer tokens, stored only as SHA-256 hashes
- Sessions bound to one branch the user belongs to
- Inactive users cannot log in and lose existing sessions on next request
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..services import auth_service, permission_service, session_service
from ..time_utils import to_utc_z
from ..validation import ValidationError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Body: {username, password, branch_id?}
    Token must be included in the Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = (data.get("username") or "").strip()
        password = data.get("password")

        if not username or not password:
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s", username)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user, data.get("branch_id"))
        access = permission_service.load_user_access(user)

        return jsonify({
            "user": user.to_dict(),
            "branch_id": session.branch_id,
            "is_admin": access.is_admin,
            "permissions": permission_service.flatten_permissions(access),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful",
        }), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(bearer_token())
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "branch_id": g.branch_id,
        "is_admin": g.access.is_admin,
        "permissions": permission_service.flatten_permissions(g.access),
    }), 200
