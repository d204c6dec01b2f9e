# Overview: Request and scope-permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'access')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_user: the authenticated User
    - g.branch_id: the branch the session is bound to
    - g.access: pre-joined permission bag (UserAccess)
    - g.session_context: the full SessionContext

    SECURITY: Returns 401 if the header is missing, the token is invalid,
    expired or idle, or the user is no longer Active.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        try:
            access = permission_service.load_user_access(context.user)
        except PermissionDeniedError:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.branch_id = context.branch_id
        g.access = access
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_scope(scope_key: str, action: str = "view"):
    """Require `action` on the SCREEN `scope_key` (admins always pass)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_scope_permission(g.access, scope_key, action)
            except PermissionDeniedError as e:
                current_app.logger.info("Denied %s %s for user %s", request.method, request.path, g.access.user_id)
                return jsonify({
                    "error": "Permission denied",
                    "required_scope": scope_key,
                    "required_action": action,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
