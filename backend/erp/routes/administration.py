# Overview: Flask API routes for the permissions screen and the audit log.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_scope
from ..extensions import db
from ..services import activity_log_service, permission_service, scope_service
from .screen_adapter import error_response, request_payload


administration_bp = Blueprint("administration", __name__, url_prefix="/api/administration")

PERMISSIONS_SCOPE = "administration.permissions"
AUDIT_SCOPE = "administration.audit_logs"


# =============================================================================
# SCOPES / PERMISSIONS
# =============================================================================

@administration_bp.get("/scopes")
@require_auth
@require_scope(PERMISSIONS_SCOPE, "view")
def list_scopes_route():
    scopes = scope_service.list_scopes(request.args.get("scope_type") or None)
    return jsonify({"scopes": [s.to_dict() for s in scopes]}), 200


@administration_bp.get("/permissions/roles/<int:role_id>")
@require_auth
@require_scope(PERMISSIONS_SCOPE, "view")
def get_role_permissions_route(role_id: int):
    try:
        return jsonify(permission_service.get_role_grants(role_id)), 200
    except Exception as e:
        return error_response(e, "Failed to load role permissions")


@administration_bp.put("/permissions/roles/<int:role_id>")
@require_auth
@require_scope(PERMISSIONS_SCOPE, "edit")
def save_role_permissions_route(role_id: int):
    """Body: {grants: [{scope_type?, scope_key, can_view, can_navigate, ...}]}"""
    try:
        data = request_payload()
        grants = data.get("grants") or []
        changed = permission_service.save_role_grants(role_id=role_id, grants=grants)
        activity_log_service.record_activity(
            entity_type="ROLE_PERMISSION",
            entity_id=role_id,
            action="UPDATE",
            user_id=g.access.user_id,
            branch_id=g.branch_id,
            context={"grants": grants},
        )
        db.session.commit()
        return jsonify({"changed": changed, **permission_service.get_role_grants(role_id)}), 200
    except Exception as e:
        return error_response(e, "Failed to save role permissions")


@administration_bp.get("/permissions/users/<int:user_id>")
@require_auth
@require_scope(PERMISSIONS_SCOPE, "view")
def get_user_overrides_route(user_id: int):
    try:
        return jsonify(permission_service.get_user_overrides(user_id)), 200
    except Exception as e:
        return error_response(e, "Failed to load user permissions")


@administration_bp.put("/permissions/users/<int:user_id>")
@require_auth
@require_scope(PERMISSIONS_SCOPE, "edit")
def save_user_overrides_route(user_id: int):
    """Body: {overrides: [{scope_key, can_view: true|false|null, ...}]}; null clears a flag."""
    try:
        data = request_payload()
        overrides = data.get("overrides") or []
        changed = permission_service.save_user_overrides(user_id=user_id, overrides=overrides)
        activity_log_service.record_activity(
            entity_type="USER_PERMISSION",
            entity_id=user_id,
            action="UPDATE",
            user_id=g.access.user_id,
            branch_id=g.branch_id,
            context={"overrides": overrides},
        )
        db.session.commit()
        return jsonify({"changed": changed, **permission_service.get_user_overrides(user_id)}), 200
    except Exception as e:
        return error_response(e, "Failed to save user permissions")


# =============================================================================
# AUDIT LOG
# =============================================================================

@administration_bp.get("/audit-logs")
@require_auth
@require_scope(AUDIT_SCOPE, "view")
def list_audit_logs_route():
    """
    Query params:
    - entity_type, entity_id, action, user_id
    - limit (default 100, max 500)
    """
    rows = activity_log_service.list_activity(
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
        action=request.args.get("action") or None,
        user_id=request.args.get("user_id", type=int),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"entries": [r.to_dict() for r in rows]}), 200
