# Overview: Shared mutation path for entity screens: gateway, direct apply or enqueue, error mapping.

"""
Screen Adapter

Every entity screen funnels its create / update / toggle / delete through
submit_change(). The gateway decides; a direct apply calls the same
approval_applier routine the moderator's approve click calls, so both paths
write identically.

RESPONSES:
- direct create  -> 201 {"queued": false, ...entity}
- direct other   -> 200 {"queued": false, ...entity}
- queued         -> 202 {"queued": true, "request_id", "notice"}
- denied         -> 403
"""

from __future__ import annotations

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..services import activity_log_service, approval_applier, approval_gateway, notification_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, NotFoundError, ValidationError, translate_integrity_error


SAVE_FAILED_MESSAGE = "Unable to save changes."

PAYLOAD_META = frozenset({"_action", "schema_version"})

ACTIVITY_FOR = {
    "create": "CREATE",
    "update": "UPDATE",
    "toggle": "TOGGLE",
    "delete": "DELETE",
    "hard_delete": "DELETE",
}


def include_inactive() -> bool:
    return request.args.get("include_inactive", "").strip().lower() in {"1", "true", "yes"}


def request_payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict(flat=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    return data


def error_response(exc: Exception, failure: str = "Failed to save change"):
    """Translate a typed domain error into a JSON response. Rolls back first."""
    db.session.rollback()
    if isinstance(exc, IntegrityError):
        translated = translate_integrity_error(exc)
        if translated is exc:
            current_app.logger.exception(failure)
            return jsonify({"error": SAVE_FAILED_MESSAGE}), 500
        exc = translated

    if isinstance(exc, PermissionDeniedError):
        return jsonify({
            "error": "Permission denied",
            "message": str(exc),
            "required_scope": exc.scope_key,
            "required_action": exc.action,
        }), 403
    if isinstance(exc, ValidationError):
        return jsonify(exc.to_dict()), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        payload = {"error": str(exc)}
        if getattr(exc, "code", None):
            payload["code"] = exc.code
        return jsonify(payload), 409

    current_app.logger.exception(failure)
    return jsonify({"error": SAVE_FAILED_MESSAGE}), 500


def declared_keys(new_value: dict | None, change_keys=None) -> list[str] | None:
    """Fields an activity row compares: the caller's list, else the submitted keys."""
    if change_keys is not None:
        return list(change_keys)
    if new_value is None:
        return None
    return [k for k in new_value if k not in PAYLOAD_META and not str(k).startswith("_")]


def toggle_payload(current_active: bool) -> dict:
    return {"_action": "toggle", "is_active": not bool(current_active)}


def queued_response(decision):
    """Commit the enqueue, then mail the admins."""
    db.session.commit()
    notification_service.notify_pending_approval(decision.request)
    return jsonify(decision.to_dict()), 202


def submit_change(
    *,
    scope_key: str,
    action: str,
    entity_type: str,
    entity_id,
    summary: str,
    old_value: dict | None,
    new_value: dict | None,
    render=None,
    snapshot=None,
    change_keys=None,
):
    """
    Route one mutation through the approval gateway and build the response.

    `render(entity_id)` returns the JSON body for a direct apply. `snapshot(entity_id)`
    returns the after-image compared with old_value for the activity row; without
    one the submitted payload stands in. The comparison covers `change_keys`, or
    the submitted fields when none are given. Exceptions propagate; callers pass
    them to error_response().
    """
    decision = approval_gateway.handle_screen_approval(
        access=g.access,
        scope_key=scope_key,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        old_value=old_value,
        new_value=new_value,
        branch_id=getattr(g, "branch_id", None),
    )
    if decision.queued:
        return queued_response(decision)

    result = approval_applier.apply_change(
        entity_type, entity_id, new_value, actor_user_id=g.access.user_id,
    )
    written_id = result.entity_id if result.entity_id is not None else entity_id
    after = new_value
    if snapshot is not None and result.entity_id is not None:
        after = snapshot(result.entity_id)
    activity_log_service.record_activity(
        entity_type=entity_type,
        entity_id=written_id,
        action=ACTIVITY_FOR.get(action, action.upper()),
        user_id=g.access.user_id,
        branch_id=getattr(g, "branch_id", None),
        context={
            "summary": summary,
            **activity_log_service.build_change_set(
                old_value, after, include_keys=declared_keys(new_value, change_keys), exclude_keys=PAYLOAD_META,
            ),
        },
    )
    db.session.commit()

    body = {"queued": False, "entity_id": result.entity_id}
    if render is not None and result.entity_id is not None:
        body.update(render(result.entity_id))
    return jsonify(body), 201 if action == "create" else 200
