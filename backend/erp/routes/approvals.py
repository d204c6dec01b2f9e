# Overview: Flask API routes for approval moderation, policy settings and the decision stream.

"""
Approval moderation routes

- list / preview / edit / approve / reject require can_approve on
  administration.approvals
- settings require can_view (read) and can_edit (write) on
  administration.approval_settings
- events stream approval_decision events to the caller (any signed-in user)

Approve and reject commit the decision and the applied write together,
then notify the requester.
"""

import json
import queue

from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context

from ..decorators import require_auth, require_scope
from ..extensions import db
from ..services import approval_decision_service, approval_request_service, notification_service, policy_service
from ..services.concurrency import run_with_retry
from ..services.notification_bus import approval_events
from .screen_adapter import error_response, request_payload


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/administration/approvals")

APPROVALS_SCOPE = "administration.approvals"
SETTINGS_SCOPE = "administration.approval_settings"


@approvals_bp.get("")
@require_auth
@require_scope(APPROVALS_SCOPE, "approve")
def list_requests_route():
    """
    Query params:
    - status: PENDING (default) | APPROVED | REJECTED | ALL
    - entity_type, requested_by, limit
    """
    try:
        rows = approval_request_service.list_requests(
            status=request.args.get("status", "PENDING"),
            entity_type=request.args.get("entity_type") or None,
            requested_by=request.args.get("requested_by", type=int),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"requests": [r.to_dict() for r in rows]}), 200
    except Exception as e:
        return error_response(e, "Failed to list approval requests")


@approvals_bp.get("/<int:request_id>/preview")
@require_auth
@require_scope(APPROVALS_SCOPE, "approve")
def preview_route(request_id: int):
    try:
        return jsonify({"request": approval_decision_service.preview_request(request_id)}), 200
    except Exception as e:
        return error_response(e, "Failed to preview approval request")


@approvals_bp.post("/<int:request_id>/edit")
@require_auth
@require_scope(APPROVALS_SCOPE, "approve")
def edit_route(request_id: int):
    """Body: {new_value: {...}} with the moderator's edited fields."""
    try:
        data = request_payload()
        submitted = data.get("new_value", data)
        result = approval_decision_service.edit_request(
            request_id, access=g.access, submitted=submitted, branch_id=g.branch_id,
        )
        db.session.commit()
        return jsonify(result), 200
    except Exception as e:
        return error_response(e, "Failed to edit approval request")


@approvals_bp.post("/<int:request_id>/approve")
@require_auth
@require_scope(APPROVALS_SCOPE, "approve")
def approve_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}

        def decide():
            decided = approval_decision_service.approve_request(
                request_id, access=g.access, notes=data.get("notes"), branch_id=g.branch_id,
            )
            db.session.commit()
            return decided

        approval, result = run_with_retry(decide)
    except Exception as e:
        return error_response(e, "Failed to approve request")

    notification_service.notify_decision(approval, applied=result.applied)
    return jsonify({"request": approval.to_dict(), "result": result.to_dict()}), 200


@approvals_bp.post("/<int:request_id>/reject")
@require_auth
@require_scope(APPROVALS_SCOPE, "approve")
def reject_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}

        def decide():
            decided = approval_decision_service.reject_request(
                request_id, access=g.access, notes=data.get("notes"), branch_id=g.branch_id,
            )
            db.session.commit()
            return decided

        approval = run_with_retry(decide)
    except Exception as e:
        return error_response(e, "Failed to reject request")

    notification_service.notify_decision(approval, applied=False)
    return jsonify({"request": approval.to_dict()}), 200


# =============================================================================
# POLICY SETTINGS
# =============================================================================

@approvals_bp.get("/settings")
@require_auth
@require_scope(SETTINGS_SCOPE, "view")
def get_settings_route():
    return jsonify({
        "screens": policy_service.list_policy_screens(),
        "policies": policy_service.list_policies(),
    }), 200


@approvals_bp.post("/settings")
@require_auth
@require_scope(SETTINGS_SCOPE, "edit")
def save_settings_route():
    """Body: {policies: {"SCREEN:<scope_key>:<action>": true, ...}} replaces every SCREEN row."""
    try:
        data = request_payload()
        stored = policy_service.replace_policies(data.get("policies") or {}, actor_user_id=g.access.user_id)
        db.session.commit()
        current_app.logger.info("Approval policies replaced by user %s (%d rows)", g.access.user_id, stored)
        return jsonify({"stored": stored, "policies": policy_service.list_policies()}), 200
    except Exception as e:
        return error_response(e, "Failed to save approval settings")


# =============================================================================
# DECISION STREAM
# =============================================================================

def format_sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"


@approvals_bp.get("/events")
@require_auth
def events_route():
    user_id = g.access.user_id
    keepalive = current_app.config.get("APPROVAL_EVENTS_KEEPALIVE", 25)
    sink = approval_events.register(user_id)

    def generate():
        try:
            while True:
                try:
                    event, payload = sink.get(timeout=keepalive)
                except queue.Empty:
                    yield ": ping\n\n"
                    continue
                yield format_sse(event, payload)
        finally:
            approval_events.unregister(user_id, sink)

    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    return Response(stream_with_context(generate()), mimetype="text/event-stream", headers=headers)


@approvals_bp.post("/events/ack")
@require_auth
def ack_events_route():
    approval_events.ack(g.access.user_id)
    return jsonify({"ok": True}), 200
