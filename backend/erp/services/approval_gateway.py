# Overview: Decides whether a screen mutation is applied directly, queued for approval, or denied.

"""
Approval Gateway

DECISION TABLE (admin / direct permission / policy requires approval):
- admin                      -> apply
- allowed, no policy         -> apply
- allowed, policy            -> enqueue
- not allowed, policy        -> enqueue
- not allowed, no policy     -> deny (PermissionDeniedError)

DESIGN:
- Policy lookup failures propagate; a broken policy table never turns into
  a direct apply
- Enqueue writes the request and its SUBMIT activity row in the caller's
  transaction; mail goes out only after the caller commits
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import ApprovalRequest
from ..models.approvals import PAYLOAD_SCHEMA_VERSION
from . import activity_log_service, approval_request_service, policy_service
from .permission_service import PermissionDeniedError, UserAccess, has_permission


logger = logging.getLogger(__name__)

APPROVAL_SENT_MESSAGE = "Change request sent for approval. It will be applied once reviewed."

# Screen verb -> policy action column
POLICY_ACTION_FOR = {
    "create": "create",
    "update": "edit",
    "edit": "edit",
    "toggle": "delete",
    "delete": "delete",
    "hard_delete": "hard_delete",
}

# Screen verb -> permission action
PERMISSION_ACTION_FOR = {
    "create": "create",
    "update": "edit",
    "edit": "edit",
    "toggle": "delete",
    "delete": "delete",
    "hard_delete": "hard_delete",
    "approve": "approve",
}


@dataclass
class GatewayDecision:
    queued: bool
    request: ApprovalRequest | None = None
    notice: dict | None = None
    reason: str | None = None

    @property
    def request_id(self) -> int | None:
        return self.request.id if self.request is not None else None

    def to_dict(self) -> dict:
        return {"queued": self.queued, "request_id": self.request_id, "notice": self.notice}


def approval_notice(message: str = APPROVAL_SENT_MESSAGE) -> dict:
    return {"message": message, "auto_close": False, "sticky": True}


def handle_screen_approval(
    *,
    access: UserAccess,
    scope_key: str,
    action: str,
    entity_type: str,
    entity_id,
    summary: str | None,
    old_value: dict | None,
    new_value: dict | None,
    branch_id: int | None = None,
) -> GatewayDecision:
    """
    Route one mutation. Raises PermissionDeniedError on deny.

    On enqueue the caller must commit, then call
    notification_service.notify_pending_approval(decision.request).
    """
    if access is None:
        raise PermissionDeniedError("permission_denied", scope_key=scope_key, action=action)
    if access.is_admin:
        return GatewayDecision(queued=False, reason="admin")

    permission_action = PERMISSION_ACTION_FOR.get(action, action)
    allowed = has_permission(access, scope_key, permission_action)
    policy_action = POLICY_ACTION_FOR.get(action, action)
    required = policy_service.requires_approval(policy_service.POLICY_ENTITY_SCREEN, scope_key, policy_action)

    if allowed and not required:
        return GatewayDecision(queued=False, reason="permitted")
    if not allowed and not required:
        logger.warning(
            "Screen change denied user_id=%s scope=%s action=%s", access.user_id, scope_key, action,
        )
        raise PermissionDeniedError("permission_denied", scope_key=scope_key, action=permission_action)

    reason = "policy_requires_approval" if allowed else "permission_reroute"
    return enqueue_change(
        access=access,
        scope_key=scope_key,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        old_value=old_value,
        new_value=new_value,
        branch_id=branch_id,
        reason=reason,
    )


def enqueue_change(
    *,
    access: UserAccess,
    scope_key: str,
    action: str,
    entity_type: str,
    entity_id,
    summary: str | None,
    old_value: dict | None,
    new_value: dict | None,
    branch_id: int | None = None,
    reason: str,
) -> GatewayDecision:
    """Persist a PENDING request plus its SUBMIT activity row. Caller commits."""
    if new_value is not None:
        new_value = {"schema_version": PAYLOAD_SCHEMA_VERSION, **new_value}
    request = approval_request_service.create_request(
        entity_type=entity_type,
        entity_id=entity_id,
        entity_key=scope_key,
        requested_by=access.user_id,
        branch_id=branch_id,
        summary=summary,
        old_value=old_value,
        new_value=new_value,
    )
    activity_log_service.record_activity(
        entity_type=entity_type,
        entity_id=request.entity_id,
        action="SUBMIT",
        user_id=access.user_id,
        branch_id=branch_id,
        context={
            "approval_request_id": request.id,
            "summary": summary,
            "old_value": old_value,
            "new_value": new_value,
            "source": "screen-approval",
            "reason": reason,
        },
    )
    logger.info(
        "Queued approval request %s user_id=%s scope=%s action=%s reason=%s",
        request.id, access.user_id, scope_key, action, reason,
    )
    return GatewayDecision(queued=True, request=request, notice=approval_notice(), reason=reason)
