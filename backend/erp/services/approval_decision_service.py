# Overview: Moderator operations on approval requests: preview, edit, approve, reject.

"""
Approval Decision Service

WHY: A decision and the write it causes must land together. Approve locks
the request row, flips it to APPROVED, replays the payload through the
applier and records the activity row, all in the caller's transaction.

INVARIANTS:
- Only PENDING requests are edited or decided (terminal states -> ConflictError)
- A moderator never decides a request they submitted
- Notifications are sent by the caller after commit
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import (
    AccountGroup, ApprovalRequest, BomHeader, Branch, City, Color, Department, Grade, Item, Labour,
    PackingType, PartyGroup, ProductGroup, ProductSubgroup, ProductType, Size, Sku, Uom,
)
from ..models.approvals import STATUS_APPROVED, STATUS_REJECTED
from . import activity_log_service, approval_applier, approval_request_service, bom_service
from .approval_applier import ApplyResult
from .approval_edit import infer_action, sanitize_edited_values
from .master_data_service import META_KEYS
from .permission_service import PermissionDeniedError, UserAccess


logger = logging.getLogger(__name__)


# Referenced-id field -> (model, label column)
LOOKUP_FIELDS = {
    "branch_id": (Branch, "name"),
    "branch_ids": (Branch, "name"),
    "group_id": (ProductGroup, "name"),
    "subgroup_id": (ProductSubgroup, "name"),
    "product_type_id": (ProductType, "name"),
    "base_uom_id": (Uom, "name"),
    "uom_id": (Uom, "name"),
    "output_uom_id": (Uom, "name"),
    "from_uom_id": (Uom, "name"),
    "to_uom_id": (Uom, "name"),
    "city_id": (City, "name"),
    "party_group_id": (PartyGroup, "name"),
    "account_group_id": (AccountGroup, "name"),
    "dept_id": (Department, "name"),
    "size_id": (Size, "name"),
    "fg_size_id": (Size, "name"),
    "color_id": (Color, "name"),
    "grade_id": (Grade, "name"),
    "packing_type_id": (PackingType, "name"),
    "item_id": (Item, "name"),
    "rm_item_id": (Item, "name"),
    "target_rm_item_id": (Item, "name"),
    "usage_ids": (Item, "name"),
    "labour_id": (Labour, "name"),
    "sfg_sku_id": (Sku, "sku_code"),
    "source_bom_id": (BomHeader, "bom_no"),
}

ENTITY_LOOKUP_OVERRIDES = {
    "PARTY": {"group_id": (PartyGroup, "name")},
    "ACCOUNT": {"subgroup_id": (AccountGroup, "name")},
}


def _label(model, column: str, row_id):
    try:
        pk = int(row_id)
    except (TypeError, ValueError):
        return None
    row = db.session.get(model, pk)
    return getattr(row, column, None) if row is not None else None


def augment_with_names(value, entity_type: str | None = None, depth: int = 0):
    """Add `<field>_name` next to every referenced id, walking nested sections."""
    if depth > 4:
        return value
    if isinstance(value, list):
        return [augment_with_names(v, entity_type, depth + 1) for v in value]
    if not isinstance(value, dict):
        return value

    lookups = {**LOOKUP_FIELDS, **ENTITY_LOOKUP_OVERRIDES.get(entity_type or "", {})}
    result = {}
    for key, raw in value.items():
        result[key] = augment_with_names(raw, entity_type, depth + 1)
        if key not in lookups or raw in (None, ""):
            continue
        model, column = lookups[key]
        if isinstance(raw, list):
            result[f"{key}_name"] = [_label(model, column, v) for v in raw]
        elif not isinstance(raw, dict):
            result[f"{key}_name"] = _label(model, column, raw)
    return result


def _comparable(value) -> dict:
    return {k: v for k, v in (value or {}).items() if k not in META_KEYS} if isinstance(value, dict) else {}


def preview_request(request_id: int) -> dict:
    request = approval_request_service.get_request(request_id)
    data = request.to_dict()
    data["action"] = infer_action(request.entity_id, request.new_value)
    data["new_value"] = augment_with_names(request.new_value, request.entity_type)
    data["old_value"] = augment_with_names(request.old_value, request.entity_type)
    before, after = _comparable(request.old_value), _comparable(request.new_value)
    # An update payload carries only the submitted fields
    keys = list(after) if before and after else None
    data["changes"] = activity_log_service.build_change_set(before, after, include_keys=keys)["changed_fields"]
    return data


def _ensure_not_self(request: ApprovalRequest, access: UserAccess) -> None:
    if request.requested_by == access.user_id:
        logger.warning("Self-decision blocked request=%s user_id=%s", request.id, access.user_id)
        raise PermissionDeniedError("approval_self_decision_not_allowed")


def edit_request(request_id: int, *, access: UserAccess, submitted: dict, branch_id: int | None = None) -> dict:
    """Apply a moderator's edits to new_value. Caller commits."""
    request = approval_request_service.get_request(request_id, lock=True)
    approval_request_service.ensure_pending(request)

    result = sanitize_edited_values(entity_id=request.entity_id, new_value=request.new_value, submitted=submitted)
    if result["changed_fields"]:
        approval_request_service.update_new_value(request, result["next_value"])
        activity_log_service.record_activity(
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            action="EDIT",
            user_id=access.user_id,
            branch_id=branch_id,
            context={
                "approval_request_id": request.id,
                "changed_fields": result["changed_fields"],
                "source": "approval-edit",
            },
        )
    return {"request": request.to_dict(), **result}


def approve_request(
    request_id: int,
    *,
    access: UserAccess,
    notes: str | None = None,
    branch_id: int | None = None,
) -> tuple[ApprovalRequest, ApplyResult]:
    """
    Lock, decide, apply. Any failure leaves the session dirty; the caller
    rolls back so neither the decision nor a partial write survives.
    """
    request = approval_request_service.get_request(request_id, lock=True)
    approval_request_service.ensure_pending(request)
    _ensure_not_self(request, access)

    approval_request_service.mark_decided(request, status=STATUS_APPROVED, decided_by=access.user_id, notes=notes)
    result = approval_applier.apply_master_data_change(request, actor_user_id=access.user_id)

    activity_log_service.record_activity(
        entity_type=request.entity_type,
        entity_id=result.entity_id if result.entity_id is not None else request.entity_id,
        action="APPROVE",
        user_id=access.user_id,
        branch_id=branch_id or request.branch_id,
        context={
            "approval_request_id": request.id,
            "summary": request.summary,
            "decision_notes": notes,
            "new_value": request.new_value,
            "source": "approval",
        },
    )
    return request, result


def reject_request(
    request_id: int,
    *,
    access: UserAccess,
    notes: str | None = None,
    branch_id: int | None = None,
) -> ApprovalRequest:
    request = approval_request_service.get_request(request_id, lock=True)
    approval_request_service.ensure_pending(request)
    _ensure_not_self(request, access)

    approval_request_service.mark_decided(request, status=STATUS_REJECTED, decided_by=access.user_id, notes=notes)
    bom_service.reset_pending_after_reject(request)

    activity_log_service.record_activity(
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        action="REJECT",
        user_id=access.user_id,
        branch_id=branch_id or request.branch_id,
        context={
            "approval_request_id": request.id,
            "summary": request.summary,
            "decision_notes": notes,
            "source": "approval",
        },
    )
    return request
