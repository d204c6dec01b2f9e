# Overview: Sanitizes a moderator's edits to a pending request's new_value before approval.

from __future__ import annotations

import json

from ..validation import ValidationError


SYSTEM_KEYS = frozenset({"created_at", "created_by", "updated_at", "updated_by"})

# Routing keys tie a payload to its target row and format; moderators never edit them
ROUTING_KEYS = frozenset({"schema_version", "bom_id", "source_bom_id"})


class ApprovalEditError(ValidationError):
    """Rejected edit; `code` is a stable identifier for the client."""

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        super().__init__(message or code)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["code"] = self.code
        return payload


def infer_action(entity_id, new_value) -> str:
    """
    Action a stored request will perform.

    toggle counts as delete: a deactivation carries no editable fields.
    """
    if isinstance(new_value, dict) and new_value.get("_action"):
        action = str(new_value["_action"])
        if action == "toggle":
            return "delete"
        return action
    if new_value is None:
        return "delete"
    return "create" if str(entity_id) == "NEW" else "update"


def editable_keys(new_value: dict) -> list[str]:
    return [
        k for k in new_value
        if not str(k).startswith("_") and k not in SYSTEM_KEYS and k not in ROUTING_KEYS
    ]


def _same(a, b) -> bool:
    return json.dumps(a, sort_keys=True, default=str) == json.dumps(b, sort_keys=True, default=str)


def sanitize_edited_values(*, entity_id, new_value, submitted) -> dict:
    """
    Merge submitted edits onto the stored payload.

    Returns {action, next_value, changed_fields, editable_keys}. Keys outside
    the editable set are ignored; absent keys keep their stored value.
    """
    action = infer_action(entity_id, new_value)
    if action == "delete":
        raise ApprovalEditError("approval_edit_delete_not_allowed", "Delete requests cannot be edited.")
    if not isinstance(new_value, dict) or not isinstance(submitted, dict):
        raise ApprovalEditError("approval_edit_invalid_payload", "Edited values must be an object.")

    keys = editable_keys(new_value)
    if not keys:
        raise ApprovalEditError("approval_edit_no_fields", "This request has no editable fields.")

    next_value = dict(new_value)
    changed = []
    for key in keys:
        if key not in submitted:
            continue
        if _same(submitted[key], new_value.get(key)):
            continue
        changed.append({"field": key, "old_value": new_value.get(key), "new_value": submitted[key]})
        next_value[key] = submitted[key]

    return {
        "action": action,
        "next_value": next_value,
        "changed_fields": changed,
        "editable_keys": keys,
    }
