# Overview: Builds sanitized activity-log context and appends activity rows.

"""
Activity Log Service

SECURITY: Context is walked before it is stored. Secrets are dropped by
key name; deep or large structures are truncated so a single request can
never bloat the log.

IMMUTABLE: rows are only ever inserted, inside the caller's transaction.
"""

from __future__ import annotations

import json

from flask import has_request_context, request

from ..extensions import db
from ..models import ActivityLog
from ..time_utils import json_safe


MAX_DEPTH = 4
MAX_ARRAY_ITEMS = 40
MAX_STRING_LENGTH = 400
OMIT_KEYS = frozenset({"_csrf", "password", "password_hash", "token", "secret", "secret_enc"})

ACTIVITY_ACTIONS = ("CREATE", "UPDATE", "DELETE", "TOGGLE", "SUBMIT", "EDIT", "APPROVE", "REJECT")


def sanitize_context(value, depth: int = 0):
    """Scalars pass at any depth; containers at MAX_DEPTH collapse to a marker."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= MAX_STRING_LENGTH else value[:MAX_STRING_LENGTH] + "..."
    if isinstance(value, (list, tuple, dict)) and depth >= MAX_DEPTH:
        return "[max-depth]"
    if isinstance(value, (list, tuple)):
        return [sanitize_context(v, depth + 1) for v in list(value)[:MAX_ARRAY_ITEMS]]
    if isinstance(value, dict):
        return {
            str(k): sanitize_context(v, depth + 1)
            for k, v in value.items()
            if str(k).lower() not in OMIT_KEYS
        }
    return json_safe(value)


def build_request_context(status_code: int | None = None) -> dict:
    """source/method/path/query of the current request; the body only for writes."""
    if not has_request_context():
        return {}
    context = {
        "source": "http",
        "method": request.method,
        "path": request.path,
        "query": request.args.to_dict(flat=True),
    }
    if status_code is not None:
        context["status_code"] = status_code
    if request.method not in ("GET", "HEAD"):
        context["request_body"] = request.get_json(silent=True) or request.form.to_dict(flat=True) or None
    return context


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def build_change_set(before: dict | None, after: dict | None, *, include_keys=None, exclude_keys=None) -> dict:
    """
    Field-level diff of two snapshots.

    include_keys restricts the comparison to the entity's declared fields.
    """
    before = before or {}
    after = after or {}
    exclude = set(exclude_keys or ())
    if include_keys is not None:
        keys = [k for k in include_keys if k not in exclude]
    else:
        keys = sorted((set(before) | set(after)) - exclude)

    changed = []
    for key in keys:
        old = before.get(key)
        new = after.get(key)
        if _canonical(old) != _canonical(new):
            changed.append({"field": key, "old_value": old, "new_value": new})

    return {
        "changed_fields": changed,
        "changed_field_names": [c["field"] for c in changed],
        "old_values": {c["field"]: c["old_value"] for c in changed},
        "new_values": {c["field"]: c["new_value"] for c in changed},
    }


def record_activity(
    *,
    entity_type: str,
    entity_id,
    action: str,
    user_id: int | None,
    branch_id: int | None = None,
    context: dict | None = None,
    status_code: int | None = None,
) -> ActivityLog:
    """Append one activity row. Caller commits with the write it describes."""
    merged = build_request_context(status_code)
    merged.update(context or {})
    entry = ActivityLog(
        branch_id=branch_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        action=action.upper(),
        context_json=sanitize_context(merged) or None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(
    *,
    entity_type: str | None = None,
    entity_id=None,
    action: str | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[ActivityLog]:
    query = db.session.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == str(entity_id))
    if action:
        query = query.filter(ActivityLog.action == action.upper())
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(min(max(limit, 1), 500)).all()
