# Overview: Service-layer operations for approval policies (entity_type, entity_key, action) -> flag.

from __future__ import annotations

from ..extensions import db
from ..models import ApprovalPolicy
from ..models.approvals import POLICY_ACTIONS
from ..scopes import ScopeType, is_known_screen, iter_nav_scopes
from ..time_utils import utcnow
from ..validation import ValidationError


POLICY_ENTITY_SCREEN = "SCREEN"


def requires_approval(entity_type: str, entity_key: str, action: str) -> bool:
    """
    Missing row = False.

    Database errors propagate: the gateway must never fall back to a
    direct apply because the policy table could not be read.
    """
    row = (
        db.session.query(ApprovalPolicy.requires_approval)
        .filter_by(entity_type=entity_type, entity_key=entity_key, action=action)
        .first()
    )
    return bool(row and row[0])


def list_policies(entity_type: str = POLICY_ENTITY_SCREEN) -> dict[str, bool]:
    """Policy map keyed `<entity_type>:<entity_key>:<action>`."""
    rows = (
        db.session.query(ApprovalPolicy)
        .filter(ApprovalPolicy.entity_type == entity_type)
        .order_by(ApprovalPolicy.entity_key.asc(), ApprovalPolicy.action.asc())
        .all()
    )
    return {f"{r.entity_type}:{r.entity_key}:{r.action}": bool(r.requires_approval) for r in rows}


def parse_policy_key(key: str) -> tuple[str, str, str]:
    parts = str(key or "").split(":")
    if len(parts) != 3 or not all(parts):
        raise ValidationError(f"Invalid policy key: {key}", field="policies")
    entity_type, entity_key, action = parts
    if entity_type != POLICY_ENTITY_SCREEN:
        raise ValidationError(f"Unsupported policy entity type: {entity_type}", field="policies")
    if action not in POLICY_ACTIONS:
        raise ValidationError(f"Unsupported policy action: {action}", field="policies")
    if not is_known_screen(entity_key):
        raise ValidationError(f"Unknown screen: {entity_key}", field="policies")
    return entity_type, entity_key, action


def set_policy(*, entity_type: str, entity_key: str, action: str, requires: bool, actor_user_id: int | None = None) -> ApprovalPolicy:
    row = (
        db.session.query(ApprovalPolicy)
        .filter_by(entity_type=entity_type, entity_key=entity_key, action=action)
        .first()
    )
    if row is None:
        row = ApprovalPolicy(entity_type=entity_type, entity_key=entity_key, action=action)
        db.session.add(row)
    row.requires_approval = bool(requires)
    row.updated_by = actor_user_id
    row.updated_at = utcnow()
    db.session.flush()
    return row


def replace_policies(policies: dict, *, actor_user_id: int | None = None) -> int:
    """
    Replace every SCREEN policy row with the submitted map.

    `policies` maps `SCREEN:<scope_key>:<action>` to a truthy flag; only
    truthy entries are stored. Caller commits.
    """
    if not isinstance(policies, dict):
        raise ValidationError("policies must be an object", field="policies")

    parsed = [(parse_policy_key(key), bool(value)) for key, value in policies.items()]

    db.session.query(ApprovalPolicy).filter(
        ApprovalPolicy.entity_type == POLICY_ENTITY_SCREEN
    ).delete(synchronize_session=False)

    stored = 0
    now = utcnow()
    for (entity_type, entity_key, action), flag in parsed:
        if not flag:
            continue
        db.session.add(ApprovalPolicy(
            entity_type=entity_type,
            entity_key=entity_key,
            action=action,
            requires_approval=True,
            updated_by=actor_user_id,
            updated_at=now,
        ))
        stored += 1
    db.session.flush()
    return stored


def _policy_eligible(scope_key: str) -> bool:
    if scope_key.startswith("administration.") or scope_key.startswith("reports"):
        return False
    return ".approval" not in scope_key and ".versions" not in scope_key


def list_policy_screens() -> list[dict]:
    """Screens shown on the approval-settings page with their per-action flags."""
    policies = list_policies()
    screens = []
    for node in iter_nav_scopes():
        if node["scope_type"] != ScopeType.SCREEN or not _policy_eligible(node["scope_key"]):
            continue
        screens.append({
            "scope_key": node["scope_key"],
            "label": node["description"],
            "module_group": node["module_group"],
            "actions": {
                action: policies.get(f"{POLICY_ENTITY_SCREEN}:{node['scope_key']}:{action}", False)
                for action in POLICY_ACTIONS
            },
        })
    return screens
