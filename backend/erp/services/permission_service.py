# Overview: Service-layer operations for scope permissions; resolves role grants plus user overrides.

"""
Scope Permission Resolution

WHY: Every screen mutation asks "may this user <action> on <scope>?".
The answer combines role-template grants with per-user overrides, inherits
through the navigation tree, honours retired scope keys and enforces the
view -> navigate -> edit dependency lattice.

DESIGN PRINCIPLES:
- Fail closed: unknown actions and missing grants deny
- Lattice enforced at read time; stored flags stay orthogonal
- An explicit user override of FALSE on the screen is final
- No tree walk per check: the screen -> module map is precomputed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..models import PermissionScope, Role, RolePermission, User, UserPermissionOverride
from ..scopes import ACTION_FLAGS, FLAG_NAMES, FLAG_PREREQUISITES, ScopeType, enclosing_module, legacy_alias
from ..validation import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""

    def __init__(self, message: str = "permission_denied", scope_key: str | None = None, action: str | None = None):
        super().__init__(message)
        self.scope_key = scope_key
        self.action = action


@dataclass(frozen=True)
class PermissionEntry:
    """
    Merged flags for one scope.

    forced_deny lists the flags a user override pinned to FALSE.
    """
    flags: dict
    forced_deny: frozenset = field(default_factory=frozenset)

    def allows(self, flag: str) -> bool:
        return bool(self.flags.get(flag))


@dataclass
class UserAccess:
    """Pre-joined permission bag carried through one request."""
    user_id: int
    username: str
    is_admin: bool
    permissions: dict = field(default_factory=dict)
    branch_ids: set = field(default_factory=set)


def scope_ref(scope_type: str, scope_key: str) -> str:
    return f"{scope_type}:{scope_key}"


def required_flags(action: str) -> tuple[str, ...] | None:
    """Flag plus its lattice prerequisites (transitive), or None for an unknown verb."""
    flag = ACTION_FLAGS.get((action or "").strip().lower())
    if flag is None:
        return None
    ordered = [flag]
    idx = 0
    while idx < len(ordered):
        for dep in FLAG_PREREQUISITES.get(ordered[idx], ()):
            if dep not in ordered:
                ordered.append(dep)
        idx += 1
    return tuple(ordered)


def _check_entry(entry: PermissionEntry | None, flags: tuple[str, ...]) -> str:
    """Return "allow", "deny" (explicit, stops the walk) or "miss"."""
    if entry is None:
        return "miss"
    if any(f in entry.forced_deny for f in flags):
        return "deny"
    if all(entry.allows(f) for f in flags):
        return "allow"
    return "miss"


def has_permission(access: UserAccess | None, scope_key: str, action: str) -> bool:
    """
    Decide whether `access` may perform `action` on the SCREEN `scope_key`.

    Order: admin, direct screen entry, legacy alias entry, enclosing module entry.
    """
    if access is None:
        return False
    if access.is_admin:
        return True

    flags = required_flags(action)
    if flags is None:
        return False

    candidates = [scope_ref(ScopeType.SCREEN, scope_key)]
    alias = legacy_alias(scope_key)
    if alias:
        candidates.append(scope_ref(ScopeType.SCREEN, alias))
    module_key = enclosing_module(scope_key)
    if module_key:
        candidates.append(scope_ref(ScopeType.MODULE, module_key))

    for ref in candidates:
        outcome = _check_entry(access.permissions.get(ref), flags)
        if outcome == "allow":
            return True
        if outcome == "deny":
            return False
    return False


def require_scope_permission(access: UserAccess, scope_key: str, action: str) -> None:
    if not has_permission(access, scope_key, action):
        logger.warning(
            "Permission denied user_id=%s scope=%s action=%s",
            access.user_id if access else None, scope_key, action,
        )
        raise PermissionDeniedError("permission_denied", scope_key=scope_key, action=action)


def merge_permission_rows(role_rows: list[tuple], override_rows: list[tuple]) -> dict[str, PermissionEntry]:
    """
    Merge (scope_type, scope_key, flags) role rows with override rows.

    Override TRUE/FALSE wins, NULL inherits the role flag, missing is FALSE.
    Override-only scopes are included.
    """
    role_map = {scope_ref(t, k): flags for t, k, flags in role_rows}
    override_map = {scope_ref(t, k): flags for t, k, flags in override_rows}

    merged: dict[str, PermissionEntry] = {}
    for ref in set(role_map) | set(override_map):
        role_flags = role_map.get(ref) or {}
        override_flags = override_map.get(ref) or {}
        flags = {}
        denied = set()
        for name in FLAG_NAMES:
            forced = override_flags.get(name)
            if forced is not None:
                flags[name] = bool(forced)
                if forced is False:
                    denied.add(name)
            else:
                flags[name] = bool(role_flags.get(name, False))
        merged[ref] = PermissionEntry(flags=flags, forced_deny=frozenset(denied))
    return merged


def _flags_of(row) -> dict:
    return {name: getattr(row, name) for name in FLAG_NAMES}


def load_user_access(user: User | int) -> UserAccess:
    """
    Build the permission bag for a user.

    SECURITY: Users whose status is not Active are rejected.
    """
    if not isinstance(user, User):
        user = db.session.get(User, user)
    if user is None:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise PermissionDeniedError("User account is inactive")

    role = db.session.get(Role, user.primary_role_id) if user.primary_role_id else None

    role_rows = []
    if role is not None:
        rows = (
            db.session.query(RolePermission, PermissionScope)
            .join(PermissionScope, RolePermission.scope_id == PermissionScope.id)
            .filter(RolePermission.role_id == role.id)
            .all()
        )
        role_rows = [(scope.scope_type, scope.scope_key, _flags_of(grant)) for grant, scope in rows]

    rows = (
        db.session.query(UserPermissionOverride, PermissionScope)
        .join(PermissionScope, UserPermissionOverride.scope_id == PermissionScope.id)
        .filter(UserPermissionOverride.user_id == user.id)
        .all()
    )
    override_rows = [(scope.scope_type, scope.scope_key, _flags_of(o)) for o, scope in rows]

    return UserAccess(
        user_id=user.id,
        username=user.username,
        is_admin=bool(role and role.is_admin),
        permissions=merge_permission_rows(role_rows, override_rows),
        branch_ids={b.id for b in user.branches},
    )


def flatten_permissions(access: UserAccess) -> dict:
    """Serializable view of the bag for /me and the permissions screen."""
    return {ref: dict(entry.flags) for ref, entry in sorted(access.permissions.items())}


# -- Permissions screen --

def _scope_by_key(scope_key: str, scope_type: str | None = None) -> PermissionScope:
    query = db.session.query(PermissionScope).filter(PermissionScope.scope_key == scope_key)
    if scope_type:
        query = query.filter(PermissionScope.scope_type == scope_type)
    scope = query.order_by(PermissionScope.id.asc()).first()
    if scope is None:
        raise ValidationError(f"Unknown scope: {scope_key}", field="scope_key")
    return scope


def get_role_grants(role_id: int) -> dict:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role not found")
    grants = {
        g.scope_id: g for g in db.session.query(RolePermission).filter_by(role_id=role_id).all()
    }
    scopes = db.session.query(PermissionScope).order_by(PermissionScope.scope_type, PermissionScope.scope_key).all()
    return {
        "role": role.to_dict(),
        "scopes": [
            {
                **scope.to_dict(),
                **({name: getattr(grants[scope.id], name) for name in FLAG_NAMES}
                   if scope.id in grants else {name: False for name in FLAG_NAMES}),
            }
            for scope in scopes
        ],
    }


def save_role_grants(*, role_id: int, grants: list[dict]) -> int:
    """
    Upsert role grants. Each entry: {scope_type?, scope_key, can_*...}.

    Flags omitted from an entry keep their stored value. Caller commits.
    """
    if db.session.get(Role, role_id) is None:
        raise NotFoundError("Role not found")
    if not isinstance(grants, list):
        raise ValidationError("grants must be a list")

    changed = 0
    for entry in grants:
        scope = _scope_by_key(str(entry.get("scope_key") or ""), entry.get("scope_type"))
        row = db.session.query(RolePermission).filter_by(role_id=role_id, scope_id=scope.id).first()
        if row is None:
            row = RolePermission(role_id=role_id, scope_id=scope.id, **{name: False for name in FLAG_NAMES})
            db.session.add(row)
        for name in FLAG_NAMES:
            if name in entry:
                setattr(row, name, bool(entry[name]))
        changed += 1
    db.session.flush()
    return changed


def get_user_overrides(user_id: int) -> dict:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    rows = (
        db.session.query(UserPermissionOverride, PermissionScope)
        .join(PermissionScope, UserPermissionOverride.scope_id == PermissionScope.id)
        .filter(UserPermissionOverride.user_id == user_id)
        .order_by(PermissionScope.scope_key.asc())
        .all()
    )
    return {
        "user": user.to_dict(),
        "overrides": [{**scope.to_dict(), **_flags_of(o)} for o, scope in rows],
    }


def save_user_overrides(*, user_id: int, overrides: list[dict]) -> int:
    """
    Upsert nullable user overrides. A flag sent as null clears that override;
    a row left with every flag null is removed. Caller commits.
    """
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")
    if not isinstance(overrides, list):
        raise ValidationError("overrides must be a list")

    changed = 0
    for entry in overrides:
        scope = _scope_by_key(str(entry.get("scope_key") or ""), entry.get("scope_type"))
        row = db.session.query(UserPermissionOverride).filter_by(user_id=user_id, scope_id=scope.id).first()
        if row is None:
            row = UserPermissionOverride(user_id=user_id, scope_id=scope.id)
            db.session.add(row)
        for name in FLAG_NAMES:
            if name in entry:
                value = entry[name]
                setattr(row, name, None if value is None else bool(value))
        if all(getattr(row, name) is None for name in FLAG_NAMES):
            if row.id is not None:
                db.session.delete(row)
            else:
                db.session.expunge(row)
        changed += 1
    db.session.flush()
    return changed
