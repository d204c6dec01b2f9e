from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


USER_STATUS_ACTIVE = "Active"
USER_STATUS_INACTIVE = "Inactive"


class Branch(db.Model):
    """
    Operating branch. Users work inside exactly one active branch per session.

    WHY: Approval requests and activity entries are attributed to the branch
    the change was made from.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    name_ur = db.Column(db.String(128), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "name_ur": self.name_ur,
            "is_active": self.is_active,
        }


class Role(db.Model):
    """
    Role template. Grants per scope live in role_permissions.

    A role whose name is "admin" (case-insensitive) is the god-mode role.
    """
    __tablename__ = "role_templates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_admin(self) -> bool:
        return (self.name or "").strip().lower() == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_admin": self.is_admin,
        }


class User(db.Model):
    """
    User accounts for authentication and attribution.

    WHY: Every change and every approval decision must be attributable.
    SECURITY: status != Active means every request is rejected at the auth boundary.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("status IN ('Active', 'Inactive')", name="ck_users_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    primary_role_id = db.Column(db.Integer, db.ForeignKey("role_templates.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=USER_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    role = db.relationship("Role", backref=db.backref("users", lazy=True))
    branches = db.relationship("Branch", secondary="user_branch", lazy="selectin")

    @property
    def is_active(self) -> bool:
        return self.status == USER_STATUS_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "primary_role_id": self.primary_role_id,
            "status": self.status,
            "branch_ids": sorted(b.id for b in self.branches),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class UserBranch(db.Model):
    """User-Branch membership (many-to-many)."""
    __tablename__ = "user_branch"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True)


class PermissionScope(db.Model):
    """
    Registry entry for a unit of permission granularity.

    Seeded from the navigation tree; immutable at runtime.
    """
    __tablename__ = "permission_scope_registry"
    __table_args__ = (
        db.UniqueConstraint("scope_type", "scope_key", name="uq_permission_scope_type_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_type = db.Column(db.String(16), nullable=False)
    scope_key = db.Column(db.String(128), nullable=False)
    module_group = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_type": self.scope_type,
            "scope_key": self.scope_key,
            "module_group": self.module_group,
            "description": self.description,
        }


class RolePermission(db.Model):
    """
    Role grant on one scope. All eight flags are stored as plain booleans.

    DESIGN: Flags are orthogonal in storage; the view/navigate dependency
    is enforced by the resolver at read time.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        db.UniqueConstraint("role_id", "scope_id", name="uq_role_permissions_role_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("role_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    scope_id = db.Column(db.Integer, db.ForeignKey("permission_scope_registry.id", ondelete="CASCADE"), nullable=False, index=True)

    can_navigate = db.Column(db.Boolean, nullable=False, default=False)
    can_view = db.Column(db.Boolean, nullable=False, default=False)
    can_create = db.Column(db.Boolean, nullable=False, default=False)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)
    can_hard_delete = db.Column(db.Boolean, nullable=False, default=False)
    can_print = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)

    scope = db.relationship("PermissionScope")


class UserPermissionOverride(db.Model):
    """
    Per-user delta on one scope.

    NULL = inherit from role, TRUE = force allow, FALSE = force deny.
    """
    __tablename__ = "user_permissions_override"
    __table_args__ = (
        db.UniqueConstraint("user_id", "scope_id", name="uq_user_permissions_override_user_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scope_id = db.Column(db.Integer, db.ForeignKey("permission_scope_registry.id", ondelete="CASCADE"), nullable=False, index=True)

    can_navigate = db.Column(db.Boolean, nullable=True)
    can_view = db.Column(db.Boolean, nullable=True)
    can_create = db.Column(db.Boolean, nullable=True)
    can_edit = db.Column(db.Boolean, nullable=True)
    can_delete = db.Column(db.Boolean, nullable=True)
    can_hard_delete = db.Column(db.Boolean, nullable=True)
    can_print = db.Column(db.Boolean, nullable=True)
    can_approve = db.Column(db.Boolean, nullable=True)

    scope = db.relationship("PermissionScope")


class SessionToken(db.Model):
    """
    Bearer session bound to one active branch.

    SECURITY NOTES:
    - Tokens stored hashed (SHA-256), plaintext only returned once at login
    - Absolute and idle timeouts come from config
    - Revoked when the user is deactivated
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))
