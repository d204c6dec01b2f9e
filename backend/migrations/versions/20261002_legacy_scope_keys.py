"""Normalize legacy setup:* scope keys to administration.* keys

Revision ID: 20261002_legacy_scopes
Revises: 20261001_initial
Create Date: 2026-10-02

Older databases granted branch, user and role screens under `setup:*` keys.
For every legacy key that is still registered:
1. Ensure the administration.* scope row exists.
2. Merge role grants into it (a flag is TRUE if either row grants it).
3. Merge user overrides into it (TRUE wins, then FALSE, else NULL).
4. Delete the legacy grants, overrides and registry row.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261002_legacy_scopes"
down_revision = "20261001_initial"
branch_labels = None
depends_on = None


LEGACY_TO_CURRENT = {
    "setup:branches": "administration.branches",
    "setup:users": "administration.users",
    "setup:roles": "administration.roles",
}

FLAG_COLUMNS = (
    "can_navigate", "can_view", "can_create", "can_edit",
    "can_delete", "can_hard_delete", "can_print", "can_approve",
)


def _merge_override(current, legacy):
    if current is True or legacy is True:
        return True
    if current is False or legacy is False:
        return False
    return None


def _as_bool(value):
    if value is None:
        return None
    return bool(value)


def _scope_id(bind, scope_key):
    return bind.execute(
        sa.text("SELECT id FROM permission_scope_registry WHERE scope_key = :key ORDER BY id LIMIT 1"),
        {"key": scope_key},
    ).scalar()


def _merge_table(bind, table, owner_column, legacy_id, target_id, merge):
    columns = ", ".join(FLAG_COLUMNS)
    legacy_rows = bind.execute(
        sa.text(f"SELECT {owner_column}, {columns} FROM {table} WHERE scope_id = :sid"),
        {"sid": legacy_id},
    ).fetchall()

    for row in legacy_rows:
        owner_id = row[0]
        legacy_flags = dict(zip(FLAG_COLUMNS, (_as_bool(v) for v in row[1:])))
        existing = bind.execute(
            sa.text(f"SELECT id, {columns} FROM {table} WHERE {owner_column} = :owner AND scope_id = :sid"),
            {"owner": owner_id, "sid": target_id},
        ).fetchone()

        if existing is None:
            params = {"owner": owner_id, "sid": target_id, **legacy_flags}
            placeholders = ", ".join(f":{flag}" for flag in FLAG_COLUMNS)
            bind.execute(
                sa.text(
                    f"INSERT INTO {table} ({owner_column}, scope_id, {columns}) "
                    f"VALUES (:owner, :sid, {placeholders})"
                ),
                params,
            )
            continue

        current_flags = dict(zip(FLAG_COLUMNS, (_as_bool(v) for v in existing[1:])))
        merged = {flag: merge(current_flags[flag], legacy_flags[flag]) for flag in FLAG_COLUMNS}
        assignments = ", ".join(f"{flag} = :{flag}" for flag in FLAG_COLUMNS)
        bind.execute(
            sa.text(f"UPDATE {table} SET {assignments} WHERE id = :row_id"),
            {"row_id": existing[0], **merged},
        )

    bind.execute(sa.text(f"DELETE FROM {table} WHERE scope_id = :sid"), {"sid": legacy_id})


def upgrade():
    bind = op.get_bind()

    for legacy_key, current_key in LEGACY_TO_CURRENT.items():
        legacy_id = _scope_id(bind, legacy_key)
        if legacy_id is None:
            continue

        target_id = _scope_id(bind, current_key)
        if target_id is None:
            bind.execute(
                sa.text(
                    "INSERT INTO permission_scope_registry (scope_type, scope_key, module_group, description) "
                    "VALUES ('SCREEN', :key, 'administration', NULL)"
                ),
                {"key": current_key},
            )
            target_id = _scope_id(bind, current_key)

        _merge_table(
            bind, "role_permissions", "role_id", legacy_id, target_id,
            lambda current, legacy: bool(current) or bool(legacy),
        )
        _merge_table(bind, "user_permissions_override", "user_id", legacy_id, target_id, _merge_override)

        bind.execute(sa.text("DELETE FROM permission_scope_registry WHERE id = :sid"), {"sid": legacy_id})


def downgrade():
    # Merged grants cannot be split back into legacy rows
    pass
