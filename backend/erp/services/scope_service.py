# Overview: Service-layer operations for the scope registry; keeps the table in step with the nav tree.

from __future__ import annotations

from ..extensions import db
from ..models import PermissionScope
from ..scopes import iter_nav_scopes


def sync_nav_scopes() -> int:
    """
    Insert registry rows for every nav-tree scope that is missing.

    Idempotent: existing rows are never updated or deleted.
    Returns the number of rows inserted. Caller commits.
    """
    existing = {
        (scope_type, scope_key)
        for scope_type, scope_key in db.session.query(PermissionScope.scope_type, PermissionScope.scope_key).all()
    }
    created = 0
    for row in iter_nav_scopes():
        if (row["scope_type"], row["scope_key"]) in existing:
            continue
        db.session.add(PermissionScope(**row))
        existing.add((row["scope_type"], row["scope_key"]))
        created += 1
    db.session.flush()
    return created


def list_scopes(scope_type: str | None = None) -> list[PermissionScope]:
    query = db.session.query(PermissionScope)
    if scope_type:
        query = query.filter(PermissionScope.scope_type == scope_type)
    return query.order_by(PermissionScope.scope_type.asc(), PermissionScope.scope_key.asc()).all()


def get_scope(scope_type: str, scope_key: str) -> PermissionScope | None:
    return (
        db.session.query(PermissionScope)
        .filter_by(scope_type=scope_type, scope_key=scope_key)
        .first()
    )
