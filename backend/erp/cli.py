# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/erp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Scope registry:
# - python -m flask scopes sync
#   Insert registry rows for every navigation scope that is missing.
# - python -m flask scopes list [--type SCREEN]
#   List registered scopes.
#
# Branches:
# - python -m flask branches create --code MAIN --name "Main Branch"
# - python -m flask branches list
#
# Users:
# - python -m flask users seed-admin --username admin --password "Password123!" --branch-codes MAIN
#   Idempotent admin bootstrap; falls back to SEED_ADMIN_* settings.
# - python -m flask users list
# - python -m flask users deactivate clerk
#   Mark the user inactive and revoke all of their sessions.
#
# Permission inspection:
# - python -m flask perms check admin master_data.accounts create
#
# Approvals:
# - python -m flask approvals list [--status PENDING|APPROVED|REJECTED|ALL]
#
# Every command exits 0 on success and 1 on failure.

import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, User
from .models.auth import USER_STATUS_INACTIVE
from .services import approval_request_service, auth_service, permission_service, scope_service, session_service
from .services.permission_service import PermissionDeniedError
from .validation import NotFoundError, ValidationError


def _fail(message: str):
    db.session.rollback()
    click.echo(f"FAIL {message}")
    sys.exit(1)


@click.group('scopes')
def scopes_group():
    """Permission scope registry commands."""


@scopes_group.command('sync')
@with_appcontext
def sync_scopes():
    """Insert registry rows for navigation scopes that are missing."""
    try:
        created = scope_service.sync_nav_scopes()
        db.session.commit()
    except Exception as e:
        _fail(f"Scope sync failed: {e}")
    click.echo(f"PASS Scope registry synced ({created} new)")


@scopes_group.command('list')
@click.option('--type', 'scope_type', type=click.Choice(['MODULE', 'SCREEN']), help='Filter by scope type')
@with_appcontext
def list_scopes(scope_type):
    scopes = scope_service.list_scopes(scope_type)
    if not scopes:
        click.echo("No scopes registered. Run: python -m flask scopes sync")
        return
    click.echo(f"{'Type':<8} {'Scope key':<50} {'Module'}")
    click.echo("=" * 80)
    for scope in scopes:
        click.echo(f"{scope.scope_type:<8} {scope.scope_key:<50} {scope.module_group or '-'}")


@click.group('branches')
def branches_group():
    """Branch bootstrap commands."""


@branches_group.command('create')
@click.option('--code', required=True, help='Branch code (unique)')
@click.option('--name', required=True, help='Branch name')
@with_appcontext
def create_branch(code, name):
    code = code.strip().upper()
    if db.session.query(Branch.id).filter(Branch.code == code).first():
        _fail(f"Branch with code '{code}' already exists")
    branch = Branch(code=code, name=name.strip(), is_active=True)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")


@branches_group.command('list')
@with_appcontext
def list_branches():
    branches = db.session.query(Branch).order_by(Branch.code.asc()).all()
    if not branches:
        click.echo("No branches found.")
        return
    for branch in branches:
        status = "active" if branch.is_active else "inactive"
        click.echo(f"{branch.id:<5} {branch.code:<12} {branch.name:<30} {status}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('seed-admin')
@click.option('--username', help='Admin username (default: SEED_ADMIN_USERNAME)')
@click.option('--password', help='Admin password (default: SEED_ADMIN_PASSWORD)')
@click.option('--email', help='Admin e-mail (default: SEED_ADMIN_EMAIL)')
@click.option('--role', 'role_name', help='Role name (default: SEED_ADMIN_ROLE)')
@click.option('--branch-codes', help='Comma separated branch codes (default: SEED_ADMIN_BRANCH_CODES)')
@with_appcontext
def seed_admin(username, password, email, role_name, branch_codes):
    """Create or reset the bootstrap administrator."""
    config = current_app.config
    username = username or config.get("SEED_ADMIN_USERNAME")
    password = password or config.get("SEED_ADMIN_PASSWORD")
    email = email or config.get("SEED_ADMIN_EMAIL")
    role_name = role_name or config.get("SEED_ADMIN_ROLE") or "Admin"
    raw_codes = branch_codes if branch_codes is not None else config.get("SEED_ADMIN_BRANCH_CODES", "")
    codes = [c.strip().upper() for c in (raw_codes or "").split(",") if c.strip()]

    if not username or not password:
        _fail("username and password are required (options or SEED_ADMIN_* settings)")

    try:
        user, created = auth_service.seed_admin(
            username=username, password=password, email=email, role_name=role_name, branch_codes=codes,
        )
        db.session.commit()
    except (ValidationError, NotFoundError) as e:
        _fail(str(e))
    except Exception as e:
        _fail(f"Seeding admin failed: {e}")

    verb = "Created" if created else "Updated"
    click.echo(f"PASS {verb} admin user: {user.username} (ID: {user.id}, role: {role_name})")
    if codes:
        click.echo(f"     Branches: {', '.join(codes)}")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.username.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    click.echo(f"{'ID':<5} {'Username':<25} {'Role':<15} {'Status':<10} {'Branches'}")
    click.echo("=" * 80)
    for user in users:
        role = user.role.name if user.role else "-"
        branches = ", ".join(b.code for b in user.branches) or "-"
        click.echo(f"{user.id:<5} {user.username:<25} {role:<15} {user.status:<10} {branches}")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user(username):
    """Mark a user inactive and revoke every open session."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        _fail(f"User not found: {username}")

    user.status = USER_STATUS_INACTIVE
    db.session.flush()
    revoked = session_service.revoke_all_user_sessions(user.id, "User deactivated")
    click.echo(f"PASS Deactivated {user.username} (ID: {user.id}); revoked {revoked} session(s)")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('check')
@click.argument('username')
@click.argument('scope_key')
@click.argument('action')
@with_appcontext
def check_permission(username, scope_key, action):
    """Check whether USERNAME may ACTION on SCOPE_KEY."""
    user = db.session.query(User).filter(User.username == username).first()
    if user is None:
        _fail(f"User '{username}' not found")
    try:
        access = permission_service.load_user_access(user)
    except PermissionDeniedError as e:
        _fail(str(e))
    allowed = permission_service.has_permission(access, scope_key, action)
    label = "ALLOWED" if allowed else "DENIED"
    click.echo(f"{label} {username} -> {action} on {scope_key}{' (admin)' if access.is_admin else ''}")


@click.group('approvals')
def approvals_group():
    """Approval queue inspection commands."""


@approvals_group.command('list')
@click.option('--status', default='PENDING', help='PENDING, APPROVED, REJECTED or ALL')
@click.option('--limit', type=int, default=50)
@with_appcontext
def list_approvals(status, limit):
    try:
        rows = approval_request_service.list_requests(status=status, limit=limit)
    except ValidationError as e:
        _fail(str(e))
    if not rows:
        click.echo("No approval requests found.")
        return
    for row in rows:
        requester = row.requester.username if row.requester else "-"
        click.echo(
            f"#{row.id:<5} {row.status:<9} {row.entity_type:<16} {row.entity_id:<8} "
            f"{requester:<15} {row.summary or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(scopes_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(approvals_group)
