# Overview: Service-layer operations for auth; password hashing, user creation and admin seeding.

"""
Authentication Service

WHY: Every change and every approval decision must be attributable to a
user working inside one branch.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character
- Inactive users never authenticate
- Session tokens managed separately (see session_service.py)
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..models import Branch, Role, User, UserBranch
from ..models.auth import USER_STATUS_ACTIVE
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from . import scope_service


logger = logging.getLogger(__name__)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if len(password or "") < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt cost 12."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe via bcrypt.checkpw. Malformed hashes never verify."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def get_or_create_role(name: str, description: str | None = None) -> Role:
    role = db.session.query(Role).filter(db.func.lower(Role.name) == name.strip().lower()).first()
    if role is None:
        role = Role(name=name.strip(), description=description)
        db.session.add(role)
        db.session.flush()
    return role


def _branches_by_code(codes) -> list[Branch]:
    codes = [c.strip() for c in codes if c and c.strip()]
    if not codes:
        return []
    rows = db.session.query(Branch).filter(Branch.code.in_(codes)).all()
    found = {b.code for b in rows}
    missing = [c for c in codes if c not in found]
    if missing:
        raise NotFoundError(f"Branch not found: {', '.join(missing)}")
    return rows


def create_user(
    username: str,
    password: str,
    *,
    email: str | None = None,
    role_name: str | None = None,
    branch_ids: list[int] | None = None,
) -> User:
    """
    Create a user with a bcrypt hash. Caller commits.

    Raises ValidationError for a duplicate username or a weak password.
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required", field="username")
    if db.session.query(User.id).filter(User.username == username).first():
        raise ValidationError("Username already exists", field="username")

    user = User(
        username=username,
        email=(email or "").strip() or None,
        password_hash=hash_password(password),
        primary_role_id=get_or_create_role(role_name).id if role_name else None,
        status=USER_STATUS_ACTIVE,
    )
    db.session.add(user)
    db.session.flush()

    for branch_id in sorted(set(branch_ids or [])):
        if db.session.get(Branch, branch_id) is None:
            raise NotFoundError(f"Branch not found: {branch_id}")
        db.session.add(UserBranch(user_id=user.id, branch_id=branch_id))
    db.session.flush()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the user when credentials are valid and the account is Active.

    Updates last_login_at on success. Caller commits.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
    ).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.flush()
    return user


def seed_admin(
    *,
    username: str,
    password: str,
    email: str | None = None,
    role_name: str = "Admin",
    branch_codes: list[str] | None = None,
) -> tuple[User, bool]:
    """
    Idempotent bootstrap of an administrator.

    Syncs the scope registry, ensures the role exists, creates the user if
    missing (else resets role, email and password) and adds the branch
    memberships. Returns (user, created). Caller commits.
    """
    scope_service.sync_nav_scopes()
    role = get_or_create_role(role_name, "Full system access")
    branches = _branches_by_code(branch_codes or [])

    user = db.session.query(User).filter(User.username == username).first()
    created = user is None
    if created:
        user = create_user(username, password, email=email, role_name=role.name)
    else:
        user.password_hash = hash_password(password)
        user.primary_role_id = role.id
        user.status = USER_STATUS_ACTIVE
        if email:
            user.email = email

    existing = {
        branch_id for (branch_id,) in db.session.query(UserBranch.branch_id).filter(UserBranch.user_id == user.id).all()
    }
    for branch in branches:
        if branch.id not in existing:
            db.session.add(UserBranch(user_id=user.id, branch_id=branch.id))
    db.session.flush()
    logger.info("Seeded admin user %s (created=%s)", username, created)
    return user, created
