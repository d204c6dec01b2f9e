# Overview: Service-layer operations for session tokens bound to one active branch.

"""
Session Token Management Service

WHY: Bearer sessions with automatic timeout and revocation. Each session
captures the branch the user logged into; approval requests and activity
rows are attributed to it.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout (SESSION_HOURS) and idle timeout (SESSION_IDLE_MINUTES)
- Revoked on logout and when the user is no longer Active
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Branch, SessionToken, User, UserBranch
from ..time_utils import utcnow
from ..validation import ValidationError


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    branch_id: int | None


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", 120))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for high-entropy tokens (unlike passwords)."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def resolve_login_branch(user: User, branch_id: int | None) -> int | None:
    """
    Requested branch if the user belongs to it, else the user's first
    active branch. Users without memberships log in branch-less.
    """
    memberships = (
        db.session.query(Branch.id)
        .join(UserBranch, UserBranch.branch_id == Branch.id)
        .filter(UserBranch.user_id == user.id, Branch.is_active.is_(True))
        .order_by(Branch.id.asc())
        .all()
    )
    allowed = [row[0] for row in memberships]
    if branch_id is not None:
        if int(branch_id) not in allowed:
            raise ValidationError("You do not have access to this branch", field="branch_id")
        return int(branch_id)
    return allowed[0] if allowed else None


def create_session(user: User, branch_id: int | None = None) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token). Only the hash is stored.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        branch_id=resolve_login_branch(user, branch_id),
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Returns None if the token is unknown, expired, idle, revoked, or its
    user is not Active. Updates last_used_at on success.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, branch_id=session.branch_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False
    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return len(sessions)
