# backend/erp/routes/system.py
"""
System health endpoint.

Checks database connectivity, the scope registry and the approval queue so a
deployment can tell "up" from "up but unseeded".
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import ApprovalRequest, PermissionScope, User
from ..models.approvals import STATUS_PENDING
from ..services.notification_bus import approval_events
from ..time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        scope_count = db.session.query(PermissionScope).count()
        pending = db.session.query(ApprovalRequest).filter_by(status=STATUS_PENDING).count()
        elapsed_ms = (time.time() - start_time) * 1000

        status = "healthy" if scope_count else "degraded"
        result = {
            "status": status,
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "scopes": scope_count,
                "pending_approvals": pending,
            },
        }
        if not scope_count:
            result["warning"] = "Scope registry is empty; run `flask scopes sync`"
        return result
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200
    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
            "approval_events": {"queue_limit": approval_events.queue_limit},
        },
    }, http_status
