# Overview: Pending-approval mail to active admins and decision events to requesters.

from __future__ import annotations

import json
import logging
import re
import smtplib

from flask import current_app
from flask_mail import Message

from ..extensions import db, mail
from ..models import ApprovalRequest, Role, User
from ..models.auth import USER_STATUS_ACTIVE
from .notification_bus import approval_events, build_decision_event


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PLACEHOLDER_DOMAINS = ("@example.com", "@example.org", "@example.net")


def active_admin_emails() -> list[str]:
    rows = (
        db.session.query(User.email)
        .join(Role, Role.id == User.primary_role_id)
        .filter(
            db.func.lower(db.func.trim(Role.name)) == "admin",
            User.status == USER_STATUS_ACTIVE,
            User.email.isnot(None),
        )
        .all()
    )
    emails = []
    for (email,) in rows:
        email = (email or "").strip()
        if not _EMAIL_RE.match(email) or email.lower().endswith(_PLACEHOLDER_DOMAINS):
            continue
        if email not in emails:
            emails.append(email)
    return emails


def _pretty(value) -> str:
    return json.dumps(value if value is not None else {}, indent=2, sort_keys=True, default=str)


def build_pending_mail(request: ApprovalRequest, recipients: list[str]) -> Message:
    config = current_app.config
    link = f"{(config.get('APP_BASE_URL') or '').rstrip('/')}/administration/approvals"
    body = "\n".join([
        "Request details:",
        f"Request ID: {request.id}",
        f"Request Type: {request.request_type}",
        f"Entity Type: {request.entity_type}",
        f"Entity ID: {request.entity_id}",
        f"Requested By: {request.requester.username if request.requester else '-'}",
        f"Branch: {request.branch_id or '-'}",
        f"Summary: {request.summary or '-'}",
        f"Old Value: {_pretty(request.old_value)}",
        f"New Value: {_pretty(request.new_value)}",
        "",
        f"Review: {link}",
    ])
    return Message(
        subject=f"ERP approval pending: {request.entity_type or 'UNKNOWN'}",
        recipients=recipients,
        body=body,
        sender=config.get("MAIL_DEFAULT_SENDER") or "erp@localhost",
    )


def send_mail(message: Message) -> None:
    mail.send(message)


def notify_pending_approval(request: ApprovalRequest) -> bool:
    """
    Mail active admins about a committed request.

    Never raises: a mail failure must not undo the enqueue.
    """
    if not current_app.config.get("MAIL_SERVER"):
        logger.info("Mail server not configured; skipped pending-approval mail for request %s", request.id)
        return False
    recipients = active_admin_emails()
    if not recipients:
        logger.info("No admin recipients for pending-approval mail (request %s)", request.id)
        return False
    try:
        send_mail(build_pending_mail(request, recipients))
    except (OSError, smtplib.SMTPException):
        logger.exception("Failed to send pending-approval mail for request %s", request.id)
        return False
    return True


def notify_decision(request: ApprovalRequest, *, applied: bool | None = None) -> int:
    """Push an approval_decision event to the requester's stream."""
    return approval_events.notify(request.requested_by, build_decision_event(request, applied=applied))
