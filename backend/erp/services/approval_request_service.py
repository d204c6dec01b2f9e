# Overview: Persistence of approval requests; one-way PENDING -> APPROVED | REJECTED transitions.

from __future__ import annotations

from ..extensions import db
from ..models import ApprovalRequest
from ..models.approvals import REQUEST_STATUSES, STATUS_PENDING, TERMINAL_STATUSES
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update


def create_request(
    *,
    entity_type: str,
    entity_id,
    requested_by: int,
    new_value: dict | None,
    old_value: dict | None = None,
    summary: str | None = None,
    branch_id: int | None = None,
    entity_key: str | None = None,
) -> ApprovalRequest:
    """Persist a PENDING request. Snapshots are stored as given. Caller commits."""
    request = ApprovalRequest(
        branch_id=branch_id,
        entity_type=entity_type,
        entity_key=entity_key,
        entity_id=str(entity_id if entity_id not in (None, "") else "NEW"),
        summary=summary,
        old_value=old_value,
        new_value=new_value,
        status=STATUS_PENDING,
        requested_by=requested_by,
        requested_at=utcnow(),
    )
    db.session.add(request)
    db.session.flush()
    return request


def get_request(request_id: int, *, lock: bool = False) -> ApprovalRequest:
    query = db.session.query(ApprovalRequest).filter(ApprovalRequest.id == request_id)
    if lock:
        query = lock_for_update(query)
    request = query.first()
    if request is None:
        raise NotFoundError("Approval request not found")
    return request


def list_requests(*, status: str | None = STATUS_PENDING, entity_type: str | None = None,
                  requested_by: int | None = None, limit: int | None = None) -> list[ApprovalRequest]:
    """Newest first: (requested_at desc, id desc). status None or "ALL" lists every row."""
    query = db.session.query(ApprovalRequest)
    if status and status.upper() != "ALL":
        status = status.upper()
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")
        query = query.filter(ApprovalRequest.status == status)
    if entity_type:
        query = query.filter(ApprovalRequest.entity_type == entity_type)
    if requested_by:
        query = query.filter(ApprovalRequest.requested_by == requested_by)
    query = query.order_by(ApprovalRequest.requested_at.desc(), ApprovalRequest.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def ensure_pending(request: ApprovalRequest) -> None:
    if not request.is_pending:
        raise ConflictError(f"Request already {request.status.lower()}")


def mark_decided(request: ApprovalRequest, *, status: str, decided_by: int, notes: str | None = None) -> ApprovalRequest:
    ensure_pending(request)
    if status not in TERMINAL_STATUSES:
        raise ValidationError(f"Invalid decision status: {status}", field="status")
    request.status = status
    request.decided_by = decided_by
    request.decided_at = utcnow()
    request.decision_notes = notes or None
    db.session.flush()
    return request


def update_new_value(request: ApprovalRequest, new_value: dict) -> ApprovalRequest:
    ensure_pending(request)
    request.new_value = new_value
    db.session.flush()
    return request


def has_pending_for_entity(entity_type: str, entity_id) -> bool:
    return (
        db.session.query(ApprovalRequest.id)
        .filter(
            ApprovalRequest.entity_type == entity_type,
            ApprovalRequest.entity_id == str(entity_id),
            ApprovalRequest.status == STATUS_PENDING,
        )
        .first()
        is not None
    )
