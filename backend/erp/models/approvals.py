from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_CANCELLED = "CANCELLED"
REQUEST_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED)
TERMINAL_STATUSES = (STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED)

# Stamped on every stored new_value; the applier strips it before dispatch
PAYLOAD_SCHEMA_VERSION = 1

POLICY_ACTIONS = ("create", "edit", "delete", "hard_delete")


class ApprovalPolicy(db.Model):
    """
    Forces the approval path for one (entity_type, entity_key, action).

    A missing row means "no approval required".
    """
    __tablename__ = "approval_policy"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "entity_key", "action", name="uq_approval_policy_triple"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_key = db.Column(db.String(128), nullable=False)
    action = db.Column(db.String(16), nullable=False)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)

    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "action": self.action,
            "requires_approval": self.requires_approval,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }


class ApprovalRequest(db.Model):
    """
    Durable queued change.

    INVARIANTS:
    - PENDING has no decision fields.
    - APPROVED / REJECTED are terminal; only PENDING rows may be edited.
    - old_value / new_value are opaque here; new_value._action selects the applier branch.
    """
    __tablename__ = "approval_request"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_approval_request_status",
        ),
        db.CheckConstraint(
            "decided_by IS NULL OR decided_by <> requested_by",
            name="ck_approval_request_not_self_decided",
        ),
        db.Index("ix_approval_request_status_requested", "status", "requested_at", "id"),
        db.Index("ix_approval_request_entity", "entity_type", "entity_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    request_type = db.Column(db.String(32), nullable=False, default="MASTER_DATA_CHANGE")
    entity_type = db.Column(db.String(32), nullable=False)
    entity_key = db.Column(db.String(128), nullable=True)
    entity_id = db.Column(db.String(32), nullable=False)
    summary = db.Column(db.Text, nullable=True)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    decided_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_notes = db.Column(db.Text, nullable=True)

    requester = db.relationship("User", foreign_keys=[requested_by])
    decider = db.relationship("User", foreign_keys=[decided_by])

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "request_type": self.request_type,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "entity_id": self.entity_id,
            "summary": self.summary,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "status": self.status,
            "requested_by": self.requested_by,
            "requested_by_name": self.requester.username if self.requester else None,
            "requested_at": to_utc_z(self.requested_at),
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at),
            "decision_notes": self.decision_notes,
        }
