"""
Approval request store tests.

Verifies:
- New requests are PENDING with "NEW" for entities not yet created
- Listing is newest first and filters by status
- PENDING -> APPROVED | REJECTED is one-way
"""

import pytest

from erp.models.approvals import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from erp.services import approval_request_service
from erp.validation import ConflictError, NotFoundError, ValidationError


def _create(user, entity_id=None, **kwargs):
    return approval_request_service.create_request(
        entity_type=kwargs.pop("entity_type", "PARTY"),
        entity_id=entity_id,
        requested_by=user.id,
        new_value=kwargs.pop("new_value", {"_action": "create", "name": "Demo"}),
        **kwargs,
    )


class TestCreate:

    def test_defaults(self, db_session, clerk):
        request = _create(clerk, summary="Create Party: Demo")
        db_session.commit()

        assert request.status == STATUS_PENDING
        assert request.entity_id == "NEW"
        assert request.request_type == "MASTER_DATA_CHANGE"
        assert request.requested_at is not None
        assert request.decided_at is None

    def test_entity_id_stored_as_text(self, db_session, clerk):
        request = _create(clerk, entity_id=42)
        assert request.entity_id == "42"

    def test_get_missing_raises(self, db_session):
        with pytest.raises(NotFoundError):
            approval_request_service.get_request(9999)


class TestList:

    def test_newest_first(self, db_session, clerk):
        first = _create(clerk)
        second = _create(clerk)
        db_session.commit()

        rows = approval_request_service.list_requests()
        assert [r.id for r in rows][:2] == [second.id, first.id]

    def test_status_filter(self, db_session, clerk, moderator):
        pending = _create(clerk)
        decided = _create(clerk)
        approval_request_service.mark_decided(decided, status=STATUS_REJECTED, decided_by=moderator.id)
        db_session.commit()

        assert [r.id for r in approval_request_service.list_requests()] == [pending.id]
        assert len(approval_request_service.list_requests(status="ALL")) == 2
        assert [r.id for r in approval_request_service.list_requests(status="rejected")] == [decided.id]

    def test_unknown_status_rejected(self, db_session):
        with pytest.raises(ValidationError):
            approval_request_service.list_requests(status="LOST")


class TestTransitions:

    def test_mark_decided(self, db_session, clerk, moderator):
        request = _create(clerk)
        approval_request_service.mark_decided(
            request, status=STATUS_APPROVED, decided_by=moderator.id, notes="ok",
        )
        db_session.commit()

        assert request.status == STATUS_APPROVED
        assert request.decided_by == moderator.id
        assert request.decision_notes == "ok"
        assert request.decided_at is not None

    def test_terminal_is_final(self, db_session, clerk, moderator):
        request = _create(clerk)
        approval_request_service.mark_decided(request, status=STATUS_APPROVED, decided_by=moderator.id)
        db_session.commit()

        with pytest.raises(ConflictError, match="already approved"):
            approval_request_service.mark_decided(request, status=STATUS_REJECTED, decided_by=moderator.id)
        with pytest.raises(ConflictError):
            approval_request_service.update_new_value(request, {"name": "Other"})

    def test_pending_is_not_a_decision(self, db_session, clerk, moderator):
        request = _create(clerk)
        with pytest.raises(ValidationError):
            approval_request_service.mark_decided(request, status=STATUS_PENDING, decided_by=moderator.id)

    def test_has_pending_for_entity(self, db_session, clerk):
        _create(clerk, entity_type="SKU", entity_id=42, new_value={"_action": "update", "sale_rate": 170})
        db_session.commit()

        assert approval_request_service.has_pending_for_entity("SKU", 42) is True
        assert approval_request_service.has_pending_for_entity("SKU", 43) is False
