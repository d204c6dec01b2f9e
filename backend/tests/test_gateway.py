"""
Approval gateway tests.

Verifies the decision table:
- admin                      -> apply
- allowed, no policy         -> apply
- allowed, policy            -> enqueue
- not allowed, policy        -> enqueue
- not allowed, no policy     -> PermissionDeniedError
and that an enqueue writes exactly one request, stamped with schema_version,
plus its SUBMIT activity row.
"""

import pytest

from erp.models import ActivityLog, ApprovalRequest
from erp.services import approval_gateway, permission_service, policy_service
from erp.services.permission_service import PermissionDeniedError


def _route(access, action="create", scope_key="master_data.accounts", entity_id="NEW"):
    return approval_gateway.handle_screen_approval(
        access=access,
        scope_key=scope_key,
        action=action,
        entity_type="ACCOUNT",
        entity_id=entity_id,
        summary="Create Account: Cash in hand",
        old_value=None,
        new_value={"_action": action, "name": "Cash in hand"},
        branch_id=None,
    )


def _require(scope_key="master_data.accounts", action="create"):
    policy_service.set_policy(entity_type="SCREEN", entity_key=scope_key, action=action, requires=True)


# =============================================================================
# DECISION TABLE
# =============================================================================


class TestDecisionTable:

    def test_admin_applies_even_with_policy(self, db_session, admin_user):
        _require()
        db_session.commit()

        decision = _route(permission_service.load_user_access(admin_user))
        assert decision.queued is False
        assert decision.reason == "admin"
        assert db_session.query(ApprovalRequest).count() == 0

    def test_permitted_without_policy_applies(self, db_session, clerk):
        decision = _route(permission_service.load_user_access(clerk))
        assert decision.queued is False
        assert decision.reason == "permitted"
        assert decision.request_id is None

    def test_permitted_with_policy_enqueues(self, db_session, clerk):
        _require()
        db_session.commit()

        decision = _route(permission_service.load_user_access(clerk))
        db_session.commit()

        assert decision.queued is True
        assert decision.reason == "policy_requires_approval"
        assert decision.notice["sticky"] is True
        request = db_session.get(ApprovalRequest, decision.request_id)
        assert request.status == "PENDING"
        assert request.entity_id == "NEW"
        assert request.entity_key == "master_data.accounts"

    def test_not_permitted_with_policy_reroutes(self, db_session, viewer):
        _require()
        db_session.commit()

        decision = _route(permission_service.load_user_access(viewer))
        assert decision.queued is True
        assert decision.reason == "permission_reroute"

    def test_not_permitted_without_policy_denied(self, db_session, viewer):
        with pytest.raises(PermissionDeniedError):
            _route(permission_service.load_user_access(viewer))
        assert db_session.query(ApprovalRequest).count() == 0

    def test_toggle_checks_delete_policy(self, db_session, clerk):
        _require(action="delete")
        db_session.commit()

        decision = _route(permission_service.load_user_access(clerk), action="toggle", entity_id=3)
        assert decision.queued is True

    def test_update_checks_edit_policy(self, db_session, clerk):
        _require(action="edit")
        db_session.commit()

        decision = _route(permission_service.load_user_access(clerk), action="update", entity_id=3)
        assert decision.queued is True
        assert decision.request.entity_id == "3"


class TestEnqueue:

    def test_enqueue_writes_submit_activity(self, db_session, clerk):
        _require()
        db_session.commit()

        decision = _route(permission_service.load_user_access(clerk))
        db_session.commit()

        rows = db_session.query(ActivityLog).filter_by(action="SUBMIT").all()
        assert len(rows) == 1
        assert rows[0].entity_type == "ACCOUNT"
        assert rows[0].context_json["approval_request_id"] == decision.request_id
        assert rows[0].context_json["reason"] == "policy_requires_approval"

    def test_decision_to_dict(self, db_session, clerk):
        _require()
        db_session.commit()

        body = _route(permission_service.load_user_access(clerk)).to_dict()
        assert body["queued"] is True
        assert body["request_id"]
        assert "message" in body["notice"]

    def test_stored_payload_carries_schema_version(self, db_session, clerk):
        _require()
        db_session.commit()

        decision = _route(permission_service.load_user_access(clerk))
        db_session.commit()

        stored = db_session.get(ApprovalRequest, decision.request_id)
        assert stored.new_value == {"schema_version": 1, "_action": "create", "name": "Cash in hand"}

    def test_bom_schema_version_is_kept(self, db_session, clerk):
        _require("master_data.bom")
        db_session.commit()

        decision = approval_gateway.enqueue_change(
            access=permission_service.load_user_access(clerk),
            scope_key="master_data.bom",
            action="create",
            entity_type="BOM",
            entity_id="NEW",
            summary="Create BOM draft",
            old_value=None,
            new_value={"schema_version": 1, "_action": "create", "bom_id": None, "input": {}},
            reason="policy_requires_approval",
        )
        db_session.commit()

        stored = db_session.get(ApprovalRequest, decision.request_id)
        assert stored.new_value["schema_version"] == 1
        assert stored.new_value["bom_id"] is None
