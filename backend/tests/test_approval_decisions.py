"""
Approval decision tests (approve / reject / preview).

Verifies:
- Approve flips the request to APPROVED and replays the payload in one commit
- A failing apply rolls back both the decision and the write
- Reject leaves the entity untouched and notifies the requester
- A moderator never decides their own request
- Deciding a terminal request is a 409
- Preview resolves referenced ids to names and lists changed fields
"""

from erp.models import ActivityLog, ApprovalRequest, Party, PartyBranch
from erp.services import approval_decision_service, approval_request_service
from erp.services.notification_bus import approval_events


def _pending_party(db_session, requester, branch, city, **overrides):
    new_value = {
        "_action": "create",
        "name": "Demo",
        "party_type": "CUSTOMER",
        "city_id": city.id,
        "branch_ids": [branch.id],
        "credit_allowed": False,
        "credit_limit": 0,
        **overrides,
    }
    request = approval_request_service.create_request(
        entity_type="PARTY",
        entity_id="NEW",
        entity_key="master_data.parties",
        requested_by=requester.id,
        new_value=new_value,
        summary="Create Party: Demo",
    )
    db_session.commit()
    return request


class TestApprove:

    def test_approve_applies_change(self, client, db_session, clerk, moderator, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)

        resp = client.post(
            f"/api/administration/approvals/{request.id}/approve",
            json={"notes": "looks fine"},
            headers=moderator_headers,
        )
        assert resp.status_code == 200
        assert resp.json["request"]["status"] == "APPROVED"
        assert resp.json["result"]["applied"] is True

        party = db_session.query(Party).filter_by(name="Demo").one()
        assert resp.json["result"]["entity_id"] == party.id
        assert party.created_by == moderator.id
        assert db_session.query(PartyBranch).filter_by(party_id=party.id, branch_id=branch.id).count() == 1

        log = db_session.query(ActivityLog).filter_by(action="APPROVE").one()
        assert log.entity_id == str(party.id)
        assert log.context_json["decision_notes"] == "looks fine"

    def test_requester_is_notified(self, client, db_session, clerk, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)
        client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)

        events = approval_events.pending(clerk.id)
        assert len(events) == 1
        assert events[0]["request_id"] == request.id
        assert events[0]["status"] == "APPROVED"
        assert events[0]["applied"] is True

    def test_second_approve_is_conflict(self, client, db_session, clerk, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)
        first = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)
        second = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)

        assert first.status_code == 200
        assert second.status_code == 409
        assert db_session.query(Party).count() == 1

    def test_failed_apply_rolls_back_decision(self, client, db_session, clerk, branch, city, moderator_headers):
        existing = Party(code="demo", name="Demo", party_type="CUSTOMER")
        db_session.add(existing)
        db_session.commit()
        request = _pending_party(db_session, clerk, branch, city, code="demo_2")

        resp = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)
        assert resp.status_code in (400, 409)

        db_session.expire_all()
        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db_session.query(Party).count() == 1

    def test_self_decision_forbidden(self, client, db_session, moderator, branch, city, moderator_headers):
        request = _pending_party(db_session, moderator, branch, city)

        resp = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)
        assert resp.status_code == 403
        assert resp.json["message"] == "approval_self_decision_not_allowed"
        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"

    def test_unknown_request_is_404(self, client, moderator_headers):
        resp = client.post("/api/administration/approvals/999/approve", headers=moderator_headers)
        assert resp.status_code == 404


class TestReject:

    def test_reject_leaves_entity_untouched(self, client, db_session, clerk, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)

        resp = client.post(
            f"/api/administration/approvals/{request.id}/reject",
            json={"notes": "duplicate"},
            headers=moderator_headers,
        )
        assert resp.status_code == 200
        assert resp.json["request"]["status"] == "REJECTED"
        assert resp.json["request"]["decision_notes"] == "duplicate"
        assert db_session.query(Party).count() == 0
        assert db_session.query(ActivityLog).filter_by(action="REJECT").count() == 1

    def test_reject_then_approve_is_conflict(self, client, db_session, clerk, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)
        client.post(f"/api/administration/approvals/{request.id}/reject", headers=moderator_headers)

        resp = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)
        assert resp.status_code == 409


class TestPreviewAndList:

    def test_preview_adds_names(self, db_session, clerk, branch, city):
        request = _pending_party(db_session, clerk, branch, city)

        preview = approval_decision_service.preview_request(request.id)
        assert preview["action"] == "create"
        assert preview["new_value"]["city_id_name"] == "Lahore"
        assert preview["new_value"]["branch_ids_name"] == ["Main Branch"]
        assert "name" in {c["field"] for c in preview["changes"]}
        assert "branch_ids" not in {c["field"] for c in preview["changes"]}

    def test_update_preview_lists_submitted_fields_only(self, db_session, clerk):
        request = approval_request_service.create_request(
            entity_type="PARTY",
            entity_id="5",
            requested_by=clerk.id,
            old_value={"id": 5, "name": "Demo", "party_type": "CUSTOMER", "phone1": "0300"},
            new_value={"_action": "update", "phone1": "0311"},
            summary="Update Party: Demo",
        )
        db_session.commit()

        preview = approval_decision_service.preview_request(request.id)
        assert preview["action"] == "update"
        assert preview["changes"] == [{"field": "phone1", "old_value": "0300", "new_value": "0311"}]

    def test_list_route(self, client, db_session, clerk, branch, city, moderator_headers):
        request = _pending_party(db_session, clerk, branch, city)

        resp = client.get("/api/administration/approvals", headers=moderator_headers)
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json["requests"]] == [request.id]
