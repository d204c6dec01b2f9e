"""
BOM write path tests.

Verifies:
- normalize_bom_input collects every problem into one ValidationError
- At most one DRAFT per (item, level), including the index-backed race path
- Version numbering for new drafts and cloned versions
- Change-log rows per section, with key churn when a dimension is filled in
- Approve gates: missing rates or an SFG part without an approved BOM leave the header untouched; direct vs queued approve
- Only DRAFT headers are deleted
"""

import pytest

from conftest import bom_payload
from erp.models import ApprovalRequest, BomChangeLog, BomHeader, Color, Department, Size, Sku, Variant
from erp.models.bom import BOM_STATUS_APPROVED, BOM_STATUS_DRAFT, BOM_STATUS_PENDING
from erp.services import bom_service, item_service
from erp.services.bom_change_log import build_change_rows, section_key
from erp.services.bom_service import DRAFT_EXISTS_MESSAGE, MISSING_RATES_MESSAGE, SFG_BOM_MISSING_MESSAGE
from erp.validation import ConflictError, ValidationError


def _messages(excinfo):
    return [e["message"] for e in excinfo.value.errors]


# =============================================================================
# NORMALIZATION
# =============================================================================


class TestNormalize:

    def test_header_defaults_uom_from_item(self, db_session, fg_item):
        normalized = bom_service.normalize_bom_input(bom_payload(fg_item))
        assert normalized["header"]["output_uom_id"] == fg_item.base_uom_id
        assert normalized["header"]["level"] == "FINISHED"

    def test_errors_collected(self, db_session, fg_item):
        payload = bom_payload(fg_item, level="SEMI_FINISHED")
        payload["header"]["output_qty"] = 0

        with pytest.raises(ValidationError) as excinfo:
            bom_service.normalize_bom_input(payload)
        messages = _messages(excinfo)
        assert "Level must match item type." in messages
        assert "Output quantity must be greater than zero." in messages

    def test_rm_line_must_reference_rm(self, db_session, fg_item, production_dept):
        with pytest.raises(ValidationError) as excinfo:
            bom_service.normalize_bom_input(bom_payload(fg_item, fg_item, production_dept))
        assert _messages(excinfo) == ["Raw material line must reference an RM item #1"]

    def test_rm_line_takes_item_uom(self, db_session, fg_item, rm_item, production_dept):
        normalized = bom_service.normalize_bom_input(bom_payload(fg_item, rm_item, production_dept))
        assert normalized["rm_lines"][0]["uom_id"] == rm_item.base_uom_id

    def test_non_production_department_rejected(self, db_session, fg_item, rm_item):
        office = Department(name="Office", is_production=False)
        db_session.add(office)
        db_session.commit()

        with pytest.raises(ValidationError) as excinfo:
            bom_service.normalize_bom_input(bom_payload(fg_item, rm_item, office))
        assert _messages(excinfo) == ["Department must be an active production department #1"]

    def test_labour_department_must_match(self, db_session, fg_item, labour):
        lasting = Department(name="Lasting", is_production=True)
        db_session.add(lasting)
        db_session.commit()
        payload = bom_payload(fg_item)
        payload["labour_lines"] = [{"dept_id": lasting.id, "labour_id": labour.id, "rate_value": 15}]

        with pytest.raises(ValidationError) as excinfo:
            bom_service.normalize_bom_input(payload)
        assert _messages(excinfo) == ["Selected department is not allowed for this labour #1"]

    def test_labour_all_scope_clears_size(self, db_session, fg_item, labour):
        payload = bom_payload(fg_item)
        payload["labour_lines"] = [{
            "dept_id": labour.dept_id, "labour_id": labour.id, "rate_value": 15, "size_id": 4,
        }]
        normalized = bom_service.normalize_bom_input(payload)
        line = normalized["labour_lines"][0]
        assert line["size_scope"] == "ALL"
        assert line["size_id"] is None
        assert line["rate_type"] == "PER_PAIR"

    @pytest.mark.parametrize(
        "new_value,expected",
        [
            ({"uom_id": 1}, "Invalid value (qty) #1"),
            ({"qty": 2}, "Invalid value (uom) #1"),
            ("not json", "Rule value must be a valid JSON object #1"),
        ],
    )
    def test_adjust_qty_rule_values(self, db_session, fg_item, new_value, expected):
        payload = bom_payload(fg_item)
        payload["variant_rules"] = [{"action_type": "ADJUST_QTY", "new_value": new_value}]

        with pytest.raises(ValidationError) as excinfo:
            bom_service.normalize_bom_input(payload)
        assert expected in _messages(excinfo)

    def test_other_rule_actions_need_no_qty(self, db_session, fg_item):
        payload = bom_payload(fg_item)
        payload["variant_rules"] = [{"action_type": "CHANGE_LOSS", "new_value": {"normal_loss_pct": 3}}]
        normalized = bom_service.normalize_bom_input(payload)
        assert normalized["variant_rules"][0]["action_type"] == "CHANGE_LOSS"


# =============================================================================
# DRAFTS / VERSIONS
# =============================================================================


class TestDrafts:

    def test_single_draft_per_item_level(self, db_session, fg_item):
        bom_service.save_bom_draft(bom_payload(fg_item))
        db_session.commit()

        with pytest.raises(ValidationError, match=DRAFT_EXISTS_MESSAGE):
            bom_service.save_bom_draft(bom_payload(fg_item))

    def test_index_violation_translated(self, db_session, fg_item):
        bom_service.save_bom_draft(bom_payload(fg_item))
        db_session.commit()

        db_session.add(BomHeader(
            bom_no="BOM-RACE", item_id=fg_item.id, level="FINISHED", output_qty=1,
            output_uom_id=fg_item.base_uom_id, status=BOM_STATUS_DRAFT, version_no=2,
        ))
        with pytest.raises(ValidationError, match=DRAFT_EXISTS_MESSAGE):
            bom_service._flush_header()
        db_session.rollback()

    def test_version_numbers(self, db_session, fg_item):
        first = bom_service.save_bom_draft(bom_payload(fg_item))
        bom_service.approve_bom(first.id, actor_user_id=None)
        second = bom_service.create_version_from(first.id, actor_user_id=None)
        db_session.commit()

        assert (first.version_no, second.version_no) == (1, 2)
        assert second.status == BOM_STATUS_DRAFT

        bom_service.approve_bom(second.id, actor_user_id=None)
        third = bom_service.save_bom_draft(bom_payload(fg_item))
        assert third.version_no == 3

    def test_version_copies_lines(self, db_session, fg_item, rm_item, rm_rate, production_dept):
        source = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept, qty=3))
        bom_service.approve_bom(source.id, actor_user_id=None)

        clone = bom_service.create_version_from(source.id, actor_user_id=None)
        assert [float(l.qty) for l in clone.rm_lines] == [3.0]
        assert clone.rm_lines[0].id != source.rm_lines[0].id

    def test_version_requires_approved_source(self, db_session, fg_item):
        draft = bom_service.save_bom_draft(bom_payload(fg_item))
        with pytest.raises(ConflictError):
            bom_service.create_version_from(draft.id, actor_user_id=None)

    def test_only_drafts_edited(self, db_session, fg_item):
        header = bom_service.save_bom_draft(bom_payload(fg_item))
        bom_service.approve_bom(header.id, actor_user_id=None)

        with pytest.raises(ConflictError, match="Only draft BOM can be edited."):
            bom_service.save_bom_draft(bom_payload(fg_item), bom_id=header.id)

    def test_only_drafts_deleted(self, db_session, fg_item):
        header = bom_service.save_bom_draft(bom_payload(fg_item))
        bom_service.approve_bom(header.id, actor_user_id=None)

        with pytest.raises(ConflictError, match="Only draft BOM can be deleted."):
            bom_service.delete_bom_draft(header.id)


# =============================================================================
# CHANGE LOG
# =============================================================================


class TestChangeLog:

    def test_new_draft_logs_header_and_lines(self, db_session, fg_item, rm_item, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept))

        rows = db_session.query(BomChangeLog).filter_by(bom_id=header.id).all()
        assert {(r.section, r.change_type) for r in rows} == {("header", "ADDED"), ("rm_lines", "ADDED")}

    def test_qty_change_is_update(self, db_session, fg_item, rm_item, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept, qty=2))
        bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept, qty=5), bom_id=header.id)

        updated = db_session.query(BomChangeLog).filter_by(bom_id=header.id, change_type="UPDATED").all()
        assert [(r.section, r.entity_key) for r in updated] == [
            ("rm_lines", f"{rm_item.id}:{production_dept.id}:0:0"),
        ]

    def test_filling_a_dimension_churns_key(self, db_session, fg_item, rm_item, production_dept):
        color = Color(name="Brown")
        db_session.add(color)
        db_session.commit()
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept))
        first_ids = {r.id for r in db_session.query(BomChangeLog).filter_by(bom_id=header.id)}

        payload = bom_payload(fg_item, rm_item, production_dept)
        payload["rm_lines"][0]["color_id"] = color.id
        bom_service.save_bom_draft(payload, bom_id=header.id)

        rows = [r for r in db_session.query(BomChangeLog).filter_by(bom_id=header.id) if r.id not in first_ids]
        assert sorted(r.change_type for r in rows) == ["ADDED", "REMOVED"]

    def test_section_key_fallbacks(self):
        assert section_key("rm_lines", {"rm_item_id": 7, "dept_id": 2}) == "7:2:0:0"
        assert section_key("labour_lines", {"dept_id": 2, "labour_id": 3}) == "2:3:ALL:0:PER_PAIR"

    def test_unchanged_rows_skipped(self):
        row = {"rm_item_id": 7, "dept_id": 2, "qty": 1}
        assert build_change_rows("rm_lines", [row], [dict(row)]) == []
        assert build_change_rows("unknown", [row], []) == []


# =============================================================================
# APPROVE
# =============================================================================


class TestApprove:

    def test_missing_rates_leave_header_untouched(self, db_session, fg_item, rm_item, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept))
        db_session.commit()

        with pytest.raises(ValidationError, match=MISSING_RATES_MESSAGE) as excinfo:
            bom_service.approve_bom(header.id, actor_user_id=None)
        assert excinfo.value.errors[0]["message"] == "Missing active purchase rates for: Leather"
        db_session.rollback()

        header = db_session.get(BomHeader, header.id)
        assert header.status == BOM_STATUS_DRAFT
        assert header.approved_by is None

    def test_snapshot_mismatch(self, db_session, fg_item, rm_item, rm_rate, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept, qty=2))
        stale = bom_service.bom_snapshot(header)
        bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept, qty=4), bom_id=header.id)

        with pytest.raises(bom_service.BomSnapshotMismatchError):
            bom_service.approve_bom(header.id, actor_user_id=None, expected_snapshot=stale)

    def test_snapshot_ignores_line_ids_and_status(self, db_session, fg_item, rm_item, rm_rate, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept))
        snapshot = bom_service.bom_snapshot(header)
        bom_service.set_bom_pending(header.id)

        approved = bom_service.approve_bom(header.id, actor_user_id=None, expected_snapshot=snapshot)
        assert approved.status == BOM_STATUS_APPROVED

    def test_sfg_line_needs_approved_sfg_bom(self, db_session, fg_item):
        sfg = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None)
        size = Size(name="7")
        db_session.add(size)
        db_session.flush()
        variant = Variant(item_id=sfg.id, size_id=size.id, sale_rate=0)
        db_session.add(variant)
        db_session.flush()
        sku = Sku(variant_id=variant.id, sku_code="OXFORD UPPER 7", is_active=True)
        db_session.add(sku)
        db_session.commit()

        payload = bom_payload(fg_item)
        payload["sfg_lines"].append({"fg_size_id": size.id, "sfg_sku_id": sku.id, "required_qty": 1})
        header = bom_service.save_bom_draft(payload)
        db_session.commit()

        with pytest.raises(ValidationError, match=SFG_BOM_MISSING_MESSAGE) as excinfo:
            bom_service.approve_bom(header.id, actor_user_id=None)
        assert _messages(excinfo) == [f"{SFG_BOM_MISSING_MESSAGE} #1"]
        db_session.rollback()
        assert db_session.get(BomHeader, header.id).status == BOM_STATUS_DRAFT

        sfg_bom = bom_service.save_bom_draft(bom_payload(sfg, level="SEMI_FINISHED"))
        bom_service.approve_bom(sfg_bom.id, actor_user_id=None)
        db_session.commit()

        approved = bom_service.approve_bom(header.id, actor_user_id=None)
        assert approved.status == BOM_STATUS_APPROVED

    def test_admin_approves_directly(self, client, db_session, fg_item, admin_user, admin_headers):
        header = bom_service.save_bom_draft(bom_payload(fg_item), actor_user_id=admin_user.id)
        db_session.commit()

        resp = client.post(f"/api/master-data/bom/{header.id}/approve", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["queued"] is False
        assert resp.json["bom"]["header"]["status"] == BOM_STATUS_APPROVED

        header = db_session.get(BomHeader, header.id)
        assert header.approved_by == admin_user.id
        assert header.approved_at is not None

    def test_clerk_sends_for_approval(self, client, db_session, fg_item, clerk, clerk_headers, moderator_headers):
        resp = client.post("/api/master-data/bom", json=bom_payload(fg_item), headers=clerk_headers)
        assert resp.status_code == 201
        bom_id = resp.json["entity_id"]

        resp = client.post(f"/api/master-data/bom/{bom_id}/approve", headers=clerk_headers)
        assert resp.status_code == 202
        assert db_session.get(BomHeader, bom_id).status == BOM_STATUS_PENDING

        request = db_session.query(ApprovalRequest).filter_by(entity_type="BOM", entity_id=str(bom_id)).one()
        assert request.new_value["_action"] == "approve_draft"

        resp = client.put(f"/api/master-data/bom/{bom_id}", json=bom_payload(fg_item), headers=clerk_headers)
        assert resp.status_code == 409

        resp = client.post(f"/api/administration/approvals/{request.id}/reject", headers=moderator_headers)
        assert resp.status_code == 200
        db_session.expire_all()
        assert db_session.get(BomHeader, bom_id).status == BOM_STATUS_DRAFT

    def test_moderator_approves_queued_draft(self, client, db_session, fg_item, clerk, moderator, clerk_headers,
                                            moderator_headers):
        bom_id = client.post("/api/master-data/bom", json=bom_payload(fg_item), headers=clerk_headers).json["entity_id"]
        client.post(f"/api/master-data/bom/{bom_id}/approve", headers=clerk_headers)
        request = db_session.query(ApprovalRequest).filter_by(entity_type="BOM").one()

        resp = client.post(f"/api/administration/approvals/{request.id}/approve", headers=moderator_headers)
        assert resp.status_code == 200

        db_session.expire_all()
        header = db_session.get(BomHeader, bom_id)
        assert header.status == BOM_STATUS_APPROVED
        assert header.approved_by == moderator.id

    def test_new_version_route(self, client, db_session, fg_item, admin_headers):
        header = bom_service.save_bom_draft(bom_payload(fg_item))
        bom_service.approve_bom(header.id, actor_user_id=None)
        db_session.commit()

        resp = client.post(f"/api/master-data/bom/{header.id}/new-version", headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["bom"]["header"]["version_no"] == 2
        assert resp.json["bom"]["header"]["status"] == BOM_STATUS_DRAFT

    def test_delete_route_removes_draft(self, client, db_session, fg_item, admin_headers):
        header = bom_service.save_bom_draft(bom_payload(fg_item))
        db_session.commit()

        resp = client.delete(f"/api/master-data/bom/{header.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert db_session.query(BomHeader).count() == 0
