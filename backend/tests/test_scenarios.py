"""
End-to-end change-governance flows through the HTTP API.

Verifies:
- An admin's direct party create coerces credit and maps branches in one commit
- A policy-gated account create is queued and writes nothing
- A rejected SKU price change leaves the SKU untouched and notifies the requester
- The single-draft rule survives an existing APPROVED version
- Approving a BOM with unpriced materials changes nothing
- FG uses_sfg toggling creates and then releases the SFG shadow
"""

from conftest import bom_payload
from erp.models import (
    Account, ActivityLog, ApprovalRequest, BomHeader, Item, ItemUsage, Party, PartyBranch, Variant,
)
from erp.models.bom import BOM_STATUS_DRAFT
from erp.services import approval_applier, bom_service, item_service, policy_service
from erp.services.bom_service import DRAFT_EXISTS_MESSAGE, MISSING_RATES_MESSAGE
from erp.services.notification_bus import approval_events


class TestDirectPartyCreate:

    def test_admin_creates_party(self, client, db_session, admin_user, admin_headers, branch, city):
        resp = client.post(
            "/api/master-data/parties",
            json={
                "name": "Demo Traders",
                "party_type": "CUSTOMER",
                "city_id": city.id,
                "credit_limit": 5000,
                "branch_ids": [branch.id],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["queued"] is False
        assert resp.json["row"]["branch_ids"] == [branch.id]

        party = db_session.query(Party).one()
        assert party.credit_allowed is False
        assert float(party.credit_limit) == 0
        assert party.created_by == admin_user.id
        assert db_session.query(PartyBranch).filter_by(party_id=party.id).count() == 1

        log = db_session.query(ActivityLog).filter_by(entity_type="PARTY").one()
        assert log.action == "CREATE"
        assert log.entity_id == str(party.id)
        assert db_session.query(ApprovalRequest).count() == 0

    def test_duplicate_party_name(self, client, db_session, admin_headers):
        body = {"name": "Demo", "party_type": "SUPPLIER"}
        client.post("/api/master-data/parties", json=body, headers=admin_headers)

        resp = client.post("/api/master-data/parties", json={**body, "name": "DEMO"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "DUPLICATE_NAME"


class TestPolicyGatedCreate:

    def test_clerk_account_create_is_queued(self, client, db_session, clerk, clerk_headers, branch, account_group):
        policy_service.set_policy(
            entity_type="SCREEN", entity_key="master_data.accounts", action="create", requires=True,
        )
        db_session.commit()

        resp = client.post(
            "/api/master-data/accounts",
            json={"name": "Cash in hand", "subgroup_id": account_group.id, "branch_ids": [branch.id]},
            headers=clerk_headers,
        )
        assert resp.status_code == 202
        assert resp.json["queued"] is True
        assert resp.json["notice"]["sticky"] is True

        assert db_session.query(Account).count() == 0
        request = db_session.get(ApprovalRequest, resp.json["request_id"])
        assert request.status == "PENDING"
        assert request.entity_type == "ACCOUNT"
        assert request.entity_id == "NEW"
        assert request.requested_by == clerk.id
        assert request.new_value["branch_ids"] == [branch.id]
        assert request.new_value["schema_version"] == 1

        submit = db_session.query(ActivityLog).filter_by(action="SUBMIT").one()
        assert submit.context_json["approval_request_id"] == request.id

    def test_viewer_without_policy_is_denied(self, client, db_session, viewer_headers, account_group):
        resp = client.post(
            "/api/master-data/accounts",
            json={"name": "Bank", "subgroup_id": account_group.id},
            headers=viewer_headers,
        )
        assert resp.status_code == 403
        assert db_session.query(ApprovalRequest).count() == 0


class TestRejectedSkuUpdate:

    def test_reject_keeps_sale_rate(self, client, db_session, clerk, clerk_headers, moderator_headers, fg_item):
        variant_id = approval_applier.apply_change(
            "SKU", "NEW", {"_action": "create", "item_id": fg_item.id, "sale_rate": 150}, actor_user_id=None,
        ).entity_id
        policy_service.set_policy(
            entity_type="SCREEN", entity_key="master_data.products.skus", action="edit", requires=True,
        )
        db_session.commit()

        resp = client.put(f"/api/master-data/skus/{variant_id}", json={"sale_rate": 170}, headers=clerk_headers)
        assert resp.status_code == 202
        request_id = resp.json["request_id"]

        resp = client.post(
            f"/api/administration/approvals/{request_id}/reject",
            json={"notes": "price list not final"},
            headers=moderator_headers,
        )
        assert resp.status_code == 200

        db_session.expire_all()
        assert db_session.get(ApprovalRequest, request_id).status == "REJECTED"
        assert float(db_session.get(Variant, variant_id).sale_rate) == 150

        events = approval_events.pending(clerk.id)
        assert [(e["request_id"], e["status"]) for e in events] == [(request_id, "REJECTED")]
        assert db_session.query(ActivityLog).filter_by(action="REJECT", entity_id=str(variant_id)).count() == 1


class TestBomDraftCollision:

    def test_second_draft_rejected(self, client, db_session, admin_headers, fg_item):
        approved = bom_service.save_bom_draft(bom_payload(fg_item))
        bom_service.approve_bom(approved.id, actor_user_id=None)
        db_session.commit()

        first = client.post("/api/master-data/bom", json=bom_payload(fg_item), headers=admin_headers)
        assert first.status_code == 201
        assert first.json["bom"]["header"]["version_no"] == 2

        second = client.post("/api/master-data/bom", json=bom_payload(fg_item), headers=admin_headers)
        assert second.status_code == 400
        assert second.json["error"] == DRAFT_EXISTS_MESSAGE
        assert db_session.query(BomHeader).count() == 2


class TestBomMissingRates:

    def test_approve_without_rates(self, client, db_session, admin_headers, fg_item, rm_item, production_dept):
        header = bom_service.save_bom_draft(bom_payload(fg_item, rm_item, production_dept))
        db_session.commit()

        resp = client.post(f"/api/master-data/bom/{header.id}/approve", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == MISSING_RATES_MESSAGE

        db_session.expire_all()
        header = db_session.get(BomHeader, header.id)
        assert header.status == BOM_STATUS_DRAFT
        assert header.approved_by is None
        assert header.approved_at is None
        assert db_session.query(ActivityLog).filter_by(entity_type="BOM").count() == 0


class TestSfgShadow:

    def test_uses_sfg_round_trip(self, client, db_session, admin_headers, uom, product_group, product_type):
        resp = client.post(
            "/api/master-data/products/FG",
            json={
                "name": "Oxford",
                "group_id": product_group.id,
                "product_type_id": product_type.id,
                "base_uom_id": uom.id,
                "uses_sfg": True,
                "sfg_part_type": "step",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        fg_id = resp.json["entity_id"]

        sfg = db_session.query(Item).filter_by(item_type="SFG").one()
        assert sfg.code == "oxford_step"
        assert sfg.name == "Oxford - STEP"
        assert sfg.base_uom_id == uom.id
        assert db_session.query(ItemUsage).filter_by(fg_item_id=fg_id, sfg_item_id=sfg.id).count() == 1

        resp = client.put(f"/api/master-data/products/FG/{fg_id}", json={"uses_sfg": False}, headers=admin_headers)
        assert resp.status_code == 200

        db_session.expire_all()
        sfg = db_session.get(Item, sfg.id)
        assert sfg is not None
        assert sfg.is_active is False
        assert db_session.query(ItemUsage).filter_by(fg_item_id=fg_id).count() == 0
        assert db_session.get(Item, fg_id).sfg_part_type is None

    def test_shared_sfg_stays_active(self, db_session, fg_item, uom, product_group, product_type):
        sfg = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None)
        other = Item(
            item_type="FG", code="derby", name="Derby",
            group_id=product_group.id, product_type_id=product_type.id, base_uom_id=uom.id,
        )
        db_session.add(other)
        db_session.flush()
        db_session.add(ItemUsage(fg_item_id=other.id, sfg_item_id=sfg.id))
        db_session.flush()

        assert item_service.release_sfg_shadows(fg_item, None) == []
        assert db_session.get(Item, sfg.id).is_active is True
