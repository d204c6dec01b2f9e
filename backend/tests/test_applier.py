"""
Applier and per-entity write routine tests.

Verifies:
- Basic info: create / update / toggle / delete, duplicate names, item_types maps
- Parties: credit_limit forced to 0 without credit, patches keep credit fields
- Accounts: branch maps replaced wholesale and idempotent
- Items: slug codes, RM rates
- SFG shadows: FG toggle cascades, FG delete keeps shared SFGs, extra links dropped, usage replace idempotent
- SKUs: derived codes unique across all SKUs; update touches sale_rate only
- Unknown entity types never "succeed"
"""

import pytest

from erp.models import (
    Account, AccountBranch, Color, Grade, Item, ItemUsage, Party, RmPurchaseRate, Size, SizeItemType, Sku, Variant,
)
from erp.services import approval_applier, item_service, master_data_service
from erp.services.master_data_service import get_basic_info_type
from erp.validation import DuplicateError, NotFoundError, ValidationError


def _apply(entity_type, entity_id, new_value, actor=None):
    return approval_applier.apply_change(entity_type, entity_id, new_value, actor_user_id=actor)


# =============================================================================
# DISPATCH
# =============================================================================


class TestDispatch:

    def test_unknown_entity_type(self, db_session):
        with pytest.raises(ValidationError, match="Unsupported entity type"):
            _apply("SPACESHIP", "NEW", {"_action": "create"})

    def test_unknown_action(self, db_session):
        with pytest.raises(ValidationError, match="Unsupported change action"):
            _apply("COLOR", "NEW", {"_action": "explode", "name": "Red"})

    def test_schema_version_is_ignored(self, db_session):
        result = _apply("COLOR", "NEW", {"schema_version": 1, "_action": "create", "name": "Red"})
        assert result.applied is True
        assert db_session.get(Color, result.entity_id).name == "Red"


# =============================================================================
# BASIC INFO
# =============================================================================


class TestBasicInfo:

    def test_color_duplicate_is_case_insensitive(self, db_session):
        _apply("COLOR", "NEW", {"_action": "create", "name": "Black"})
        with pytest.raises(DuplicateError) as excinfo:
            _apply("COLOR", "NEW", {"_action": "create", "name": "BLACK"})
        assert excinfo.value.code == "DUPLICATE_NAME"

    def test_size_duplicate_is_exact(self, db_session):
        _apply("SIZE", "NEW", {"_action": "create", "name": "7", "item_types": ["FG"]})
        with pytest.raises(DuplicateError):
            _apply("SIZE", "NEW", {"_action": "create", "name": "7"})

    def test_item_types_replaced_wholesale(self, db_session):
        size_id = _apply("SIZE", "NEW", {"_action": "create", "name": "8", "item_types": ["FG", "SFG"]}).entity_id
        _apply("SIZE", size_id, {"_action": "update", "item_types": ["RM"]})
        _apply("SIZE", size_id, {"_action": "update", "item_types": ["RM"]})

        rows = db_session.query(SizeItemType.item_type).filter_by(size_id=size_id).all()
        assert [r[0] for r in rows] == ["RM"]

    def test_item_types_kept_when_omitted(self, db_session):
        size_id = _apply("SIZE", "NEW", {"_action": "create", "name": "9", "item_types": ["FG"]}).entity_id
        _apply("SIZE", size_id, {"_action": "update", "name_ur": "nau"})

        assert db_session.query(SizeItemType).filter_by(size_id=size_id).count() == 1

    def test_toggle_round_trip(self, db_session):
        grade_id = _apply("GRADE", "NEW", {"_action": "create", "name": "A"}).entity_id
        _apply("GRADE", grade_id, {"_action": "toggle", "is_active": False})
        assert db_session.get(Grade, grade_id).is_active is False
        _apply("GRADE", grade_id, {"_action": "toggle", "is_active": True})
        assert db_session.get(Grade, grade_id).is_active is True

    def test_delete(self, db_session):
        size_id = _apply("SIZE", "NEW", {"_action": "create", "name": "10", "item_types": ["FG"]}).entity_id
        assert _apply("SIZE", size_id, None).entity_id is None
        assert db_session.get(Size, size_id) is None
        assert db_session.query(SizeItemType).filter_by(size_id=size_id).count() == 0

    def test_delete_missing_row(self, db_session):
        with pytest.raises(NotFoundError):
            _apply("GRADE", 404, None)

    def test_normalize_generates_code(self, db_session):
        info = get_basic_info_type("units")
        values = master_data_service.normalize_basic_info_input(info, {"name": "Square Feet"})
        assert values["code"] == "square_feet"

    def test_normalize_rejects_unknown_field(self, db_session):
        info = get_basic_info_type("colors")
        with pytest.raises(ValidationError):
            master_data_service.normalize_basic_info_input(info, {"name": "Red", "is_active": False})


# =============================================================================
# ACCOUNTS / PARTIES
# =============================================================================


class TestParties:

    def test_credit_limit_zero_without_credit(self, db_session):
        values = master_data_service.normalize_party_input({
            "name": "Demo", "party_type": "CUSTOMER", "credit_limit": 5000,
        })
        assert values["credit_allowed"] is False
        assert values["credit_limit"] == 0

    def test_credit_limit_kept_with_credit(self, db_session):
        values = master_data_service.normalize_party_input({
            "name": "Demo", "party_type": "CUSTOMER", "credit_allowed": True, "credit_limit": 5000,
        })
        assert values["credit_limit"] == 5000

    def test_update_without_credit_fields_keeps_them(self, db_session):
        party_id = _apply("PARTY", "NEW", {
            "_action": "create", "code": "demo", "name": "Demo", "party_type": "CUSTOMER",
            "credit_allowed": True, "credit_limit": 5000,
        }).entity_id
        party = db_session.get(Party, party_id)

        patch = master_data_service.normalize_party_input({"phone1": "0300-1111111"}, existing=party)
        assert "credit_limit" not in patch
        _apply("PARTY", party_id, {"_action": "update", **patch})

        party = db_session.get(Party, party_id)
        assert party.credit_allowed is True
        assert float(party.credit_limit) == 5000
        assert party.phone1 == "0300-1111111"

    def test_disabling_credit_zeroes_limit(self, db_session):
        party_id = _apply("PARTY", "NEW", {
            "_action": "create", "code": "demo", "name": "Demo", "party_type": "CUSTOMER",
            "credit_allowed": True, "credit_limit": 5000,
        }).entity_id
        _apply("PARTY", party_id, {"_action": "update", "credit_allowed": False})

        assert float(db_session.get(Party, party_id).credit_limit) == 0

    def test_invalid_party_type(self, db_session):
        with pytest.raises(ValidationError):
            master_data_service.normalize_party_input({"name": "Demo", "party_type": "FRIEND"})

    def test_duplicate_name(self, db_session):
        _apply("PARTY", "NEW", {"_action": "create", "code": "demo", "name": "Demo", "party_type": "CUSTOMER"})
        with pytest.raises(DuplicateError):
            master_data_service.normalize_party_input({"name": "demo", "party_type": "SUPPLIER"})


class TestAccounts:

    def test_branch_map_replaced_and_idempotent(self, db_session, branch, account_group):
        values = master_data_service.normalize_account_input({
            "name": "Cash in hand", "subgroup_id": account_group.id, "branch_ids": [branch.id],
        })
        account_id = _apply("ACCOUNT", "NEW", {"_action": "create", **values}).entity_id
        assert db_session.get(Account, account_id).code == "cash_in_hand"

        _apply("ACCOUNT", account_id, {"_action": "update", "branch_ids": [branch.id]})
        assert db_session.query(AccountBranch).filter_by(account_id=account_id).count() == 1

        _apply("ACCOUNT", account_id, {"_action": "update", "branch_ids": []})
        assert db_session.query(AccountBranch).filter_by(account_id=account_id).count() == 0

    def test_unknown_branch_rejected(self, db_session, account_group):
        with pytest.raises(ValidationError):
            master_data_service.normalize_account_input({
                "name": "Bank", "subgroup_id": account_group.id, "branch_ids": [99],
            })


# =============================================================================
# ITEMS / SKUS
# =============================================================================


class TestItems:

    def test_code_slugged_from_name(self, db_session, uom, product_group):
        values = item_service.normalize_item_input("RM", {
            "name": "Sole Rubber (Black)", "group_id": product_group.id, "base_uom_id": uom.id,
        })
        assert values["code"] == "sole_rubber_black"
        assert values["item_type"] == "RM"

    def test_fg_requires_product_type(self, db_session, uom, product_group):
        with pytest.raises(ValidationError):
            item_service.normalize_item_input("FG", {
                "name": "Derby", "group_id": product_group.id, "base_uom_id": uom.id,
            })

    def test_rm_rates_written(self, db_session, uom, product_group):
        values = item_service.normalize_item_input("RM", {
            "name": "Lace", "group_id": product_group.id, "base_uom_id": uom.id,
            "rates": [{"purchase_rate": 4.5}],
        })
        item_id = _apply("ITEM", "NEW", {"_action": "create", **values}).entity_id

        rate = db_session.query(RmPurchaseRate).filter_by(rm_item_id=item_id).one()
        assert float(rate.purchase_rate) == 4.5
        assert float(rate.avg_purchase_rate) == 4.5

    def test_create_without_item_type_rejected(self, db_session):
        with pytest.raises(ValidationError):
            _apply("ITEM", "NEW", {"_action": "create", "name": "Mystery"})


class TestSfgShadows:

    def _item(self, db_session, template, item_type, code, name):
        row = Item(
            item_type=item_type, code=code, name=name, group_id=template.group_id,
            product_type_id=template.product_type_id, base_uom_id=template.base_uom_id,
        )
        db_session.add(row)
        db_session.flush()
        return row

    def _usage(self, db_session, sfg_id):
        rows = db_session.query(ItemUsage.fg_item_id).filter_by(sfg_item_id=sfg_id).order_by(ItemUsage.fg_item_id)
        return [r[0] for r in rows.all()]

    def test_fg_toggle_cascades_to_shadow(self, db_session, fg_item):
        shadow_id = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None).id
        db_session.commit()

        _apply("ITEM", fg_item.id, {"_action": "toggle", "is_active": False, "item_type": "FG"})
        db_session.expire_all()
        assert db_session.get(Item, fg_item.id).is_active is False
        assert db_session.get(Item, shadow_id).is_active is False

        _apply("ITEM", fg_item.id, {"_action": "toggle", "is_active": True, "item_type": "FG"})
        db_session.expire_all()
        assert db_session.get(Item, fg_item.id).is_active is True
        assert db_session.get(Item, shadow_id).is_active is True

    def test_fg_delete_keeps_shared_sfg(self, db_session, fg_item):
        shadow_id = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None).id
        derby = self._item(db_session, fg_item, "FG", "derby", "Derby")
        shared = self._item(db_session, fg_item, "SFG", "common_insole", "Common Insole")
        db_session.add_all([
            ItemUsage(fg_item_id=fg_item.id, sfg_item_id=shared.id),
            ItemUsage(fg_item_id=derby.id, sfg_item_id=shared.id),
        ])
        db_session.commit()
        fg_id, derby_id, shared_id = fg_item.id, derby.id, shared.id

        _apply("ITEM", fg_id, {"_action": "delete"})
        db_session.commit()

        assert db_session.query(Item).filter_by(id=fg_id).count() == 0
        assert db_session.query(Item).filter_by(id=shadow_id).count() == 0
        assert db_session.query(Item).filter_by(id=shared_id).count() == 1
        assert self._usage(db_session, shared_id) == [derby_id]

    def test_ensure_drops_extra_links(self, db_session, fg_item):
        shadow_id = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None).id
        derby = self._item(db_session, fg_item, "FG", "derby", "Derby")
        extra = self._item(db_session, fg_item, "SFG", "spare_upper", "Spare Upper")
        shared = self._item(db_session, fg_item, "SFG", "common_insole", "Common Insole")
        db_session.add_all([
            ItemUsage(fg_item_id=fg_item.id, sfg_item_id=extra.id),
            ItemUsage(fg_item_id=fg_item.id, sfg_item_id=shared.id),
            ItemUsage(fg_item_id=derby.id, sfg_item_id=shared.id),
        ])
        db_session.commit()
        extra_id, shared_id = extra.id, shared.id

        primary = item_service.ensure_sfg_for_finished(fg_item, "UPPER", None)
        db_session.commit()

        assert primary.id == shadow_id
        assert primary.code == "oxford_upper"
        assert item_service.linked_sfg_ids(fg_item.id) == [shadow_id]
        assert db_session.query(Item).filter_by(id=extra_id).count() == 0
        assert self._usage(db_session, shared_id) == [derby.id]

    def test_sfg_usage_replace_is_idempotent(self, db_session, fg_item):
        derby = self._item(db_session, fg_item, "FG", "derby", "Derby")
        db_session.commit()
        sfg_id = _apply("ITEM", "NEW", {
            "_action": "create", "item_type": "SFG", "name": "Loafer Upper", "code": "loafer_upper",
            "group_id": fg_item.group_id, "base_uom_id": fg_item.base_uom_id, "usage_ids": [fg_item.id],
        }).entity_id
        db_session.commit()

        for _ in range(2):
            _apply("ITEM", sfg_id, {"_action": "update", "item_type": "SFG", "usage_ids": [derby.id, fg_item.id]})
            db_session.commit()
        assert self._usage(db_session, sfg_id) == sorted([fg_item.id, derby.id])

        _apply("ITEM", sfg_id, {"_action": "update", "item_type": "SFG", "name": "Loafer Upper II"})
        db_session.commit()
        assert self._usage(db_session, sfg_id) == sorted([fg_item.id, derby.id])

        _apply("ITEM", sfg_id, {"_action": "update", "item_type": "SFG", "usage_ids": [derby.id]})
        db_session.commit()
        assert self._usage(db_session, sfg_id) == [derby.id]


class TestSkus:

    def _variant_values(self, db_session, fg_item, **refs):
        return item_service.normalize_sku_input({"item_id": fg_item.id, "sale_rate": 150, **refs})

    def test_sku_code_from_names(self, db_session, fg_item):
        size = Size(name="7")
        color = Color(name="Black")
        db_session.add_all([size, color])
        db_session.commit()

        values = self._variant_values(db_session, fg_item, size_id=size.id, color_id=color.id)
        variant_id = _apply("SKU", "NEW", {"_action": "create", **values}).entity_id

        sku = db_session.query(Sku).filter_by(variant_id=variant_id).one()
        assert sku.sku_code == "OXFORD 7 BLACK"

    def test_sku_code_collision_gets_suffix(self, db_session, fg_item):
        db_session.add(Sku(variant_id=0, sku_code="OXFORD", is_active=True))
        db_session.commit()

        values = self._variant_values(db_session, fg_item)
        variant_id = _apply("SKU", "NEW", {"_action": "create", **values}).entity_id

        assert db_session.query(Sku).filter_by(variant_id=variant_id).one().sku_code == "OXFORD 2"

    def test_duplicate_variant_rejected(self, db_session, fg_item):
        values = self._variant_values(db_session, fg_item)
        _apply("SKU", "NEW", {"_action": "create", **values})
        db_session.commit()

        with pytest.raises(ValidationError, match="already exists"):
            self._variant_values(db_session, fg_item)

    def test_update_changes_sale_rate_only(self, db_session, fg_item):
        values = self._variant_values(db_session, fg_item)
        variant_id = _apply("SKU", "NEW", {"_action": "create", **values}).entity_id

        _apply("SKU", variant_id, {"_action": "update", "sale_rate": 170})
        variant = db_session.get(Variant, variant_id)
        assert float(variant.sale_rate) == 170
        assert variant.item_id == fg_item.id

    def test_sku_update_payload_limited(self, db_session, fg_item):
        values = self._variant_values(db_session, fg_item)
        variant_id = _apply("SKU", "NEW", {"_action": "create", **values}).entity_id
        variant = db_session.get(Variant, variant_id)

        with pytest.raises(ValidationError):
            item_service.normalize_sku_input({"item_id": 5}, existing=variant)

    def test_toggle_cascades_to_sku(self, db_session, fg_item):
        values = self._variant_values(db_session, fg_item)
        variant_id = _apply("SKU", "NEW", {"_action": "create", **values}).entity_id

        _apply("SKU", variant_id, {"_action": "toggle", "is_active": False})
        db_session.expire_all()
        assert db_session.query(Sku).filter_by(variant_id=variant_id).one().is_active is False


def test_items_in_sku_must_be_sellable(db_session, rm_item):
    with pytest.raises(ValidationError):
        item_service.normalize_sku_input({"item_id": rm_item.id})


def test_item_rows_untouched_by_failed_apply(db_session):
    with pytest.raises(NotFoundError):
        _apply("ITEM", 12345, {"_action": "update", "item_type": "FG", "name": "Ghost"})
    assert db_session.query(Item).count() == 0
