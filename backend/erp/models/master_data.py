from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..time_utils import json_safe


ITEM_TYPE_RM = "RM"
ITEM_TYPE_SFG = "SFG"
ITEM_TYPE_FG = "FG"
ITEM_TYPES = (ITEM_TYPE_RM, ITEM_TYPE_SFG, ITEM_TYPE_FG)

SFG_PART_UPPER = "UPPER"
SFG_PART_STEP = "STEP"
SFG_PART_TYPES = (SFG_PART_UPPER, SFG_PART_STEP)

PARTY_TYPES = ("CUSTOMER", "SUPPLIER", "BOTH")
ACCOUNT_TYPES = ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE")


class MasterDataMixin:
    """
    Shared audit columns plus a column-driven to_dict.

    Every master-data table carries is_active and who/when stamps.
    """

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @declared_attr
    def created_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @declared_attr
    def updated_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {c.key: json_safe(getattr(self, c.key)) for c in self.__mapper__.columns}


# -- Basic info --

class Uom(MasterDataMixin, db.Model):
    __tablename__ = "uom"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class UomConversion(MasterDataMixin, db.Model):
    __tablename__ = "uom_conversions"
    __table_args__ = (
        db.UniqueConstraint("from_uom_id", "to_uom_id", name="uq_uom_conversions_pair"),
        db.CheckConstraint("factor > 0", name="ck_uom_conversions_factor"),
        db.CheckConstraint("from_uom_id <> to_uom_id", name="ck_uom_conversions_distinct"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_uom_id = db.Column(db.Integer, db.ForeignKey("uom.id", ondelete="RESTRICT"), nullable=False)
    to_uom_id = db.Column(db.Integer, db.ForeignKey("uom.id", ondelete="RESTRICT"), nullable=False)
    factor = db.Column(db.Numeric(18, 6), nullable=False)


class ProductGroup(MasterDataMixin, db.Model):
    __tablename__ = "product_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class ProductGroupItemType(db.Model):
    __tablename__ = "product_group_item_types"

    group_id = db.Column(db.Integer, db.ForeignKey("product_groups.id", ondelete="CASCADE"), primary_key=True)
    item_type = db.Column(db.String(8), primary_key=True)


class ProductSubgroup(MasterDataMixin, db.Model):
    __tablename__ = "product_subgroups"
    __table_args__ = (
        db.UniqueConstraint("group_id", "code", name="uq_product_subgroups_group_code"),
        db.UniqueConstraint("group_id", "name", name="uq_product_subgroups_group_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("product_groups.id", ondelete="RESTRICT"), nullable=True)
    code = db.Column(db.String(80), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    name_ur = db.Column(db.String(120), nullable=True)


class ProductSubgroupItemType(db.Model):
    __tablename__ = "product_subgroup_item_types"

    subgroup_id = db.Column(db.Integer, db.ForeignKey("product_subgroups.id", ondelete="CASCADE"), primary_key=True)
    item_type = db.Column(db.String(8), primary_key=True)


class ProductType(MasterDataMixin, db.Model):
    __tablename__ = "product_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class Size(MasterDataMixin, db.Model):
    __tablename__ = "sizes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class SizeItemType(db.Model):
    __tablename__ = "size_item_types"

    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id", ondelete="CASCADE"), primary_key=True)
    item_type = db.Column(db.String(8), primary_key=True)


class Color(MasterDataMixin, db.Model):
    __tablename__ = "colors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class Grade(MasterDataMixin, db.Model):
    __tablename__ = "grades"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class PackingType(MasterDataMixin, db.Model):
    __tablename__ = "packing_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class City(MasterDataMixin, db.Model):
    __tablename__ = "cities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class PartyGroup(MasterDataMixin, db.Model):
    __tablename__ = "party_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    party_type = db.Column(db.String(16), nullable=False, default="BOTH")
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)


class AccountGroup(MasterDataMixin, db.Model):
    __tablename__ = "account_groups"
    __table_args__ = (
        db.UniqueConstraint("account_type", "code", name="uq_account_groups_type_code"),
        db.UniqueConstraint("account_type", "name", name="uq_account_groups_type_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_type = db.Column(db.String(16), nullable=False)
    code = db.Column(db.String(80), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    name_ur = db.Column(db.String(120), nullable=True)
    is_contra = db.Column(db.Boolean, nullable=False, default=False)


class Department(MasterDataMixin, db.Model):
    __tablename__ = "departments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    name_ur = db.Column(db.String(120), nullable=True)
    is_production = db.Column(db.Boolean, nullable=False, default=False)


# -- Accounts / parties --

class Account(MasterDataMixin, db.Model):
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(160), nullable=False, unique=True)
    name_ur = db.Column(db.String(160), nullable=True)
    subgroup_id = db.Column(db.Integer, db.ForeignKey("account_groups.id", ondelete="RESTRICT"), nullable=False)
    lock_posting = db.Column(db.Boolean, nullable=False, default=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)


class AccountBranch(db.Model):
    __tablename__ = "account_branch"

    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True)


class Party(MasterDataMixin, db.Model):
    """
    Customer / supplier.

    INVARIANT: credit_limit is 0 whenever credit_allowed is false.
    """
    __tablename__ = "parties"
    __table_args__ = (
        db.CheckConstraint("credit_allowed OR credit_limit = 0", name="ck_parties_credit_limit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(160), nullable=False, unique=True)
    name_ur = db.Column(db.String(160), nullable=True)
    party_type = db.Column(db.String(16), nullable=False)
    group_id = db.Column(db.Integer, db.ForeignKey("party_groups.id"), nullable=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=True)
    address = db.Column(db.Text, nullable=True)
    phone1 = db.Column(db.String(32), nullable=True)
    phone2 = db.Column(db.String(32), nullable=True)
    credit_allowed = db.Column(db.Boolean, nullable=False, default=False)
    credit_limit = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)


class PartyBranch(db.Model):
    __tablename__ = "party_branch"

    party_id = db.Column(db.Integer, db.ForeignKey("parties.id", ondelete="CASCADE"), primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True)


# -- Products --

class Item(MasterDataMixin, db.Model):
    """
    Raw material, semi-finished or finished article.

    INVARIANTS:
    - Only FG rows may set uses_sfg / sfg_part_type.
    - An FG with uses_sfg is linked to at least one SFG shadow via item_usage.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("item_type IN ('RM', 'SFG', 'FG')", name="ck_items_item_type"),
        db.CheckConstraint(
            "item_type = 'FG' OR (uses_sfg = false AND sfg_part_type IS NULL)",
            name="ck_items_sfg_only_fg",
        ),
        db.Index("ix_items_type_active", "item_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_type = db.Column(db.String(8), nullable=False)
    code = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(160), nullable=False)
    name_ur = db.Column(db.String(160), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey("product_groups.id"), nullable=False)
    subgroup_id = db.Column(db.Integer, db.ForeignKey("product_subgroups.id"), nullable=True)
    product_type_id = db.Column(db.Integer, db.ForeignKey("product_types.id"), nullable=True)
    base_uom_id = db.Column(db.Integer, db.ForeignKey("uom.id"), nullable=False)
    uses_sfg = db.Column(db.Boolean, nullable=False, default=False)
    sfg_part_type = db.Column(db.String(8), nullable=True)
    min_stock_level = db.Column(db.Numeric(18, 3), nullable=False, default=-1)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)


class ItemUsage(db.Model):
    """FG -> SFG link (shadow or hand-picked usage)."""
    __tablename__ = "item_usage"

    fg_item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), primary_key=True)
    sfg_item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), primary_key=True)


class RmPurchaseRate(db.Model):
    __tablename__ = "rm_purchase_rates"
    __table_args__ = (
        db.CheckConstraint("purchase_rate >= 0", name="ck_rm_purchase_rates_rate"),
        db.CheckConstraint("avg_purchase_rate >= 0", name="ck_rm_purchase_rates_avg"),
        db.Index("ix_rm_purchase_rates_item", "rm_item_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rm_item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    color_id = db.Column(db.Integer, db.ForeignKey("colors.id"), nullable=True)
    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=True)
    purchase_rate = db.Column(db.Numeric(18, 4), nullable=False)
    avg_purchase_rate = db.Column(db.Numeric(18, 4), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {c.key: json_safe(getattr(self, c.key)) for c in self.__mapper__.columns}


class Variant(MasterDataMixin, db.Model):
    __tablename__ = "variants"
    __table_args__ = (
        db.Index("ix_variants_identity", "item_id", "size_id", "grade_id", "color_id", "packing_type_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=True)
    grade_id = db.Column(db.Integer, db.ForeignKey("grades.id"), nullable=True)
    color_id = db.Column(db.Integer, db.ForeignKey("colors.id"), nullable=True)
    packing_type_id = db.Column(db.Integer, db.ForeignKey("packing_types.id"), nullable=True)
    sale_rate = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    item = db.relationship("Item")


class Sku(db.Model):
    __tablename__ = "skus"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id", ondelete="RESTRICT"), nullable=False, index=True)
    sku_code = db.Column(db.String(200), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    variant = db.relationship("Variant", backref=db.backref("skus", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "sku_code": self.sku_code,
            "barcode": self.barcode,
            "is_active": self.is_active,
        }


class Labour(MasterDataMixin, db.Model):
    """Piece-rate labour referenced by BOM labour lines."""
    __tablename__ = "labours"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(160), nullable=False)
    name_ur = db.Column(db.String(160), nullable=True)
    dept_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)
