from __future__ import annotations

from ..extensions import db
from ..time_utils import json_safe, to_utc_z


BOM_LEVEL_FINISHED = "FINISHED"
BOM_LEVEL_SEMI_FINISHED = "SEMI_FINISHED"
BOM_LEVELS = (BOM_LEVEL_FINISHED, BOM_LEVEL_SEMI_FINISHED)

BOM_STATUS_DRAFT = "DRAFT"
BOM_STATUS_PENDING = "PENDING"
BOM_STATUS_APPROVED = "APPROVED"
BOM_STATUS_REJECTED = "REJECTED"
BOM_STATUSES = (BOM_STATUS_DRAFT, BOM_STATUS_PENDING, BOM_STATUS_APPROVED, BOM_STATUS_REJECTED)

SCOPE_ALL = "ALL"
SCOPE_SPECIFIC = "SPECIFIC"
LABOUR_RATE_TYPES = ("PER_DOZEN", "PER_PAIR")
RULE_ACTION_TYPES = ("ADD_RM", "REMOVE_RM", "REPLACE_RM", "ADJUST_QTY", "CHANGE_LOSS")

CHANGE_ADDED = "ADDED"
CHANGE_UPDATED = "UPDATED"
CHANGE_REMOVED = "REMOVED"


def _row_dict(row) -> dict:
    return {c.key: json_safe(getattr(row, c.key)) for c in row.__mapper__.columns}


class BomHeader(db.Model):
    """
    Bill-of-materials header, one row per (item, level, version).

    INVARIANT: at most one DRAFT per (item_id, level), enforced by the
    partial unique index ux_bom_header_single_draft.
    """
    __tablename__ = "bom_header"
    __table_args__ = (
        db.UniqueConstraint("item_id", "level", "version_no", name="uq_bom_header_item_level_version"),
        db.CheckConstraint("output_qty > 0", name="ck_bom_header_output_qty"),
        db.CheckConstraint("version_no > 0", name="ck_bom_header_version_no"),
        db.Index(
            "ux_bom_header_single_draft",
            "item_id",
            "level",
            unique=True,
            sqlite_where=db.text("status = 'DRAFT'"),
            postgresql_where=db.text("status = 'DRAFT'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_no = db.Column(db.String(32), nullable=False, unique=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    level = db.Column(db.String(16), nullable=False)
    output_qty = db.Column(db.Numeric(18, 3), nullable=False, default=1)
    output_uom_id = db.Column(db.Integer, db.ForeignKey("uom.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=BOM_STATUS_DRAFT)
    version_no = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    item = db.relationship("Item")
    rm_lines = db.relationship("BomRmLine", order_by="BomRmLine.id", cascade="all, delete-orphan", lazy=True)
    sfg_lines = db.relationship(
        "BomSfgLine",
        order_by="BomSfgLine.id",
        cascade="all, delete-orphan",
        lazy=True,
        foreign_keys="BomSfgLine.bom_id",
    )
    labour_lines = db.relationship("BomLabourLine", order_by="BomLabourLine.id", cascade="all, delete-orphan", lazy=True)
    variant_rules = db.relationship("BomVariantRule", order_by="BomVariantRule.id", cascade="all, delete-orphan", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bom_no": self.bom_no,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "level": self.level,
            "output_qty": json_safe(self.output_qty),
            "output_uom_id": self.output_uom_id,
            "status": self.status,
            "version_no": self.version_no,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
        }


class BomRmLine(db.Model):
    __tablename__ = "bom_rm_line"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_bom_rm_line_qty"),
        db.CheckConstraint("normal_loss_pct >= 0 AND normal_loss_pct <= 100", name="ck_bom_rm_line_loss"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id", ondelete="CASCADE"), nullable=False, index=True)
    rm_item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    color_id = db.Column(db.Integer, db.ForeignKey("colors.id"), nullable=True)
    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=True)
    dept_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    qty = db.Column(db.Numeric(18, 3), nullable=False)
    uom_id = db.Column(db.Integer, db.ForeignKey("uom.id"), nullable=False)
    normal_loss_pct = db.Column(db.Numeric(6, 3), nullable=False, default=0)

    def to_dict(self) -> dict:
        return _row_dict(self)


class BomSfgLine(db.Model):
    __tablename__ = "bom_sfg_line"
    __table_args__ = (
        db.CheckConstraint("required_qty > 0", name="ck_bom_sfg_line_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id", ondelete="CASCADE"), nullable=False, index=True)
    fg_size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=False)
    sfg_sku_id = db.Column(db.Integer, db.ForeignKey("skus.id", ondelete="RESTRICT"), nullable=False)
    required_qty = db.Column(db.Numeric(18, 3), nullable=False)
    uom_id = db.Column(db.Integer, db.ForeignKey("uom.id"), nullable=False)
    ref_approved_bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id"), nullable=True)

    def to_dict(self) -> dict:
        return _row_dict(self)


class BomLabourLine(db.Model):
    __tablename__ = "bom_labour_line"
    __table_args__ = (
        db.CheckConstraint("rate_value >= 0", name="ck_bom_labour_line_rate"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id", ondelete="CASCADE"), nullable=False, index=True)
    size_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=True)
    dept_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    labour_id = db.Column(db.Integer, db.ForeignKey("labours.id", ondelete="RESTRICT"), nullable=False)
    rate_type = db.Column(db.String(16), nullable=False, default="PER_PAIR")
    rate_value = db.Column(db.Numeric(18, 4), nullable=False)

    def to_dict(self) -> dict:
        return _row_dict(self)


class BomVariantRule(db.Model):
    __tablename__ = "bom_variant_rule"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id", ondelete="CASCADE"), nullable=False, index=True)
    size_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    size_id = db.Column(db.Integer, db.ForeignKey("sizes.id"), nullable=True)
    packing_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    packing_type_id = db.Column(db.Integer, db.ForeignKey("packing_types.id"), nullable=True)
    color_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    color_id = db.Column(db.Integer, db.ForeignKey("colors.id"), nullable=True)
    action_type = db.Column(db.String(16), nullable=False)
    material_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    target_rm_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)
    new_value = db.Column(db.JSON, nullable=False, default=dict)

    def to_dict(self) -> dict:
        return _row_dict(self)


class BomChangeLog(db.Model):
    """
    Per-row audit of BOM edits keyed by a section-specific composite key.

    IMMUTABLE: Append-only.
    """
    __tablename__ = "bom_change_log"
    __table_args__ = (
        db.CheckConstraint("change_type IN ('ADDED', 'UPDATED', 'REMOVED')", name="ck_bom_change_log_type"),
        db.Index("ix_bom_change_log_bom_version", "bom_id", "version_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(db.Integer, db.ForeignKey("bom_header.id", ondelete="CASCADE"), nullable=False)
    version_no = db.Column(db.Integer, nullable=False)
    request_id = db.Column(db.Integer, db.ForeignKey("approval_request.id", ondelete="SET NULL"), nullable=True)
    section = db.Column(db.String(32), nullable=False)
    entity_key = db.Column(db.String(255), nullable=False)
    change_type = db.Column(db.String(16), nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bom_id": self.bom_id,
            "version_no": self.version_no,
            "request_id": self.request_id,
            "section": self.section,
            "entity_key": self.entity_key,
            "change_type": self.change_type,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changed_at": to_utc_z(self.changed_at),
        }
