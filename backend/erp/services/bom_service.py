# Overview: Service-layer operations for BOM drafts, approval, versioning and change logging.

"""
BOM Service

WHY: A BOM is written from three places (direct screen save, approval
replay, version cloning) and every one of them must honour the same
status machine and the single-draft rule.

STATUS MACHINE:
    DRAFT --(send for approval)--> PENDING --(approve)--> APPROVED
    DRAFT --(approve, ungated)--> APPROVED
    PENDING --(reject)--> DRAFT
    APPROVED --(create_version_from)--> new DRAFT, version_no + 1

INVARIANTS:
- At most one DRAFT per (item_id, level); the partial unique index
  ux_bom_header_single_draft backs the service-level check
- Only DRAFT headers are edited or deleted
- Every write appends bom_change_log rows in the same transaction
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    ApprovalRequest, BomHeader, BomLabourLine, BomRmLine, BomSfgLine, BomVariantRule, Color, Department,
    Item, Labour, PackingType, RmPurchaseRate, Size, Sku, Uom, Variant,
)
from ..models.approvals import PAYLOAD_SCHEMA_VERSION, STATUS_PENDING
from ..models.bom import (
    BOM_LEVEL_FINISHED, BOM_LEVEL_SEMI_FINISHED, BOM_LEVELS, BOM_STATUS_APPROVED, BOM_STATUS_DRAFT,
    BOM_STATUS_PENDING, LABOUR_RATE_TYPES, RULE_ACTION_TYPES, SCOPE_ALL, SCOPE_SPECIFIC,
)
from ..models.master_data import ITEM_TYPE_FG, ITEM_TYPE_RM, ITEM_TYPE_SFG
from ..time_utils import json_safe, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .bom_change_log import BOM_SECTIONS, insert_bom_change_log
from .concurrency import lock_for_update
from .master_data_service import entity_pk, resolve_action


logger = logging.getLogger(__name__)

BOM_ENTITY_TYPE = "BOM"
BOM_SCOPE_KEY = "master_data.bom"
BOM_APPROVAL_SCOPE_KEY = "master_data.bom.approval"
BOM_PAYLOAD_SCHEMA_VERSION = PAYLOAD_SCHEMA_VERSION

DRAFT_EXISTS_MESSAGE = "A draft already exists for this item and level."
MISSING_RATES_MESSAGE = "Missing required material rates."
SFG_BOM_MISSING_MESSAGE = "Selected SFG item has no approved BOM"
SNAPSHOT_MISMATCH_MESSAGE = "BOM snapshot mismatch while approving. Please reopen and resubmit approval."

_HEADER_SNAPSHOT_FIELDS = ("item_id", "level", "output_qty", "output_uom_id", "status", "version_no")
_LINE_MODELS = {
    "rm_lines": BomRmLine,
    "sfg_lines": BomSfgLine,
    "labour_lines": BomLabourLine,
    "variant_rules": BomVariantRule,
}
_LINE_SKIP = {"id", "bom_id"}


class BomSnapshotMismatchError(ConflictError):
    code = "BOM_SNAPSHOT_MISMATCH"

    def __init__(self, message: str = SNAPSHOT_MISMATCH_MESSAGE):
        super().__init__(message)


# -- Input coercion --

def _as_list(value) -> list:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError("Line payload must be a JSON array")
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, list):
        return value
    return [value]


def _as_object(value) -> dict | None:
    """dict for valid input, {} for empty, None for malformed."""
    if value in (None, ""):
        return {}
    if isinstance(value, dict):
        return dict(value)
    try:
        parsed = json.loads(str(value))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _num(value) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number and number not in (float("inf"), float("-inf")) else None


def _positive(value) -> float | None:
    number = _num(value)
    return number if number is not None and number > 0 else None


def _int(value) -> int | None:
    number = _num(value)
    return int(number) if number else None


def _scope(value) -> str:
    text = str(value or SCOPE_ALL).strip().upper()
    return text if text in (SCOPE_ALL, SCOPE_SPECIFIC) else SCOPE_ALL


def _ids_of(model, ids) -> set[int]:
    ids = sorted({i for i in ids if i})
    if not ids:
        return set()
    return {row_id for (row_id,) in db.session.query(model.id).filter(model.id.in_(ids)).all()}


def fetch_latest_approved_bom_id(item_id: int | None, level: str = BOM_LEVEL_SEMI_FINISHED) -> int | None:
    if not item_id:
        return None
    row = (
        db.session.query(BomHeader.id)
        .filter(BomHeader.item_id == item_id, BomHeader.level == level, BomHeader.status == BOM_STATUS_APPROVED)
        .order_by(BomHeader.version_no.desc())
        .first()
    )
    return row[0] if row else None


def normalize_bom_input(payload: dict) -> dict:
    """
    Validate a `{header, rm_lines, sfg_lines, labour_lines, variant_rules}`
    payload and return its normalized form.

    All problems are collected and raised together as one ValidationError.
    Rate and approved-SFG-BOM checks run at approval time.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid BOM payload")

    errors: list[dict] = []

    def fail(field_name: str, message: str, idx: int | None = None):
        errors.append({"field": field_name, "message": f"{message} #{idx + 1}" if idx is not None else message})

    header = payload.get("header") or {}
    item_id = _int(header.get("item_id"))
    level = str(header.get("level") or "").strip().upper()
    output_qty = _positive(header.get("output_qty"))
    output_uom_id = _int(header.get("output_uom_id"))

    if not item_id:
        fail("item_id", "Please select an item.")
    if level not in BOM_LEVELS:
        fail("level", "Please select a valid BOM level.")
    if not output_qty:
        fail("output_qty", "Output quantity must be greater than zero.")

    item = db.session.get(Item, item_id) if item_id else None
    if item_id and item is None:
        fail("item_id", "Selected item does not exist.")
    if item is not None:
        expected = {BOM_LEVEL_FINISHED: ITEM_TYPE_FG, BOM_LEVEL_SEMI_FINISHED: ITEM_TYPE_SFG}.get(level)
        if expected and item.item_type != expected:
            fail("level", "Level must match item type.")
        output_uom_id = output_uom_id or item.base_uom_id
    if not output_uom_id:
        fail("output_uom_id", "Output UOM is required.")
    elif not _ids_of(Uom, [output_uom_id]):
        fail("output_uom_id", "Output UOM does not exist.")

    # Raw materials
    rm_lines = []
    for raw in _as_list(payload.get("rm_lines")):
        line = {
            "rm_item_id": _int(raw.get("rm_item_id")),
            "color_id": _int(raw.get("color_id")),
            "size_id": _int(raw.get("size_id")),
            "dept_id": _int(raw.get("dept_id")),
            "qty": _positive(raw.get("qty")),
            "uom_id": _int(raw.get("uom_id")),
            "normal_loss_pct": _num(raw.get("normal_loss_pct")) or 0.0,
        }
        if line["rm_item_id"] or line["dept_id"] or line["qty"]:
            rm_lines.append(line)

    rm_items = {
        row.id: row
        for row in db.session.query(Item).filter(Item.id.in_(sorted({l["rm_item_id"] for l in rm_lines if l["rm_item_id"]}))).all()
    } if rm_lines else {}
    for idx, line in enumerate(rm_lines):
        if not (line["rm_item_id"] and line["dept_id"] and line["qty"]):
            fail("rm_lines", "Invalid raw material line", idx)
            continue
        rm_item = rm_items.get(line["rm_item_id"])
        if rm_item is None or rm_item.item_type != ITEM_TYPE_RM:
            fail("rm_lines", "Raw material line must reference an RM item", idx)
            continue
        line["uom_id"] = rm_item.base_uom_id
        if not line["uom_id"]:
            fail("rm_lines", "Raw material UOM is required", idx)
        if not 0 <= line["normal_loss_pct"] <= 100:
            fail("rm_lines", "Normal loss % must be between 0 and 100", idx)

    # Semi-finished parts
    sfg_lines = []
    for raw in _as_list(payload.get("sfg_lines")):
        line = {
            "fg_size_id": _int(raw.get("fg_size_id")),
            "sfg_sku_id": _int(raw.get("sfg_sku_id")),
            "required_qty": _positive(raw.get("required_qty")),
            "uom_id": _int(raw.get("uom_id")),
            "ref_approved_bom_id": None,
        }
        if line["fg_size_id"] or line["sfg_sku_id"] or line["required_qty"]:
            sfg_lines.append(line)

    if level == BOM_LEVEL_SEMI_FINISHED and sfg_lines:
        fail("sfg_lines", "Semi-finished BOM cannot include SFG section lines.")

    sku_items = {}
    if sfg_lines:
        sku_ids = {l["sfg_sku_id"] for l in sfg_lines if l["sfg_sku_id"]}
        rows = (
            db.session.query(Sku.id, Item)
            .join(Variant, Sku.variant_id == Variant.id)
            .join(Item, Variant.item_id == Item.id)
            .filter(Sku.id.in_(sorted(sku_ids)))
            .all()
        )
        sku_items = {sku_id: sku_item for sku_id, sku_item in rows}
    for idx, line in enumerate(sfg_lines):
        if not (line["fg_size_id"] and line["sfg_sku_id"] and line["required_qty"]):
            fail("sfg_lines", "Invalid semi-finished line", idx)
            continue
        sku_item = sku_items.get(line["sfg_sku_id"])
        if sku_item is None or sku_item.item_type != ITEM_TYPE_SFG:
            fail("sfg_lines", "Selected SKU must belong to a semi-finished item", idx)
            continue
        line["uom_id"] = sku_item.base_uom_id
        line["ref_approved_bom_id"] = fetch_latest_approved_bom_id(sku_item.id)

    # Labour
    labour_lines = []
    for raw in _as_list(payload.get("labour_lines")):
        line = {
            "size_scope": _scope(raw.get("size_scope")),
            "size_id": _int(raw.get("size_id")),
            "dept_id": _int(raw.get("dept_id")),
            "labour_id": _int(raw.get("labour_id")),
            "rate_type": str(raw.get("rate_type") or "PER_PAIR").strip().upper(),
            "rate_value": _num(raw.get("rate_value")),
        }
        if line["dept_id"] or line["labour_id"] or line["rate_value"]:
            labour_lines.append(line)

    labour_depts = {
        row.id: row.dept_id
        for row in db.session.query(Labour).filter(Labour.id.in_(sorted({l["labour_id"] for l in labour_lines if l["labour_id"]}))).all()
    } if labour_lines else {}
    dept_ids = {l["dept_id"] for l in rm_lines + labour_lines if l["dept_id"]}
    production_depts = {
        row_id
        for (row_id,) in db.session.query(Department.id)
        .filter(Department.id.in_(sorted(dept_ids)), Department.is_active.is_(True), Department.is_production.is_(True))
        .all()
    } if dept_ids else set()

    for idx, line in enumerate(rm_lines):
        if line["dept_id"] and line["dept_id"] not in production_depts:
            fail("rm_lines", "Department must be an active production department", idx)

    for idx, line in enumerate(labour_lines):
        if not (line["dept_id"] and line["labour_id"]) or line["rate_value"] is None or line["rate_value"] < 0:
            fail("labour_lines", "Invalid labour line", idx)
            continue
        if line["rate_type"] not in LABOUR_RATE_TYPES:
            fail("labour_lines", "Invalid labour rate type", idx)
            continue
        if line["dept_id"] not in production_depts:
            fail("labour_lines", "Department must be an active production department", idx)
        if line["labour_id"] not in labour_depts:
            fail("labour_lines", "Selected labour does not exist", idx)
        elif labour_depts[line["labour_id"]] and labour_depts[line["labour_id"]] != line["dept_id"]:
            fail("labour_lines", "Selected department is not allowed for this labour", idx)
        if line["size_scope"] == SCOPE_SPECIFIC and not line["size_id"]:
            fail("labour_lines", "Size is required for SPECIFIC scope", idx)
        if line["size_scope"] == SCOPE_ALL:
            line["size_id"] = None

    # Variant rules
    variant_rules = []
    for raw in _as_list(payload.get("variant_rules")):
        action_type = str(raw.get("action_type") or "").strip().upper()
        if not action_type:
            continue
        variant_rules.append({
            "size_scope": _scope(raw.get("size_scope")),
            "size_id": _int(raw.get("size_id")),
            "packing_scope": _scope(raw.get("packing_scope")),
            "packing_type_id": _int(raw.get("packing_type_id")),
            "color_scope": _scope(raw.get("color_scope")),
            "color_id": _int(raw.get("color_id")),
            "action_type": action_type,
            "material_scope": _scope(raw.get("material_scope")),
            "target_rm_item_id": _int(raw.get("target_rm_item_id")),
            "new_value": _as_object(raw.get("new_value")),
        })

    for idx, rule in enumerate(variant_rules):
        if rule["action_type"] not in RULE_ACTION_TYPES:
            fail("variant_rules", "Invalid variant rule action", idx)
            continue
        for dimension, id_key, label in (
            ("size_scope", "size_id", "Size"),
            ("packing_scope", "packing_type_id", "Packing type"),
            ("color_scope", "color_id", "Color"),
            ("material_scope", "target_rm_item_id", "Target material"),
        ):
            if rule[dimension] == SCOPE_SPECIFIC and not rule[id_key]:
                fail("variant_rules", f"{label} is required for SPECIFIC scope", idx)
            if rule[dimension] == SCOPE_ALL:
                rule[id_key] = None
        if rule["new_value"] is None:
            fail("variant_rules", "Rule value must be a valid JSON object", idx)
            continue
        if rule["action_type"] == "ADJUST_QTY":
            qty = _positive(rule["new_value"].get("qty"))
            uom_id = _int(rule["new_value"].get("uom_id"))
            if not qty:
                fail("variant_rules", "Invalid value (qty)", idx)
            else:
                rule["new_value"]["qty"] = qty
            if not uom_id:
                fail("variant_rules", "Invalid value (uom)", idx)
            else:
                rule["new_value"]["uom_id"] = uom_id

    # Referenced dimensions must exist
    for model, field_name, section, ids in (
        (Size, "size_id", "labour_lines", [l["size_id"] for l in labour_lines]),
        (Size, "size_id", "variant_rules", [r["size_id"] for r in variant_rules]),
        (Size, "fg_size_id", "sfg_lines", [l["fg_size_id"] for l in sfg_lines]),
        (Color, "color_id", "rm_lines", [l["color_id"] for l in rm_lines]),
        (Size, "size_id", "rm_lines", [l["size_id"] for l in rm_lines]),
        (Color, "color_id", "variant_rules", [r["color_id"] for r in variant_rules]),
        (PackingType, "packing_type_id", "variant_rules", [r["packing_type_id"] for r in variant_rules]),
    ):
        missing = {i for i in ids if i} - _ids_of(model, ids)
        if missing:
            fail(section, f"Unknown {field_name}: {', '.join(str(i) for i in sorted(missing))}")

    if errors:
        raise ValidationError("Please fix validation errors.", errors=errors)

    return {
        "header": {
            "item_id": item_id,
            "level": level,
            "output_qty": output_qty,
            "output_uom_id": output_uom_id,
        },
        "rm_lines": rm_lines,
        "sfg_lines": sfg_lines,
        "labour_lines": labour_lines,
        "variant_rules": variant_rules,
    }


def validate_required_rates(rm_lines) -> None:
    """Every RM line needs an active purchase rate for its (item, color, size)."""
    keys = [(l["rm_item_id"], l.get("color_id") or 0, l.get("size_id") or 0) for l in rm_lines or [] if l.get("rm_item_id")]
    if not keys:
        return
    item_ids = {k[0] for k in keys}
    rate_keys = {
        (rm_item_id, color_id or 0, size_id or 0)
        for rm_item_id, color_id, size_id in db.session.query(
            RmPurchaseRate.rm_item_id, RmPurchaseRate.color_id, RmPurchaseRate.size_id
        )
        .filter(RmPurchaseRate.rm_item_id.in_(sorted(item_ids)), RmPurchaseRate.is_active.is_(True))
        .all()
    }
    missing = [k for k in keys if k not in rate_keys]
    if not missing:
        return

    names = dict(db.session.query(Item.id, Item.name).filter(Item.id.in_(sorted(item_ids))).all())
    labels = []
    for rm_item_id, _color, _size in missing:
        label = names.get(rm_item_id) or str(rm_item_id)
        if label not in labels:
            labels.append(label)
    raise ValidationError(
        MISSING_RATES_MESSAGE,
        errors=[{"field": "rm_lines", "message": f"Missing active purchase rates for: {', '.join(labels)}"}],
    )


def validate_sfg_boms_approved(sfg_lines) -> None:
    errors = []
    for idx, line in enumerate(sfg_lines or []):
        sku = db.session.get(Sku, line.get("sfg_sku_id")) if line.get("sfg_sku_id") else None
        item_id = sku.variant.item_id if sku is not None and sku.variant is not None else None
        if not fetch_latest_approved_bom_id(item_id):
            errors.append({"field": "sfg_lines", "message": f"{SFG_BOM_MISSING_MESSAGE} #{idx + 1}"})
    if errors:
        raise ValidationError(SFG_BOM_MISSING_MESSAGE, errors=errors)


# -- Reads --

def get_bom(bom_id, *, lock: bool = False) -> BomHeader:
    query = db.session.query(BomHeader).filter(BomHeader.id == entity_pk(bom_id))
    if lock:
        query = lock_for_update(query)
    header = query.first()
    if header is None:
        raise NotFoundError("BOM not found")
    return header


def _line_dict(row) -> dict:
    return {
        c.key: json_safe(getattr(row, c.key))
        for c in row.__mapper__.columns
        if c.key not in _LINE_SKIP
    }


def bom_snapshot(header: BomHeader) -> dict:
    """Header fields plus the four child sections, lines in id order."""
    return {
        "header": {k: json_safe(getattr(header, k)) for k in _HEADER_SNAPSHOT_FIELDS},
        "rm_lines": [_line_dict(r) for r in header.rm_lines],
        "sfg_lines": [_line_dict(r) for r in header.sfg_lines],
        "labour_lines": [_line_dict(r) for r in header.labour_lines],
        "variant_rules": [_line_dict(r) for r in header.variant_rules],
    }


def bom_detail(header: BomHeader) -> dict:
    data = bom_snapshot(header)
    data["header"] = header.to_dict()
    return data


def _sort_key(row: dict) -> str:
    return json.dumps(row, sort_keys=True, default=str)


def build_approval_snapshot(snapshot: dict) -> dict:
    """Status-free, order-free image of a BOM used to pin an approve_draft request."""
    header = dict((snapshot or {}).get("header") or {})
    header.pop("status", None)
    result = {"header": {k: header.get(k) for k in sorted(header) if k in _HEADER_SNAPSHOT_FIELDS}}
    for section in BOM_SECTIONS:
        rows = [
            {k: v for k, v in row.items() if k not in _LINE_SKIP}
            for row in (snapshot or {}).get(section) or []
        ]
        result[section] = sorted(rows, key=_sort_key)
    return result


def snapshot_signature(snapshot: dict) -> str:
    return json.dumps(build_approval_snapshot(snapshot), sort_keys=True, default=str)


def has_pending_approval_for_bom(bom_id: int, actions: tuple | None = None) -> bool:
    rows = (
        db.session.query(ApprovalRequest)
        .filter(
            ApprovalRequest.entity_type == BOM_ENTITY_TYPE,
            ApprovalRequest.entity_id == str(bom_id),
            ApprovalRequest.status == STATUS_PENDING,
        )
        .all()
    )
    if actions is None:
        return bool(rows)
    return any((r.new_value or {}).get("_action") in actions for r in rows)


def list_boms(*, status: str | None = None, item_id: int | None = None, level: str | None = None) -> list[dict]:
    query = db.session.query(BomHeader)
    if status:
        query = query.filter(BomHeader.status == status.upper())
    if item_id:
        query = query.filter(BomHeader.item_id == item_id)
    if level:
        query = query.filter(BomHeader.level == level.upper())
    return [h.to_dict() for h in query.order_by(BomHeader.id.desc()).all()]


def list_versions(*, item_id: int | None = None, level: str | None = None) -> list[dict]:
    query = db.session.query(BomHeader)
    if item_id:
        query = query.filter(BomHeader.item_id == item_id)
    if level:
        query = query.filter(BomHeader.level == level.upper())
    rows = query.order_by(BomHeader.item_id.asc(), BomHeader.level.asc(), BomHeader.version_no.desc()).all()
    return [h.to_dict() for h in rows]


# -- Writes --

def ensure_draft_uniqueness(item_id: int, level: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(BomHeader.id).filter(
        BomHeader.item_id == item_id,
        BomHeader.level == level,
        BomHeader.status == BOM_STATUS_DRAFT,
    )
    if exclude_id:
        query = query.filter(BomHeader.id != exclude_id)
    if query.first() is not None:
        raise ValidationError(DRAFT_EXISTS_MESSAGE, field="item_id")


def next_bom_no() -> str:
    max_id = db.session.query(func.max(BomHeader.id)).scalar() or 0
    return f"BOM-{max_id + 1:06d}"


def next_version_no(item_id: int, level: str) -> int:
    current = (
        db.session.query(func.max(BomHeader.version_no))
        .filter(BomHeader.item_id == item_id, BomHeader.level == level)
        .scalar()
    )
    return (current or 0) + 1


def _is_single_draft_violation(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc))
    if "ux_bom_header_single_draft" in message:
        return True
    # SQLite names the columns instead of the index
    return "bom_header.item_id, bom_header.level" in message and "version_no" not in message


def _flush_header() -> None:
    """Flush, surfacing a lost single-draft race as the draft-exists error. Caller rolls back."""
    try:
        db.session.flush()
    except IntegrityError as exc:
        if _is_single_draft_violation(exc):
            logger.info("BOM draft collision rejected by ux_bom_header_single_draft")
            raise ValidationError(DRAFT_EXISTS_MESSAGE, field="item_id") from exc
        raise


def replace_bom_lines(header: BomHeader, data: dict) -> None:
    """Delete-then-insert every child section from normalized input."""
    for section, model in _LINE_MODELS.items():
        getattr(header, section).clear()
        db.session.flush()
        columns = {c.key for c in model.__mapper__.columns} - _LINE_SKIP
        for row in data.get(section) or []:
            getattr(header, section).append(model(**{k: v for k, v in row.items() if k in columns}))
    db.session.flush()


def save_bom_draft(
    data: dict,
    *,
    bom_id: int | None = None,
    actor_user_id: int | None = None,
    request_id: int | None = None,
) -> BomHeader:
    """
    Create a new DRAFT or replace an existing DRAFT from raw input.

    Caller commits; on any exception the caller rolls back.
    """
    normalized = normalize_bom_input(data)
    header_in = normalized["header"]

    if bom_id:
        header = get_bom(bom_id, lock=True)
        if has_pending_approval_for_bom(header.id):
            raise ConflictError("A pending approval already exists for this BOM.")
        if header.status != BOM_STATUS_DRAFT:
            raise ConflictError("Only draft BOM can be edited.")
        before = bom_snapshot(header)
        ensure_draft_uniqueness(header_in["item_id"], header_in["level"], exclude_id=header.id)
        header.item_id = header_in["item_id"]
        header.level = header_in["level"]
        header.output_qty = header_in["output_qty"]
        header.output_uom_id = header_in["output_uom_id"]
        _flush_header()
    else:
        before = None
        ensure_draft_uniqueness(header_in["item_id"], header_in["level"])
        header = BomHeader(
            bom_no=next_bom_no(),
            item_id=header_in["item_id"],
            level=header_in["level"],
            output_qty=header_in["output_qty"],
            output_uom_id=header_in["output_uom_id"],
            status=BOM_STATUS_DRAFT,
            version_no=next_version_no(header_in["item_id"], header_in["level"]),
            created_by=actor_user_id,
            created_at=utcnow(),
        )
        db.session.add(header)
        _flush_header()

    replace_bom_lines(header, normalized)
    db.session.refresh(header)
    insert_bom_change_log(
        bom_id=header.id,
        version_no=header.version_no,
        before=before,
        after=bom_snapshot(header),
        changed_by=actor_user_id,
        request_id=request_id,
    )
    return header


def set_bom_pending(bom_id) -> BomHeader:
    header = get_bom(bom_id, lock=True)
    if header.status == BOM_STATUS_PENDING:
        return header
    if header.status != BOM_STATUS_DRAFT:
        raise ConflictError("Only draft BOM can be approved.")
    header.status = BOM_STATUS_PENDING
    header.approved_by = None
    header.approved_at = None
    db.session.flush()
    return header


def approve_bom(
    bom_id,
    *,
    actor_user_id: int | None,
    request_id: int | None = None,
    expected_snapshot: dict | None = None,
) -> BomHeader:
    """
    DRAFT or PENDING -> APPROVED. Re-approving an APPROVED header is a no-op.

    Nothing is written when a precondition fails, so the header keeps its
    status and approval stamps.
    """
    header = get_bom(bom_id, lock=True)
    if header.status == BOM_STATUS_APPROVED:
        return header
    if header.status not in (BOM_STATUS_DRAFT, BOM_STATUS_PENDING):
        raise ConflictError("Only draft BOM can be approved.")

    before = bom_snapshot(header)
    if expected_snapshot is not None and snapshot_signature(expected_snapshot) != snapshot_signature(before):
        raise BomSnapshotMismatchError()

    validate_required_rates(before["rm_lines"])
    validate_sfg_boms_approved(before["sfg_lines"])
    ensure_draft_uniqueness(header.item_id, header.level, exclude_id=header.id)

    header.status = BOM_STATUS_APPROVED
    header.approved_by = actor_user_id
    header.approved_at = utcnow()
    db.session.flush()
    insert_bom_change_log(
        bom_id=header.id,
        version_no=header.version_no,
        before=before,
        after=bom_snapshot(header),
        changed_by=actor_user_id,
        request_id=request_id,
    )
    return header


def create_version_from(source_bom_id, *, actor_user_id: int | None, request_id: int | None = None) -> BomHeader:
    """Clone an APPROVED header into a DRAFT with version_no + 1."""
    source = get_bom(source_bom_id, lock=True)
    if source.status != BOM_STATUS_APPROVED:
        raise ConflictError("New version can only be created from an approved BOM.")
    ensure_draft_uniqueness(source.item_id, source.level)

    version_no = source.version_no + 1
    taken = (
        db.session.query(BomHeader.id)
        .filter_by(item_id=source.item_id, level=source.level, version_no=version_no)
        .first()
    )
    if taken is not None:
        raise ConflictError(f"Version {version_no} already exists for this item and level.")

    header = BomHeader(
        bom_no=next_bom_no(),
        item_id=source.item_id,
        level=source.level,
        output_qty=source.output_qty,
        output_uom_id=source.output_uom_id,
        status=BOM_STATUS_DRAFT,
        version_no=version_no,
        created_by=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(header)
    _flush_header()

    replace_bom_lines(header, bom_snapshot(source))
    db.session.refresh(header)
    insert_bom_change_log(
        bom_id=header.id,
        version_no=header.version_no,
        before=None,
        after=bom_snapshot(header),
        changed_by=actor_user_id,
        request_id=request_id,
    )
    return header


def delete_bom_draft(bom_id) -> None:
    header = get_bom(bom_id, lock=True)
    if header.status != BOM_STATUS_DRAFT:
        raise ConflictError("Only draft BOM can be deleted.")
    if has_pending_approval_for_bom(header.id):
        raise ConflictError("A pending approval already exists for this BOM.")
    db.session.delete(header)
    db.session.flush()


def reset_pending_after_reject(request: ApprovalRequest) -> None:
    """A rejected approve_draft request hands the BOM back to its author as DRAFT."""
    if request.entity_type != BOM_ENTITY_TYPE:
        return
    if (request.new_value or {}).get("_action") != "approve_draft":
        return
    header = db.session.get(BomHeader, entity_pk(request.entity_id))
    if header is not None and header.status == BOM_STATUS_PENDING:
        header.status = BOM_STATUS_DRAFT
        db.session.flush()


# -- Approval payloads --

def build_approval_payload(action: str, data: dict, *, bom_id: int | None = None) -> dict:
    return {
        "schema_version": BOM_PAYLOAD_SCHEMA_VERSION,
        "_action": action,
        "bom_id": bom_id,
        "input": data,
    }


def build_approve_draft_payload(header: BomHeader) -> dict:
    return {
        "schema_version": BOM_PAYLOAD_SCHEMA_VERSION,
        "_action": "approve_draft",
        "bom_id": header.id,
        "snapshot": bom_snapshot(header),
    }


def build_version_payload(source_bom_id: int) -> dict:
    return {
        "schema_version": BOM_PAYLOAD_SCHEMA_VERSION,
        "_action": "create_version_from",
        "source_bom_id": source_bom_id,
    }


def apply_bom_change(
    entity_id,
    new_value: dict | None,
    actor_user_id: int | None,
    *,
    request_id: int | None = None,
) -> int | None:
    """Replay a BOM change payload; returns the written header id."""
    action = resolve_action(entity_id, new_value)
    payload = new_value or {}

    if action == "create":
        return save_bom_draft(
            payload.get("input") or {}, actor_user_id=actor_user_id, request_id=request_id
        ).id
    if action == "update":
        bom_id = payload.get("bom_id") or entity_pk(entity_id)
        return save_bom_draft(
            payload.get("input") or {}, bom_id=bom_id, actor_user_id=actor_user_id, request_id=request_id
        ).id
    if action == "approve_draft":
        bom_id = payload.get("bom_id") or entity_pk(entity_id)
        return approve_bom(
            bom_id,
            actor_user_id=actor_user_id,
            request_id=request_id,
            expected_snapshot=payload.get("snapshot"),
        ).id
    if action == "create_version_from":
        source_id = payload.get("source_bom_id") or entity_pk(entity_id)
        return create_version_from(source_id, actor_user_id=actor_user_id, request_id=request_id).id
    if action == "delete":
        delete_bom_draft(entity_id)
        return None
    raise ValidationError(f"Unsupported action for BOM: {action}", field="_action")
