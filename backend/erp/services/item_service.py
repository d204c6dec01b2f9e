# Overview: Service-layer operations for items (RM / SFG / FG), SFG shadows, variants and SKUs.

"""
Item & SKU Service

WHY: Finished goods that use semi-finished parts get an auto-managed SFG
"shadow" item; SKU codes are derived from reference names. Both the direct
screen path and the approval applier go through apply_item_change /
apply_sku_change so the side effects are written in exactly one place.

INVARIANTS:
- An FG with uses_sfg is linked to at least one SFG via item_usage
- SFGs are only removed or deactivated when no other FG references them
- sku_code is unique across all SKUs (" 2", " 3" suffixes on collision)
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Color, Grade, Item, ItemUsage, PackingType, ProductGroup, ProductSubgroup, ProductType,
    RmPurchaseRate, Size, Sku, Uom, Variant,
)
from ..models.master_data import (
    ITEM_TYPE_FG, ITEM_TYPE_RM, ITEM_TYPE_SFG, ITEM_TYPES, SFG_PART_STEP, SFG_PART_TYPES, SFG_PART_UPPER,
)
from ..time_utils import utcnow
from ..validation import (
    DuplicateError, ModelValidationPolicy, NotFoundError, ValidationError, coerce_id_list, validate_payload,
)
from .entity_code import build_sku_code, item_code, parse_sfg_name_parts
from .master_data_service import entity_pk, resolve_action, strip_meta


ITEM_SCREENS = {
    ITEM_TYPE_RM: "master_data.products.raw_materials",
    ITEM_TYPE_SFG: "master_data.products.semi_finished",
    ITEM_TYPE_FG: "master_data.products.finished",
}

ITEM_FIELDS = (
    "code", "name", "name_ur", "group_id", "subgroup_id", "product_type_id", "base_uom_id",
    "uses_sfg", "sfg_part_type", "min_stock_level",
)

ITEM_EXTRA_FIELDS = {
    ITEM_TYPE_RM: {"rates"},
    ITEM_TYPE_SFG: {"usage_ids"},
    ITEM_TYPE_FG: set(),
}


def item_type_for_screen(value: str) -> str:
    item_type = (value or "").strip().upper()
    if item_type not in ITEM_TYPES:
        raise NotFoundError(f"Unknown item type: {value}")
    return item_type


def get_item(item_id: int, *, item_type: str | None = None) -> Item:
    item = db.session.get(Item, item_id)
    if item is None or (item_type and item.item_type != item_type):
        raise NotFoundError("Item not found")
    return item


def linked_sfg_ids(fg_id: int) -> list[int]:
    rows = (
        db.session.query(ItemUsage.sfg_item_id)
        .filter(ItemUsage.fg_item_id == fg_id)
        .order_by(ItemUsage.sfg_item_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def _used_elsewhere(sfg_ids: list[int]) -> set[int]:
    if not sfg_ids:
        return set()
    rows = db.session.query(ItemUsage.sfg_item_id).filter(ItemUsage.sfg_item_id.in_(sfg_ids)).distinct().all()
    return {r[0] for r in rows}


def item_snapshot(item: Item) -> dict:
    data = item.to_dict()
    if item.item_type == ITEM_TYPE_RM:
        data["rates"] = [
            {k: v for k, v in r.to_dict().items() if k in ("color_id", "size_id", "purchase_rate", "avg_purchase_rate")}
            for r in db.session.query(RmPurchaseRate).filter_by(rm_item_id=item.id).order_by(RmPurchaseRate.id.asc()).all()
        ]
    elif item.item_type == ITEM_TYPE_SFG:
        rows = db.session.query(ItemUsage.fg_item_id).filter(ItemUsage.sfg_item_id == item.id).all()
        data["usage_ids"] = sorted(r[0] for r in rows)
    else:
        data["sfg_item_ids"] = linked_sfg_ids(item.id)
    return data


def list_items(item_type: str, *, include_inactive: bool = False) -> list[dict]:
    query = db.session.query(Item).filter(Item.item_type == item_type)
    if not include_inactive:
        query = query.filter(Item.is_active.is_(True))
    return [item_snapshot(i) for i in query.order_by(Item.name.asc(), Item.id.asc()).all()]


# -- Input normalization --

def _normalize_rates(value) -> list[dict]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ValidationError("rates must be a list", field="rates")
    rows = []
    for raw in value:
        if not isinstance(raw, dict):
            raise ValidationError("rates must contain objects", field="rates")
        try:
            purchase_rate = float(raw.get("purchase_rate"))
        except (TypeError, ValueError):
            raise ValidationError("purchase_rate must be a number", field="rates")
        if purchase_rate < 0:
            raise ValidationError("purchase_rate cannot be negative", field="rates")
        avg = raw.get("avg_purchase_rate")
        try:
            avg = purchase_rate if avg in (None, "") else float(avg)
        except (TypeError, ValueError):
            raise ValidationError("avg_purchase_rate must be a number", field="rates")
        row = {
            "color_id": int(raw["color_id"]) if raw.get("color_id") else None,
            "size_id": int(raw["size_id"]) if raw.get("size_id") else None,
            "purchase_rate": purchase_rate,
            "avg_purchase_rate": avg,
        }
        if row["color_id"] and db.session.get(Color, row["color_id"]) is None:
            raise ValidationError("Unknown color in rates", field="rates")
        if row["size_id"] and db.session.get(Size, row["size_id"]) is None:
            raise ValidationError("Unknown size in rates", field="rates")
        rows.append(row)
    return rows


def _normalize_usage_ids(value) -> list[int]:
    ids = coerce_id_list(value, field_name="usage_ids")
    if ids:
        found = {
            r[0] for r in db.session.query(Item.id).filter(Item.id.in_(ids), Item.item_type == ITEM_TYPE_FG).all()
        }
        if len(found) != len(ids):
            raise ValidationError("usage_ids must reference finished items", field="usage_ids")
    return ids


_ITEM_REFERENCES = (
    ("group_id", ProductGroup),
    ("subgroup_id", ProductSubgroup),
    ("product_type_id", ProductType),
    ("base_uom_id", Uom),
)


def normalize_item_input(item_type: str, payload: dict, *, existing: Item | None = None) -> dict:
    """Validate an item payload for one product screen and return the change snapshot."""
    required = {"name", "group_id", "base_uom_id"}
    if item_type == ITEM_TYPE_FG:
        required.add("product_type_id")
    fields = set(ITEM_FIELDS)
    if item_type != ITEM_TYPE_FG:
        fields -= {"uses_sfg", "sfg_part_type"}

    policy = ModelValidationPolicy(
        writable_fields=fields,
        required_on_create=required,
        extra_fields=ITEM_EXTRA_FIELDS[item_type],
    )
    values = validate_payload(model=Item, payload=payload, policy=policy, partial=existing is not None)

    for key, model in _ITEM_REFERENCES:
        if values.get(key) is not None and db.session.get(model, values[key]) is None:
            raise ValidationError(f"{key} does not reference an existing record", field=key)

    if item_type == ITEM_TYPE_FG:
        uses_sfg = values.get("uses_sfg", existing.uses_sfg if existing is not None else False)
        if uses_sfg:
            part = (values.get("sfg_part_type") or (existing.sfg_part_type if existing is not None else None) or "")
            part = part.upper()
            if part not in SFG_PART_TYPES:
                raise ValidationError("sfg_part_type must be UPPER or STEP", field="sfg_part_type")
            values["sfg_part_type"] = part
        elif "uses_sfg" in values:
            values["sfg_part_type"] = None

    exclude_id = existing.id if existing is not None else None
    if existing is None and not values.get("code"):
        values["code"] = item_code(values.get("name"))
    if "code" in values and not values["code"]:
        raise ValidationError("code cannot be blank", field="code")

    if values.get("code"):
        query = db.session.query(Item.id).filter(func.lower(Item.code) == values["code"].lower())
        if exclude_id:
            query = query.filter(Item.id != exclude_id)
        if query.first() is not None:
            raise DuplicateError("code")
    if values.get("name"):
        query = db.session.query(Item.id).filter(
            Item.item_type == item_type, func.lower(Item.name) == values["name"].lower(),
        )
        if exclude_id:
            query = query.filter(Item.id != exclude_id)
        if query.first() is not None:
            raise DuplicateError("name")

    if "rates" in values:
        values["rates"] = _normalize_rates(values["rates"])
    if "usage_ids" in values:
        values["usage_ids"] = _normalize_usage_ids(values["usage_ids"])

    values["item_type"] = item_type
    return values


# -- SFG shadow --

def _copy_fg_metadata(sfg: Item, fg: Item, actor_user_id: int | None) -> None:
    sfg.name_ur = fg.name_ur or None
    sfg.group_id = fg.group_id
    sfg.subgroup_id = fg.subgroup_id or None
    sfg.product_type_id = fg.product_type_id or None
    sfg.base_uom_id = fg.base_uom_id
    sfg.updated_by = actor_user_id
    sfg.updated_at = utcnow()


def _link(fg_id: int, sfg_id: int) -> None:
    if db.session.get(ItemUsage, (fg_id, sfg_id)) is None:
        db.session.add(ItemUsage(fg_item_id=fg_id, sfg_item_id=sfg_id))


def _unlink(fg_id: int, sfg_ids) -> None:
    sfg_ids = list(sfg_ids)
    if not sfg_ids:
        return
    db.session.query(ItemUsage).filter(
        ItemUsage.fg_item_id == fg_id, ItemUsage.sfg_item_id.in_(sfg_ids),
    ).delete(synchronize_session="fetch")


def _delete_unreferenced(sfg_ids: list[int]) -> None:
    used = _used_elsewhere(sfg_ids)
    deletable = [i for i in sfg_ids if i not in used]
    if deletable:
        db.session.query(Item).filter(Item.id.in_(deletable)).delete(synchronize_session="fetch")


def ensure_sfg_for_finished(fg: Item, sfg_part_type: str | None, actor_user_id: int | None) -> Item:
    """
    Make sure `fg` is linked to its SFG shadow and return the shadow.

    Relinks an SFG that already carries the derived code; extra linked
    SFGs are unlinked and deleted when no other FG references them.
    """
    suffix = SFG_PART_STEP if (sfg_part_type or "").upper() == SFG_PART_STEP else SFG_PART_UPPER
    sfg_name = f"{fg.name} - {suffix}"
    sfg_code = item_code(f"{fg.code}_{suffix}")

    linked = linked_sfg_ids(fg.id)
    by_code = db.session.query(Item).filter_by(code=sfg_code, item_type=ITEM_TYPE_SFG).first()

    if linked:
        primary_id = linked[0]
        if by_code is not None and by_code.id != primary_id:
            _unlink(fg.id, [primary_id])
            _link(fg.id, by_code.id)
            primary_id = by_code.id
        primary = db.session.get(Item, primary_id)
        primary.code = sfg_code
        primary.name = sfg_name
        _copy_fg_metadata(primary, fg, actor_user_id)
        extras = [i for i in linked[1:] if i != primary_id]
        if extras:
            _unlink(fg.id, extras)
            db.session.flush()
            _delete_unreferenced(extras)
        db.session.flush()
        return primary

    if by_code is not None:
        by_code.name = sfg_name
        _copy_fg_metadata(by_code, fg, actor_user_id)
        _link(fg.id, by_code.id)
        db.session.flush()
        return by_code

    shadow = Item(
        item_type=ITEM_TYPE_SFG,
        code=sfg_code,
        name=sfg_name,
        name_ur=fg.name_ur or None,
        group_id=fg.group_id,
        subgroup_id=fg.subgroup_id or None,
        product_type_id=fg.product_type_id or None,
        base_uom_id=fg.base_uom_id,
        min_stock_level=0,
        created_by=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(shadow)
    db.session.flush()
    _link(fg.id, shadow.id)
    db.session.flush()
    return shadow


def release_sfg_shadows(fg: Item, actor_user_id: int | None) -> list[int]:
    """Unlink every SFG from `fg`; those no other FG uses are deactivated, never deleted."""
    linked = linked_sfg_ids(fg.id)
    _unlink(fg.id, linked)
    db.session.flush()
    orphaned = [i for i in linked if i not in _used_elsewhere(linked)]
    if orphaned:
        db.session.query(Item).filter(Item.id.in_(orphaned)).update(
            {"is_active": False, "updated_by": actor_user_id, "updated_at": utcnow()},
            synchronize_session="fetch",
        )
    return orphaned


# -- Item write routine --

def _replace_rates(item_id: int, rates: list[dict], actor_user_id: int | None) -> None:
    db.session.query(RmPurchaseRate).filter(RmPurchaseRate.rm_item_id == item_id).delete(synchronize_session="fetch")
    for rate in rates:
        purchase_rate = rate.get("purchase_rate")
        avg = rate.get("avg_purchase_rate")
        db.session.add(RmPurchaseRate(
            rm_item_id=item_id,
            color_id=rate.get("color_id") or None,
            size_id=rate.get("size_id") or None,
            purchase_rate=purchase_rate,
            avg_purchase_rate=purchase_rate if avg is None else avg,
            created_by=actor_user_id,
            created_at=utcnow(),
        ))


def _replace_usage(sfg_id: int, fg_ids) -> None:
    db.session.query(ItemUsage).filter(ItemUsage.sfg_item_id == sfg_id).delete(synchronize_session="fetch")
    for fg_id in sorted({int(i) for i in fg_ids}):
        db.session.add(ItemUsage(fg_item_id=fg_id, sfg_item_id=sfg_id))


def apply_item_change(entity_id, new_value: dict | None, actor_user_id: int | None) -> int | None:
    action = resolve_action(entity_id, new_value)
    existing = get_item(entity_pk(entity_id)) if action != "create" else None
    item_type = (new_value or {}).get("item_type") or (existing.item_type if existing else None)
    if item_type not in ITEM_TYPES:
        raise ValidationError("Item type is required", field="item_type")

    if action == "delete":
        if item_type == ITEM_TYPE_FG:
            linked = linked_sfg_ids(existing.id)
            _unlink(existing.id, linked)
            db.session.flush()
            _delete_unreferenced(linked)
        elif item_type == ITEM_TYPE_SFG:
            db.session.query(ItemUsage).filter(ItemUsage.sfg_item_id == existing.id).delete(synchronize_session="fetch")
        else:
            db.session.query(RmPurchaseRate).filter(RmPurchaseRate.rm_item_id == existing.id).delete(synchronize_session="fetch")
        db.session.delete(existing)
        db.session.flush()
        return None

    if action == "toggle":
        flag = bool(new_value.get("is_active"))
        existing.is_active = flag
        existing.updated_by = actor_user_id
        existing.updated_at = utcnow()
        if item_type == ITEM_TYPE_FG:
            linked = linked_sfg_ids(existing.id)
            if linked:
                db.session.query(Item).filter(Item.id.in_(linked)).update(
                    {"is_active": flag, "updated_by": actor_user_id, "updated_at": utcnow()},
                    synchronize_session="fetch",
                )
        db.session.flush()
        return existing.id

    values = strip_meta(new_value)

    if action == "create":
        item = Item(
            item_type=item_type,
            code=values.get("code") or item_code(values.get("name")),
            name=values.get("name"),
            name_ur=values.get("name_ur") or None,
            group_id=values.get("group_id") or None,
            subgroup_id=values.get("subgroup_id") or None,
            product_type_id=values.get("product_type_id") or None,
            base_uom_id=values.get("base_uom_id") or None,
            uses_sfg=bool(values.get("uses_sfg")) if item_type == ITEM_TYPE_FG else False,
            sfg_part_type=(values.get("sfg_part_type") or None) if item_type == ITEM_TYPE_FG else None,
            min_stock_level=values.get("min_stock_level") if values.get("min_stock_level") is not None else 0,
            created_by=actor_user_id,
            created_at=utcnow(),
        )
        db.session.add(item)
        db.session.flush()
    elif action == "update":
        item = existing
        was_using_sfg = bool(existing.uses_sfg)
        for key in ITEM_FIELDS:
            if key not in values:
                continue
            if key in ("code", "name") and not values[key]:
                continue
            setattr(item, key, values[key])
        item.updated_by = actor_user_id
        item.updated_at = utcnow()
        db.session.flush()
    else:
        raise ValidationError(f"Unsupported action for ITEM: {action}", field="_action")

    if item_type == ITEM_TYPE_RM and (action == "create" or "rates" in new_value):
        _replace_rates(item.id, new_value.get("rates") or [], actor_user_id)
    if item_type == ITEM_TYPE_SFG and (action == "create" or "usage_ids" in new_value):
        _replace_usage(item.id, new_value.get("usage_ids") or [])
    if item_type == ITEM_TYPE_FG:
        if item.uses_sfg:
            ensure_sfg_for_finished(item, item.sfg_part_type, actor_user_id)
        elif action == "update" and was_using_sfg:
            release_sfg_shadows(item, actor_user_id)
    db.session.flush()
    return item.id


# -- Variants / SKUs --

SKU_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"item_id", "size_id", "grade_id", "color_id", "packing_type_id", "sale_rate"},
    required_on_create={"item_id"},
)
SKU_UPDATE_POLICY = ModelValidationPolicy(writable_fields={"sale_rate"})

_VARIANT_REFERENCES = (
    ("size_id", Size),
    ("grade_id", Grade),
    ("color_id", Color),
    ("packing_type_id", PackingType),
)


def get_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError("SKU not found")
    return variant


def sku_snapshot(variant: Variant) -> dict:
    data = variant.to_dict()
    sku = variant.skus[0] if variant.skus else None
    data["sku_id"] = sku.id if sku else None
    data["sku_code"] = sku.sku_code if sku else None
    data["item_name"] = variant.item.name if variant.item else None
    return data


def list_skus(*, include_inactive: bool = False, item_id: int | None = None) -> list[dict]:
    query = db.session.query(Variant)
    if not include_inactive:
        query = query.filter(Variant.is_active.is_(True))
    if item_id is not None:
        query = query.filter(Variant.item_id == item_id)
    return [sku_snapshot(v) for v in query.order_by(Variant.id.asc()).all()]


def normalize_sku_input(payload: dict, *, existing: Variant | None = None) -> dict:
    policy = SKU_UPDATE_POLICY if existing is not None else SKU_CREATE_POLICY
    values = validate_payload(model=Variant, payload=payload, policy=policy, partial=existing is not None)

    if values.get("sale_rate") is not None and float(values["sale_rate"]) < 0:
        raise ValidationError("sale_rate cannot be negative", field="sale_rate")
    if existing is not None:
        return values

    item = db.session.get(Item, values["item_id"])
    if item is None or item.item_type not in (ITEM_TYPE_FG, ITEM_TYPE_SFG):
        raise ValidationError("item_id must reference a finished or semi-finished item", field="item_id")
    for key, model in _VARIANT_REFERENCES:
        if values.get(key) is not None and db.session.get(model, values[key]) is None:
            raise ValidationError(f"{key} does not reference an existing record", field=key)

    duplicate = db.session.query(Variant.id).filter(
        Variant.item_id == values["item_id"],
        *[
            (getattr(Variant, key).is_(None) if values.get(key) is None else getattr(Variant, key) == values[key])
            for key, _ in _VARIANT_REFERENCES
        ],
    ).first()
    if duplicate is not None:
        raise ValidationError("This variant already exists.", field="item_id")
    return values


def _name_of(model, row_id) -> str | None:
    if not row_id:
        return None
    row = db.session.get(model, row_id)
    return row.name if row else None


def derive_sku_code(item: Item, values: dict) -> str:
    size = _name_of(Size, values.get("size_id"))
    color = _name_of(Color, values.get("color_id"))
    if item.item_type == ITEM_TYPE_SFG:
        base, suffix = parse_sfg_name_parts(item.name, item.code)
        return build_sku_code(base, [size, color, suffix])
    grade = _name_of(Grade, values.get("grade_id"))
    packing = _name_of(PackingType, values.get("packing_type_id"))
    return build_sku_code(item.name, [size, packing, grade, color])


def ensure_unique_sku(base_code: str) -> str:
    candidate = base_code
    counter = 2
    while db.session.query(Sku.id).filter(Sku.sku_code == candidate).first() is not None:
        candidate = f"{base_code} {counter}"
        counter += 1
    return candidate


def apply_sku_change(entity_id, new_value: dict | None, actor_user_id: int | None) -> int | None:
    """Entity id is the variant id; the SKU row follows its variant."""
    action = resolve_action(entity_id, new_value)

    if action == "delete":
        variant = get_variant(entity_pk(entity_id))
        db.session.query(Sku).filter(Sku.variant_id == variant.id).delete(synchronize_session=False)
        db.session.delete(variant)
        db.session.flush()
        return None

    if action == "toggle":
        variant = get_variant(entity_pk(entity_id))
        flag = bool(new_value.get("is_active"))
        variant.is_active = flag
        variant.updated_by = actor_user_id
        variant.updated_at = utcnow()
        db.session.query(Sku).filter(Sku.variant_id == variant.id).update(
            {"is_active": flag}, synchronize_session=False,
        )
        db.session.flush()
        return variant.id

    if action == "update":
        variant = get_variant(entity_pk(entity_id))
        variant.sale_rate = new_value.get("sale_rate") if new_value.get("sale_rate") is not None else 0
        variant.updated_by = actor_user_id
        variant.updated_at = utcnow()
        db.session.flush()
        return variant.id

    if action != "create":
        raise ValidationError(f"Unsupported action for SKU: {action}", field="_action")

    values = strip_meta(new_value)
    item = db.session.get(Item, values.get("item_id"))
    if item is None:
        raise ValidationError("item_id does not reference an existing record", field="item_id")

    variant = Variant(
        item_id=item.id,
        size_id=values.get("size_id") or None,
        grade_id=values.get("grade_id") or None,
        color_id=values.get("color_id") or None,
        packing_type_id=values.get("packing_type_id") or None,
        sale_rate=values.get("sale_rate") if values.get("sale_rate") is not None else 0,
        is_active=values.get("is_active") is not False,
        created_by=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(variant)
    db.session.flush()

    sku_code = ensure_unique_sku(derive_sku_code(item, values))
    db.session.add(Sku(variant_id=variant.id, sku_code=sku_code, is_active=True))
    db.session.flush()
    return variant.id
