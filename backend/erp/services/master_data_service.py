# Overview: Service-layer operations for basic-info catalogs, accounts and parties.

"""
Master Data Service (basic info, accounts, parties)

WHY: The direct-apply path of every screen and the approval applier must
write these rows identically, so each entity exposes one write routine
(`apply_*_change`) driven by the `_action` tag of a change payload.

DESIGN:
- normalize_*_input validates a client payload and returns the snapshot
  that is either applied immediately or stored on an approval request
- apply_*_change replays such a snapshot; the caller owns the transaction
- Child maps (item_types, branch_ids) are replaced wholesale when present
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Account, AccountBranch, AccountGroup, Branch, City, Color, Department, Grade, PackingType,
    Party, PartyBranch, PartyGroup, ProductGroup, ProductGroupItemType, ProductSubgroup,
    ProductSubgroupItemType, ProductType, Size, SizeItemType, Uom, UomConversion,
)
from ..models.master_data import ACCOUNT_TYPES, ITEM_TYPES, PARTY_TYPES
from ..time_utils import utcnow
from ..validation import (
    DuplicateError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_id_list,
    validate_payload,
)
from .entity_code import generate_unique_code


# Keys carried by change payloads that never map onto a column
META_KEYS = frozenset({"item_types", "branch_ids", "_summary", "_action", "rates", "usage_ids", "schema_version"})

CHANGE_ACTIONS = ("create", "update", "toggle", "delete", "approve_draft", "create_version_from")


def strip_meta(value: dict | None) -> dict:
    return {k: v for k, v in (value or {}).items() if k not in META_KEYS}


def resolve_action(entity_id, new_value: dict | None) -> str:
    """`_action` tag, else delete for a missing payload, else create for NEW, else update."""
    if isinstance(new_value, dict) and new_value.get("_action"):
        action = str(new_value["_action"])
        if action not in CHANGE_ACTIONS:
            raise ValidationError(f"Unsupported change action: {action}", field="_action")
        return action
    if new_value is None:
        return "delete"
    return "create" if is_new_entity(entity_id) else "update"


def is_new_entity(entity_id) -> bool:
    return entity_id in (None, "", "NEW")


def entity_pk(entity_id) -> int:
    try:
        return int(entity_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid entity id: {entity_id}", field="entity_id")


def _stamp_create(row, actor_user_id):
    row.created_by = actor_user_id
    row.created_at = utcnow()


def _stamp_update(row, actor_user_id):
    row.updated_by = actor_user_id
    row.updated_at = utcnow()


def _assign_columns(row, values: dict) -> None:
    columns = {c.key for c in row.__mapper__.columns}
    for key, value in values.items():
        if key in columns and key != "id":
            setattr(row, key, value)


# -- Basic info registry --

@dataclass(frozen=True)
class BasicInfoType:
    slug: str
    entity_type: str
    model: type
    label: str
    fields: tuple
    required: tuple = ("name",)
    item_type_model: type | None = None
    item_type_key: str | None = None
    has_code: bool = False
    # Columns that partition uniqueness of code and name
    unique_within: tuple = ()
    name_field: str | None = "name"
    # Duplicate check performed by the write routine itself
    apply_duplicate_check: str | None = None
    references: dict = field(default_factory=dict)

    @property
    def scope_key(self) -> str:
        return f"master_data.basic_info.{self.slug.replace('-', '_')}"


_NAMED = ("name", "name_ur")

BASIC_INFO_TYPES: dict[str, BasicInfoType] = {
    t.slug: t
    for t in (
        BasicInfoType("units", "UOM", Uom, "Unit", ("code", *_NAMED), has_code=True),
        BasicInfoType(
            "sizes", "SIZE", Size, "Size", _NAMED,
            item_type_model=SizeItemType, item_type_key="size_id",
            apply_duplicate_check="exact",
        ),
        BasicInfoType("colors", "COLOR", Color, "Color", _NAMED, apply_duplicate_check="ci"),
        BasicInfoType("grades", "GRADE", Grade, "Grade", _NAMED),
        BasicInfoType("packing-types", "PACKING_TYPE", PackingType, "Packing Type", _NAMED),
        BasicInfoType("cities", "CITY", City, "City", _NAMED),
        BasicInfoType(
            "product-groups", "PRODUCT_GROUP", ProductGroup, "Product Group", _NAMED,
            item_type_model=ProductGroupItemType, item_type_key="group_id",
        ),
        BasicInfoType(
            "product-subgroups", "PRODUCT_SUBGROUP", ProductSubgroup, "Product Subgroup",
            ("group_id", "code", *_NAMED),
            item_type_model=ProductSubgroupItemType, item_type_key="subgroup_id",
            has_code=True, unique_within=("group_id",),
            references={"group_id": ProductGroup},
        ),
        BasicInfoType("product-types", "PRODUCT_TYPE", ProductType, "Product Type", ("code", *_NAMED), has_code=True),
        BasicInfoType("party-groups", "PARTY_GROUP", PartyGroup, "Party Group", ("party_type", *_NAMED)),
        BasicInfoType(
            "account-groups", "ACCOUNT_GROUP", AccountGroup, "Account Group",
            ("account_type", "code", *_NAMED, "is_contra"),
            required=("account_type", "name"), has_code=True, unique_within=("account_type",),
        ),
        BasicInfoType("departments", "DEPARTMENT", Department, "Department", (*_NAMED, "is_production")),
        BasicInfoType(
            "uom-conversions", "UOM_CONVERSION", UomConversion, "UOM Conversion",
            ("from_uom_id", "to_uom_id", "factor"),
            required=("from_uom_id", "to_uom_id", "factor"), name_field=None,
            references={"from_uom_id": Uom, "to_uom_id": Uom},
        ),
    )
}

BASIC_INFO_BY_ENTITY = {t.entity_type: t for t in BASIC_INFO_TYPES.values()}


def get_basic_info_type(slug: str) -> BasicInfoType:
    info = BASIC_INFO_TYPES.get(slug)
    if info is None:
        raise NotFoundError(f"Unknown basic info type: {slug}")
    return info


def _item_types_of(info: BasicInfoType, row_id: int) -> list[str]:
    column = getattr(info.item_type_model, info.item_type_key)
    rows = db.session.query(info.item_type_model.item_type).filter(column == row_id).all()
    return sorted(r[0] for r in rows)


def basic_info_snapshot(info: BasicInfoType, row) -> dict:
    data = row.to_dict()
    if info.item_type_model is not None:
        data["item_types"] = _item_types_of(info, row.id)
    return data


def list_basic_info(slug: str, *, include_inactive: bool = False) -> list[dict]:
    info = get_basic_info_type(slug)
    query = db.session.query(info.model)
    if not include_inactive:
        query = query.filter(info.model.is_active.is_(True))
    order = getattr(info.model, info.name_field) if info.name_field else info.model.id
    return [basic_info_snapshot(info, row) for row in query.order_by(order.asc(), info.model.id.asc()).all()]


def get_basic_info_row(info: BasicInfoType, row_id: int):
    row = db.session.get(info.model, row_id)
    if row is None:
        raise NotFoundError(f"{info.label} not found")
    return row


def _normalize_item_types(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    cleaned = sorted({str(v).strip().upper() for v in value if str(v).strip()})
    bad = [v for v in cleaned if v not in ITEM_TYPES]
    if bad:
        raise ValidationError(f"Invalid item type: {', '.join(bad)}", field="item_types")
    return cleaned


def _check_references(references: dict, values: dict) -> None:
    for key, model in references.items():
        ref_id = values.get(key)
        if ref_id is None:
            continue
        if db.session.get(model, ref_id) is None:
            raise ValidationError(f"{key} does not reference an existing record", field=key)


def _check_unique(info: BasicInfoType, values: dict, exclude_id: int | None) -> None:
    model = info.model
    for column_name in ("code", info.name_field):
        if not column_name or values.get(column_name) in (None, ""):
            continue
        column = getattr(model, column_name)
        query = db.session.query(model.id).filter(func.lower(column) == str(values[column_name]).lower())
        for scope_col in info.unique_within:
            query = query.filter(getattr(model, scope_col) == values.get(scope_col))
        if exclude_id:
            query = query.filter(model.id != exclude_id)
        if query.first() is not None:
            raise DuplicateError(column_name)


def normalize_basic_info_input(info: BasicInfoType, payload: dict, *, existing=None) -> dict:
    """
    Validate a basic-info payload and return the change snapshot.

    Codes are derived from the name when the client leaves them blank.
    """
    policy = ModelValidationPolicy(
        writable_fields=set(info.fields),
        required_on_create=set(info.required),
        extra_fields={"item_types"} if info.item_type_model is not None else set(),
    )
    values = validate_payload(model=info.model, payload=payload, policy=policy, partial=existing is not None)

    if "party_type" in values and values["party_type"] not in PARTY_TYPES:
        raise ValidationError("Invalid party type", field="party_type")
    if "account_type" in values and values["account_type"] not in ACCOUNT_TYPES:
        raise ValidationError("Invalid account type", field="account_type")

    merged = {k: getattr(existing, k) for k in info.fields} if existing is not None else {}
    merged.update(values)

    if info.name_field and not merged.get(info.name_field):
        raise ValidationError("This field is required.", field=info.name_field)

    if info.model is UomConversion:
        if merged.get("from_uom_id") == merged.get("to_uom_id"):
            raise ValidationError("From and to units must differ", field="to_uom_id")
        if merged.get("factor") is not None and float(merged["factor"]) <= 0:
            raise ValidationError("factor must be greater than zero", field="factor")
        pair = db.session.query(UomConversion.id).filter_by(
            from_uom_id=merged.get("from_uom_id"), to_uom_id=merged.get("to_uom_id"),
        )
        if existing is not None:
            pair = pair.filter(UomConversion.id != existing.id)
        if pair.first() is not None:
            raise ValidationError("A conversion for these units already exists.", field="to_uom_id")

    _check_references(info.references, merged)

    if info.has_code and not merged.get("code"):
        values["code"] = merged["code"] = generate_unique_code(
            name=merged.get(info.name_field), model=info.model,
            exclude_id=existing.id if existing is not None else None,
        )

    _check_unique(info, merged, existing.id if existing is not None else None)

    if "item_types" in values:
        values["item_types"] = _normalize_item_types(values["item_types"])
    elif existing is None and info.item_type_model is not None:
        values["item_types"] = list(ITEM_TYPES)
    return values


def _replace_item_types(info: BasicInfoType, row_id: int, item_types) -> None:
    column = getattr(info.item_type_model, info.item_type_key)
    db.session.query(info.item_type_model).filter(column == row_id).delete(synchronize_session=False)
    for item_type in item_types:
        db.session.add(info.item_type_model(**{info.item_type_key: row_id, "item_type": item_type}))


def _duplicate_name_on_apply(info: BasicInfoType, name, exclude_id: int | None) -> None:
    if not info.apply_duplicate_check or not name:
        return
    column = getattr(info.model, info.name_field)
    if info.apply_duplicate_check == "ci":
        query = db.session.query(info.model.id).filter(func.lower(column) == str(name).lower())
    else:
        query = db.session.query(info.model.id).filter(column == name)
    if exclude_id:
        query = query.filter(info.model.id != exclude_id)
    if query.first() is not None:
        raise DuplicateError("name")


def apply_basic_info_change(entity_type: str, entity_id, new_value: dict | None, actor_user_id: int | None) -> int | None:
    """Create / update / toggle / delete one basic-info row. Returns the row id."""
    info = BASIC_INFO_BY_ENTITY[entity_type]
    action = resolve_action(entity_id, new_value)

    if action == "delete":
        row = get_basic_info_row(info, entity_pk(entity_id))
        if info.item_type_model is not None:
            _replace_item_types(info, row.id, [])
        db.session.delete(row)
        db.session.flush()
        return None

    values = strip_meta(new_value)

    if action == "toggle":
        row = get_basic_info_row(info, entity_pk(entity_id))
        row.is_active = bool(values.get("is_active"))
        _stamp_update(row, actor_user_id)
        db.session.flush()
        return row.id

    if action == "create":
        _duplicate_name_on_apply(info, values.get(info.name_field) if info.name_field else None, None)
        row = info.model()
        _assign_columns(row, values)
        _stamp_create(row, actor_user_id)
        db.session.add(row)
        db.session.flush()
    elif action == "update":
        row = get_basic_info_row(info, entity_pk(entity_id))
        if info.name_field and info.name_field in values:
            _duplicate_name_on_apply(info, values[info.name_field], row.id)
        _assign_columns(row, values)
        _stamp_update(row, actor_user_id)
        db.session.flush()
    else:
        raise ValidationError(f"Unsupported action for {entity_type}: {action}", field="_action")

    if info.item_type_model is not None and isinstance((new_value or {}).get("item_types"), list):
        _replace_item_types(info, row.id, new_value["item_types"])
        db.session.flush()
    return row.id


# -- Accounts / parties --

ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "name_ur", "subgroup_id", "lock_posting"},
    required_on_create={"name", "subgroup_id"},
    extra_fields={"branch_ids"},
)

PARTY_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "name_ur", "party_type", "group_id", "city_id", "address",
        "phone1", "phone2", "credit_allowed", "credit_limit",
    },
    required_on_create={"name", "party_type"},
    extra_fields={"branch_ids"},
)

BRANCH_MAPS = {
    "ACCOUNT": (Account, AccountBranch, "account_id"),
    "PARTY": (Party, PartyBranch, "party_id"),
}


def _branch_ids_of(map_model, key: str, row_id: int) -> list[int]:
    rows = db.session.query(map_model.branch_id).filter(getattr(map_model, key) == row_id).all()
    return sorted(r[0] for r in rows)


def account_party_snapshot(entity_type: str, row) -> dict:
    _, map_model, key = BRANCH_MAPS[entity_type]
    data = row.to_dict()
    data["branch_ids"] = _branch_ids_of(map_model, key, row.id)
    return data


def _list_branch_mapped(entity_type: str, *, include_inactive: bool, branch_id: int | None) -> list[dict]:
    model, map_model, key = BRANCH_MAPS[entity_type]
    query = db.session.query(model)
    if not include_inactive:
        query = query.filter(model.is_active.is_(True))
    if branch_id is not None:
        query = query.join(map_model, getattr(map_model, key) == model.id).filter(map_model.branch_id == branch_id)
    return [account_party_snapshot(entity_type, r) for r in query.order_by(model.name.asc(), model.id.asc()).all()]


def list_accounts(*, include_inactive: bool = False, branch_id: int | None = None) -> list[dict]:
    return _list_branch_mapped("ACCOUNT", include_inactive=include_inactive, branch_id=branch_id)


def list_parties(*, include_inactive: bool = False, branch_id: int | None = None) -> list[dict]:
    return _list_branch_mapped("PARTY", include_inactive=include_inactive, branch_id=branch_id)


def get_account_party(entity_type: str, row_id: int):
    model = BRANCH_MAPS[entity_type][0]
    row = db.session.get(model, row_id)
    if row is None:
        raise NotFoundError(f"{entity_type.title()} not found")
    return row


def _normalize_branch_ids(value) -> list[int]:
    ids = coerce_id_list(value, field_name="branch_ids")
    if ids:
        found = {r[0] for r in db.session.query(Branch.id).filter(Branch.id.in_(ids)).all()}
        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationError("Unknown branch selected", field="branch_ids")
    return ids


def _check_code_name_unique(model, values: dict, exclude_id: int | None) -> None:
    for column_name in ("code", "name"):
        if not values.get(column_name):
            continue
        query = db.session.query(model.id).filter(
            func.lower(getattr(model, column_name)) == str(values[column_name]).lower()
        )
        if exclude_id:
            query = query.filter(model.id != exclude_id)
        if query.first() is not None:
            raise DuplicateError(column_name)


def normalize_account_input(payload: dict, *, existing: Account | None = None) -> dict:
    values = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=existing is not None)
    exclude_id = existing.id if existing is not None else None

    if values.get("subgroup_id") is not None and db.session.get(AccountGroup, values["subgroup_id"]) is None:
        raise ValidationError("subgroup_id does not reference an existing record", field="subgroup_id")
    if existing is None and not values.get("code"):
        values["code"] = generate_unique_code(name=values.get("name"), model=Account)
    _check_code_name_unique(Account, values, exclude_id)
    if "branch_ids" in values:
        values["branch_ids"] = _normalize_branch_ids(values["branch_ids"])
    return values


def normalize_party_input(payload: dict, *, existing: Party | None = None) -> dict:
    """
    Party payloads are patches: credit fields absent from an update stay as
    stored. credit_allowed absent on create means no credit.
    """
    values = validate_payload(model=Party, payload=payload, policy=PARTY_POLICY, partial=existing is not None)
    exclude_id = existing.id if existing is not None else None

    if "party_type" in values and values["party_type"] not in PARTY_TYPES:
        raise ValidationError("Invalid party type", field="party_type")
    for key, model in (("group_id", PartyGroup), ("city_id", City)):
        if values.get(key) is not None and db.session.get(model, values[key]) is None:
            raise ValidationError(f"{key} does not reference an existing record", field=key)
    if values.get("credit_limit") is not None and float(values["credit_limit"]) < 0:
        raise ValidationError("credit_limit cannot be negative", field="credit_limit")

    if existing is None:
        values.setdefault("credit_allowed", False)
        if not values.get("code"):
            values["code"] = generate_unique_code(name=values.get("name"), model=Party)

    _check_code_name_unique(Party, values, exclude_id)
    if "branch_ids" in values:
        values["branch_ids"] = _normalize_branch_ids(values["branch_ids"])
    return coerce_credit_limit(values, existing=existing)


def coerce_credit_limit(values: dict, *, existing: Party | None = None) -> dict:
    """
    Force credit_limit to 0 whenever the effective credit_allowed is false.

    Only touches credit_limit when the patch mentions either credit field.
    """
    if "credit_allowed" not in values and "credit_limit" not in values:
        return values
    allowed = values.get("credit_allowed")
    if allowed is None:
        allowed = bool(existing.credit_allowed) if existing is not None else False
    if not allowed:
        values["credit_limit"] = 0
    elif values.get("credit_limit") is None and existing is None:
        values["credit_limit"] = 0
    return values


def _replace_branch_map(map_model, key: str, row_id: int, branch_ids) -> None:
    db.session.query(map_model).filter(getattr(map_model, key) == row_id).delete(synchronize_session=False)
    for branch_id in sorted({int(b) for b in branch_ids}):
        db.session.add(map_model(**{key: row_id, "branch_id": branch_id}))


def apply_account_party_change(entity_type: str, entity_id, new_value: dict | None, actor_user_id: int | None) -> int | None:
    model, map_model, key = BRANCH_MAPS[entity_type]
    action = resolve_action(entity_id, new_value)

    if action == "delete":
        row = get_account_party(entity_type, entity_pk(entity_id))
        _replace_branch_map(map_model, key, row.id, [])
        db.session.delete(row)
        db.session.flush()
        return None

    values = strip_meta(new_value)

    if action == "toggle":
        row = get_account_party(entity_type, entity_pk(entity_id))
        row.is_active = bool(values.get("is_active"))
        _stamp_update(row, actor_user_id)
        db.session.flush()
        return row.id

    if action == "create":
        if entity_type == "PARTY":
            values.setdefault("credit_allowed", False)
            values = coerce_credit_limit(values)
        row = model()
        _assign_columns(row, values)
        _stamp_create(row, actor_user_id)
        db.session.add(row)
        db.session.flush()
    elif action == "update":
        row = get_account_party(entity_type, entity_pk(entity_id))
        if entity_type == "PARTY":
            values = coerce_credit_limit(values, existing=row)
        _assign_columns(row, values)
        _stamp_update(row, actor_user_id)
        db.session.flush()
    else:
        raise ValidationError(f"Unsupported action for {entity_type}: {action}", field="_action")

    if isinstance((new_value or {}).get("branch_ids"), list):
        _replace_branch_map(map_model, key, row.id, new_value["branch_ids"])
        db.session.flush()
    return row.id
