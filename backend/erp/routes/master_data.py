# Overview: Flask API routes for master-data screens: basic info, accounts, parties, items and SKUs.

"""
Master data screen routes

Every screen exposes the same contract:
- GET    <screen>                list (?include_inactive=1)
- POST   <screen>                create
- PUT    <screen>/<id>           update (patch semantics)
- POST   <screen>/<id>/toggle    flip is_active
- DELETE <screen>/<id>           hard delete

Reads need can_view on the screen scope. Mutations go through the approval
gateway, which applies them directly, queues them, or denies them.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_scope
from ..services import item_service, master_data_service
from ..services.permission_service import require_scope_permission
from .screen_adapter import error_response, include_inactive, request_payload, submit_change, toggle_payload


master_data_bp = Blueprint("master_data", __name__, url_prefix="/api/master-data")

ACCOUNTS_SCOPE = "master_data.accounts"
PARTIES_SCOPE = "master_data.parties"
SKUS_SCOPE = "master_data.products.skus"

_VERBS = {"create": "Create", "update": "Update", "toggle": "Toggle", "hard_delete": "Delete"}


def _summary(action: str, label: str, old_value: dict | None, new_value: dict | None, entity_id) -> str:
    name = (new_value or {}).get("name") or (old_value or {}).get("name") or (old_value or {}).get("sku_code")
    return f"{_VERBS.get(action, action.title())} {label}: {name or entity_id}"


def _change(*, scope_key, entity_type, label, action, entity_id, old_value, new_value, render):
    return submit_change(
        scope_key=scope_key,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=_summary(action, label, old_value, new_value, entity_id),
        old_value=old_value,
        new_value=new_value,
        render=render,
        snapshot=lambda row_id: render(row_id)["row"],
    )


# =============================================================================
# BASIC INFO
# =============================================================================

def _basic_info(slug: str):
    info = master_data_service.get_basic_info_type(slug)
    return info, (lambda row_id: {"row": master_data_service.basic_info_snapshot(
        info, master_data_service.get_basic_info_row(info, row_id),
    )})


@master_data_bp.get("/basic-info/<slug>")
@require_auth
def list_basic_info_route(slug: str):
    try:
        info = master_data_service.get_basic_info_type(slug)
        require_scope_permission(g.access, info.scope_key, "view")
        rows = master_data_service.list_basic_info(slug, include_inactive=include_inactive())
        return jsonify({"type": info.slug, "label": info.label, "rows": rows}), 200
    except Exception as e:
        return error_response(e, "Failed to list basic info")


@master_data_bp.post("/basic-info/<slug>")
@require_auth
def create_basic_info_route(slug: str):
    try:
        info, render = _basic_info(slug)
        values = master_data_service.normalize_basic_info_input(info, request_payload())
        return _change(
            scope_key=info.scope_key, entity_type=info.entity_type, label=info.label,
            action="create", entity_id="NEW", old_value=None,
            new_value={"_action": "create", **values}, render=render,
        )
    except Exception as e:
        return error_response(e, "Failed to create basic info row")


@master_data_bp.put("/basic-info/<slug>/<int:row_id>")
@require_auth
def update_basic_info_route(slug: str, row_id: int):
    try:
        info, render = _basic_info(slug)
        row = master_data_service.get_basic_info_row(info, row_id)
        old_value = master_data_service.basic_info_snapshot(info, row)
        values = master_data_service.normalize_basic_info_input(info, request_payload(), existing=row)
        return _change(
            scope_key=info.scope_key, entity_type=info.entity_type, label=info.label,
            action="update", entity_id=row_id, old_value=old_value,
            new_value={"_action": "update", **values}, render=render,
        )
    except Exception as e:
        return error_response(e, "Failed to update basic info row")


@master_data_bp.post("/basic-info/<slug>/<int:row_id>/toggle")
@require_auth
def toggle_basic_info_route(slug: str, row_id: int):
    try:
        info, render = _basic_info(slug)
        row = master_data_service.get_basic_info_row(info, row_id)
        return _change(
            scope_key=info.scope_key, entity_type=info.entity_type, label=info.label,
            action="toggle", entity_id=row_id, old_value=master_data_service.basic_info_snapshot(info, row),
            new_value=toggle_payload(row.is_active), render=render,
        )
    except Exception as e:
        return error_response(e, "Failed to toggle basic info row")


@master_data_bp.delete("/basic-info/<slug>/<int:row_id>")
@require_auth
def delete_basic_info_route(slug: str, row_id: int):
    try:
        info, render = _basic_info(slug)
        row = master_data_service.get_basic_info_row(info, row_id)
        return _change(
            scope_key=info.scope_key, entity_type=info.entity_type, label=info.label,
            action="hard_delete", entity_id=row_id, old_value=master_data_service.basic_info_snapshot(info, row),
            new_value=None, render=render,
        )
    except Exception as e:
        return error_response(e, "Failed to delete basic info row")


# =============================================================================
# ACCOUNTS / PARTIES
# =============================================================================

_BRANCH_MAPPED = {
    "accounts": ("ACCOUNT", ACCOUNTS_SCOPE, "Account", master_data_service.normalize_account_input),
    "parties": ("PARTY", PARTIES_SCOPE, "Party", master_data_service.normalize_party_input),
}


def _branch_mapped(kind: str):
    entity_type, scope_key, label, normalize = _BRANCH_MAPPED[kind]

    def render(row_id):
        row = master_data_service.get_account_party(entity_type, row_id)
        return {"row": master_data_service.account_party_snapshot(entity_type, row)}

    return entity_type, scope_key, label, normalize, render


@master_data_bp.get("/accounts")
@require_auth
@require_scope(ACCOUNTS_SCOPE, "view")
def list_accounts_route():
    rows = master_data_service.list_accounts(
        include_inactive=include_inactive(), branch_id=request.args.get("branch_id", type=int),
    )
    return jsonify({"rows": rows}), 200


@master_data_bp.get("/parties")
@require_auth
@require_scope(PARTIES_SCOPE, "view")
def list_parties_route():
    rows = master_data_service.list_parties(
        include_inactive=include_inactive(), branch_id=request.args.get("branch_id", type=int),
    )
    return jsonify({"rows": rows}), 200


@master_data_bp.post("/<any(accounts, parties):kind>")
@require_auth
def create_branch_mapped_route(kind: str):
    try:
        entity_type, scope_key, label, normalize, render = _branch_mapped(kind)
        values = normalize(request_payload())
        return _change(
            scope_key=scope_key, entity_type=entity_type, label=label,
            action="create", entity_id="NEW", old_value=None,
            new_value={"_action": "create", **values}, render=render,
        )
    except Exception as e:
        return error_response(e, f"Failed to create {kind}")


@master_data_bp.put("/<any(accounts, parties):kind>/<int:row_id>")
@require_auth
def update_branch_mapped_route(kind: str, row_id: int):
    try:
        entity_type, scope_key, label, normalize, render = _branch_mapped(kind)
        row = master_data_service.get_account_party(entity_type, row_id)
        old_value = master_data_service.account_party_snapshot(entity_type, row)
        values = normalize(request_payload(), existing=row)
        return _change(
            scope_key=scope_key, entity_type=entity_type, label=label,
            action="update", entity_id=row_id, old_value=old_value,
            new_value={"_action": "update", **values}, render=render,
        )
    except Exception as e:
        return error_response(e, f"Failed to update {kind}")


@master_data_bp.post("/<any(accounts, parties):kind>/<int:row_id>/toggle")
@require_auth
def toggle_branch_mapped_route(kind: str, row_id: int):
    try:
        entity_type, scope_key, label, _, render = _branch_mapped(kind)
        row = master_data_service.get_account_party(entity_type, row_id)
        return _change(
            scope_key=scope_key, entity_type=entity_type, label=label,
            action="toggle", entity_id=row_id,
            old_value=master_data_service.account_party_snapshot(entity_type, row),
            new_value=toggle_payload(row.is_active), render=render,
        )
    except Exception as e:
        return error_response(e, f"Failed to toggle {kind}")


@master_data_bp.delete("/<any(accounts, parties):kind>/<int:row_id>")
@require_auth
def delete_branch_mapped_route(kind: str, row_id: int):
    try:
        entity_type, scope_key, label, _, render = _branch_mapped(kind)
        row = master_data_service.get_account_party(entity_type, row_id)
        return _change(
            scope_key=scope_key, entity_type=entity_type, label=label,
            action="hard_delete", entity_id=row_id,
            old_value=master_data_service.account_party_snapshot(entity_type, row),
            new_value=None, render=render,
        )
    except Exception as e:
        return error_response(e, f"Failed to delete {kind}")


# =============================================================================
# ITEMS (RM / SFG / FG)
# =============================================================================

def _render_item(item_id):
    return {"row": item_service.item_snapshot(item_service.get_item(item_id))}


@master_data_bp.get("/products/<item_type>")
@require_auth
def list_items_route(item_type: str):
    try:
        item_type = item_service.item_type_for_screen(item_type)
        require_scope_permission(g.access, item_service.ITEM_SCREENS[item_type], "view")
        rows = item_service.list_items(item_type, include_inactive=include_inactive())
        return jsonify({"item_type": item_type, "rows": rows}), 200
    except Exception as e:
        return error_response(e, "Failed to list items")


@master_data_bp.post("/products/<item_type>")
@require_auth
def create_item_route(item_type: str):
    try:
        item_type = item_service.item_type_for_screen(item_type)
        values = item_service.normalize_item_input(item_type, request_payload())
        return _change(
            scope_key=item_service.ITEM_SCREENS[item_type], entity_type="ITEM", label=item_type,
            action="create", entity_id="NEW", old_value=None,
            new_value={"_action": "create", **values}, render=_render_item,
        )
    except Exception as e:
        return error_response(e, "Failed to create item")


@master_data_bp.put("/products/<item_type>/<int:item_id>")
@require_auth
def update_item_route(item_type: str, item_id: int):
    try:
        item_type = item_service.item_type_for_screen(item_type)
        item = item_service.get_item(item_id, item_type=item_type)
        old_value = item_service.item_snapshot(item)
        values = item_service.normalize_item_input(item_type, request_payload(), existing=item)
        return _change(
            scope_key=item_service.ITEM_SCREENS[item_type], entity_type="ITEM", label=item_type,
            action="update", entity_id=item_id, old_value=old_value,
            new_value={"_action": "update", **values}, render=_render_item,
        )
    except Exception as e:
        return error_response(e, "Failed to update item")


@master_data_bp.post("/products/<item_type>/<int:item_id>/toggle")
@require_auth
def toggle_item_route(item_type: str, item_id: int):
    try:
        item_type = item_service.item_type_for_screen(item_type)
        item = item_service.get_item(item_id, item_type=item_type)
        return _change(
            scope_key=item_service.ITEM_SCREENS[item_type], entity_type="ITEM", label=item_type,
            action="toggle", entity_id=item_id, old_value=item_service.item_snapshot(item),
            new_value={**toggle_payload(item.is_active), "item_type": item_type}, render=_render_item,
        )
    except Exception as e:
        return error_response(e, "Failed to toggle item")


@master_data_bp.delete("/products/<item_type>/<int:item_id>")
@require_auth
def delete_item_route(item_type: str, item_id: int):
    try:
        item_type = item_service.item_type_for_screen(item_type)
        item = item_service.get_item(item_id, item_type=item_type)
        return _change(
            scope_key=item_service.ITEM_SCREENS[item_type], entity_type="ITEM", label=item_type,
            action="hard_delete", entity_id=item_id, old_value=item_service.item_snapshot(item),
            new_value=None, render=_render_item,
        )
    except Exception as e:
        return error_response(e, "Failed to delete item")


# =============================================================================
# SKUS (entity id = variant id)
# =============================================================================

def _render_sku(variant_id):
    return {"row": item_service.sku_snapshot(item_service.get_variant(variant_id))}


@master_data_bp.get("/skus")
@require_auth
@require_scope(SKUS_SCOPE, "view")
def list_skus_route():
    rows = item_service.list_skus(include_inactive=include_inactive(), item_id=request.args.get("item_id", type=int))
    return jsonify({"rows": rows}), 200


@master_data_bp.post("/skus")
@require_auth
def create_sku_route():
    try:
        values = item_service.normalize_sku_input(request_payload())
        return _change(
            scope_key=SKUS_SCOPE, entity_type="SKU", label="SKU",
            action="create", entity_id="NEW", old_value=None,
            new_value={"_action": "create", **values}, render=_render_sku,
        )
    except Exception as e:
        return error_response(e, "Failed to create SKU")


@master_data_bp.put("/skus/<int:variant_id>")
@require_auth
def update_sku_route(variant_id: int):
    try:
        variant = item_service.get_variant(variant_id)
        old_value = item_service.sku_snapshot(variant)
        values = item_service.normalize_sku_input(request_payload(), existing=variant)
        return _change(
            scope_key=SKUS_SCOPE, entity_type="SKU", label="SKU",
            action="update", entity_id=variant_id, old_value=old_value,
            new_value={"_action": "update", **values}, render=_render_sku,
        )
    except Exception as e:
        return error_response(e, "Failed to update SKU")


@master_data_bp.post("/skus/<int:variant_id>/toggle")
@require_auth
def toggle_sku_route(variant_id: int):
    try:
        variant = item_service.get_variant(variant_id)
        return _change(
            scope_key=SKUS_SCOPE, entity_type="SKU", label="SKU",
            action="toggle", entity_id=variant_id, old_value=item_service.sku_snapshot(variant),
            new_value=toggle_payload(variant.is_active), render=_render_sku,
        )
    except Exception as e:
        return error_response(e, "Failed to toggle SKU")


@master_data_bp.delete("/skus/<int:variant_id>")
@require_auth
def delete_sku_route(variant_id: int):
    try:
        variant = item_service.get_variant(variant_id)
        return _change(
            scope_key=SKUS_SCOPE, entity_type="SKU", label="SKU",
            action="hard_delete", entity_id=variant_id, old_value=item_service.sku_snapshot(variant),
            new_value=None, render=_render_sku,
        )
    except Exception as e:
        return error_response(e, "Failed to delete SKU")
