# Overview: Flask API routes for the BOM screen: drafts, approval and versioning.

"""
BOM routes

- GET    /api/master-data/bom                     list (?status=&item_id=&level=)
- GET    /api/master-data/bom/versions            every version of an item/level
- GET    /api/master-data/bom/<id>                header + four sections
- POST   /api/master-data/bom                     save a new DRAFT
- PUT    /api/master-data/bom/<id>                replace a DRAFT
- POST   /api/master-data/bom/<id>/approve        approve_draft
- POST   /api/master-data/bom/<id>/new-version    clone an APPROVED header
- DELETE /api/master-data/bom/<id>                delete a DRAFT

Approve: a user holding can_approve on master_data.bom.approval approves
directly; a draft author without it sends the draft for approval, which
parks the header in PENDING until a moderator decides.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_scope
from ..models.bom import BOM_STATUS_APPROVED, BOM_STATUS_DRAFT
from ..services import approval_gateway, bom_service
from ..services.bom_change_log import BOM_SECTIONS
from ..services.bom_service import BOM_APPROVAL_SCOPE_KEY, BOM_ENTITY_TYPE, BOM_SCOPE_KEY
from ..services.permission_service import has_permission, require_scope_permission
from ..validation import ConflictError
from .screen_adapter import error_response, queued_response, request_payload, submit_change


bom_bp = Blueprint("bom", __name__, url_prefix="/api/master-data/bom")


SNAPSHOT_KEYS = ("header", *BOM_SECTIONS)


def _render(bom_id):
    return {"bom": bom_service.bom_detail(bom_service.get_bom(bom_id))}


def _snapshot(bom_id):
    return bom_service.bom_snapshot(bom_service.get_bom(bom_id))


def _ensure_editable(header) -> None:
    if bom_service.has_pending_approval_for_bom(header.id):
        raise ConflictError("A pending approval already exists for this BOM.")
    if header.status != BOM_STATUS_DRAFT:
        raise ConflictError("Only draft BOM can be edited.")


@bom_bp.get("")
@require_auth
@require_scope(BOM_SCOPE_KEY, "view")
def list_boms_route():
    try:
        rows = bom_service.list_boms(
            status=request.args.get("status") or None,
            item_id=request.args.get("item_id", type=int),
            level=request.args.get("level") or None,
        )
        return jsonify({"boms": rows}), 200
    except Exception as e:
        return error_response(e, "Failed to list BOMs")


@bom_bp.get("/versions")
@require_auth
@require_scope(BOM_SCOPE_KEY, "view")
def list_versions_route():
    rows = bom_service.list_versions(
        item_id=request.args.get("item_id", type=int),
        level=request.args.get("level") or None,
    )
    return jsonify({"versions": rows}), 200


@bom_bp.get("/<int:bom_id>")
@require_auth
@require_scope(BOM_SCOPE_KEY, "view")
def get_bom_route(bom_id: int):
    try:
        return jsonify(_render(bom_id)), 200
    except Exception as e:
        return error_response(e, "Failed to load BOM")


@bom_bp.post("")
@require_auth
def create_bom_route():
    """Body: {header: {item_id, level, output_qty, output_uom_id?}, rm_lines, sfg_lines, labour_lines, variant_rules}"""
    try:
        data = request_payload()
        normalized = bom_service.normalize_bom_input(data)
        header = normalized["header"]
        bom_service.ensure_draft_uniqueness(header["item_id"], header["level"])
        return submit_change(
            scope_key=BOM_SCOPE_KEY,
            action="create",
            entity_type=BOM_ENTITY_TYPE,
            entity_id="NEW",
            summary=f"Create BOM draft for item {header['item_id']} ({header['level']})",
            old_value=None,
            new_value=bom_service.build_approval_payload("create", data),
            render=_render,
            snapshot=_snapshot,
            change_keys=SNAPSHOT_KEYS,
        )
    except Exception as e:
        return error_response(e, "Failed to save BOM draft")


@bom_bp.put("/<int:bom_id>")
@require_auth
def update_bom_route(bom_id: int):
    try:
        data = request_payload()
        current = bom_service.get_bom(bom_id)
        _ensure_editable(current)
        normalized = bom_service.normalize_bom_input(data)
        bom_service.ensure_draft_uniqueness(
            normalized["header"]["item_id"], normalized["header"]["level"], exclude_id=current.id,
        )
        return submit_change(
            scope_key=BOM_SCOPE_KEY,
            action="update",
            entity_type=BOM_ENTITY_TYPE,
            entity_id=bom_id,
            summary=f"Update BOM {current.bom_no}",
            old_value=bom_service.bom_snapshot(current),
            new_value=bom_service.build_approval_payload("update", data, bom_id=bom_id),
            render=_render,
            snapshot=_snapshot,
            change_keys=SNAPSHOT_KEYS,
        )
    except Exception as e:
        return error_response(e, "Failed to save BOM draft")


@bom_bp.post("/<int:bom_id>/approve")
@require_auth
@require_scope(BOM_SCOPE_KEY, "view")
def approve_bom_route(bom_id: int):
    try:
        current = bom_service.get_bom(bom_id)
        if current.status != BOM_STATUS_DRAFT:
            raise ConflictError("Only draft BOM can be approved.")
        if bom_service.has_pending_approval_for_bom(current.id):
            raise ConflictError("A pending approval already exists for this BOM.")

        summary = f"Approve BOM {current.bom_no}"
        snapshot = bom_service.bom_snapshot(current)
        payload = bom_service.build_approve_draft_payload(current)

        if has_permission(g.access, BOM_APPROVAL_SCOPE_KEY, "approve"):
            return submit_change(
                scope_key=BOM_APPROVAL_SCOPE_KEY,
                action="approve",
                entity_type=BOM_ENTITY_TYPE,
                entity_id=bom_id,
                summary=summary,
                old_value=snapshot,
                new_value=payload,
                render=_render,
                snapshot=_snapshot,
                change_keys=SNAPSHOT_KEYS,
            )

        require_scope_permission(g.access, BOM_SCOPE_KEY, "edit")
        decision = approval_gateway.enqueue_change(
            access=g.access,
            scope_key=BOM_SCOPE_KEY,
            action="approve",
            entity_type=BOM_ENTITY_TYPE,
            entity_id=bom_id,
            summary=summary,
            old_value=snapshot,
            new_value=payload,
            branch_id=g.branch_id,
            reason="send_for_approval",
        )
        bom_service.set_bom_pending(bom_id)
        return queued_response(decision)
    except Exception as e:
        return error_response(e, "Failed to approve BOM")


@bom_bp.post("/<int:bom_id>/new-version")
@require_auth
def new_version_route(bom_id: int):
    try:
        source = bom_service.get_bom(bom_id)
        if source.status != BOM_STATUS_APPROVED:
            raise ConflictError("New version can only be created from an approved BOM.")
        bom_service.ensure_draft_uniqueness(source.item_id, source.level)
        return submit_change(
            scope_key=BOM_SCOPE_KEY,
            action="create",
            entity_type=BOM_ENTITY_TYPE,
            entity_id=bom_id,
            summary=f"New version of BOM {source.bom_no}",
            old_value=None,
            new_value=bom_service.build_version_payload(bom_id),
            render=_render,
            snapshot=_snapshot,
            change_keys=SNAPSHOT_KEYS,
        )
    except Exception as e:
        return error_response(e, "Failed to create BOM version")


@bom_bp.delete("/<int:bom_id>")
@require_auth
def delete_bom_route(bom_id: int):
    try:
        current = bom_service.get_bom(bom_id)
        _ensure_editable(current)
        return submit_change(
            scope_key=BOM_SCOPE_KEY,
            action="hard_delete",
            entity_type=BOM_ENTITY_TYPE,
            entity_id=bom_id,
            summary=f"Delete BOM {current.bom_no}",
            old_value=bom_service.bom_snapshot(current),
            new_value=None,
            render=_render,
            snapshot=_snapshot,
            change_keys=SNAPSHOT_KEYS,
        )
    except Exception as e:
        return error_response(e, "Failed to delete BOM")
