# Overview: Builds per-row BOM change-log entries from before/after snapshots.

from __future__ import annotations

import json

from ..extensions import db
from ..models import BomChangeLog
from ..models.bom import CHANGE_ADDED, CHANGE_REMOVED, CHANGE_UPDATED, SCOPE_ALL


BOM_SECTIONS = ("rm_lines", "sfg_lines", "labour_lines", "variant_rules")


def _part(value, default="0") -> str:
    # Empty dimensions collapse to the literal fallback, so filling one in
    # later yields ADDED + REMOVED rather than UPDATED.
    return str(value) if value else default


SECTION_KEYS = {
    "rm_lines": lambda r: ":".join([
        _part(r.get("rm_item_id")), _part(r.get("dept_id")), _part(r.get("color_id")), _part(r.get("size_id")),
    ]),
    "sfg_lines": lambda r: f"{_part(r.get('fg_size_id'))}:{_part(r.get('sfg_sku_id'))}",
    "labour_lines": lambda r: ":".join([
        _part(r.get("dept_id")),
        _part(r.get("labour_id")),
        _part(r.get("size_scope"), SCOPE_ALL),
        _part(r.get("size_id")),
        _part(r.get("rate_type"), "PER_PAIR"),
    ]),
    "variant_rules": lambda r: ":".join([
        _part(r.get("size_scope"), SCOPE_ALL),
        _part(r.get("size_id")),
        _part(r.get("packing_scope"), SCOPE_ALL),
        _part(r.get("packing_type_id")),
        _part(r.get("color_scope"), SCOPE_ALL),
        _part(r.get("color_id")),
        _part(r.get("action_type"), ""),
        _part(r.get("material_scope"), SCOPE_ALL),
        _part(r.get("target_rm_item_id")),
    ]),
}


def section_key(section: str, row: dict) -> str:
    return SECTION_KEYS[section](row)


def value_changed(a, b) -> bool:
    return json.dumps(a, sort_keys=True, default=str) != json.dumps(b, sort_keys=True, default=str)


def build_change_rows(section: str, before_rows, after_rows) -> list[dict]:
    """Classify rows of one section as ADDED / REMOVED / UPDATED by composite key."""
    key_fn = SECTION_KEYS.get(section)
    if key_fn is None:
        return []

    before_map = {key_fn(r): r for r in before_rows or []}
    after_map = {key_fn(r): r for r in after_rows or []}

    rows = []
    for entity_key in list(before_map) + [k for k in after_map if k not in before_map]:
        before = before_map.get(entity_key)
        after = after_map.get(entity_key)
        if before is not None and after is None:
            change_type = CHANGE_REMOVED
        elif before is None and after is not None:
            change_type = CHANGE_ADDED
        elif value_changed(before, after):
            change_type = CHANGE_UPDATED
        else:
            continue
        rows.append({
            "section": section,
            "entity_key": entity_key,
            "change_type": change_type,
            "old_value": before,
            "new_value": after,
        })
    return rows


def insert_bom_change_log(
    *,
    bom_id: int,
    version_no: int,
    before: dict | None,
    after: dict | None,
    changed_by: int | None = None,
    request_id: int | None = None,
) -> list[BomChangeLog]:
    """
    Append change-log rows for one BOM write. Caller commits.

    A missing before-image (fresh draft or cloned version) records the
    header as ADDED.
    """
    if not bom_id or not version_no:
        return []

    rows: list[dict] = []
    header_before = (before or {}).get("header")
    header_after = (after or {}).get("header")
    if header_after is not None and value_changed(header_before, header_after):
        rows.append({
            "section": "header",
            "entity_key": "header",
            "change_type": CHANGE_UPDATED if header_before else CHANGE_ADDED,
            "old_value": header_before,
            "new_value": header_after,
        })

    for section in BOM_SECTIONS:
        rows.extend(build_change_rows(
            section,
            (before or {}).get(section) or [],
            (after or {}).get(section) or [],
        ))

    entries = [
        BomChangeLog(
            bom_id=bom_id,
            version_no=version_no,
            request_id=request_id,
            changed_by=changed_by,
            **row,
        )
        for row in rows
    ]
    db.session.add_all(entries)
    db.session.flush()
    return entries
