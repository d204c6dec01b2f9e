# Overview: Replays an approved change request through the per-entity write routine.

"""
Approval Applier

WHY: The moderator's approve click must produce exactly the write the
requester would have produced on the direct path. Both paths call the same
apply_*_change routine; this module only picks which one.

DESIGN:
- Runs inside the caller's transaction; it never commits or rolls back
- Domain failures raise typed errors that the caller surfaces verbatim
- Unknown entity types raise ValidationError rather than "succeeding" silently
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import ApprovalRequest
from ..validation import ValidationError
from . import bom_service, item_service, master_data_service
from .master_data_service import BASIC_INFO_BY_ENTITY, BRANCH_MAPS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    applied: bool
    entity_id: int | None = None

    def to_dict(self) -> dict:
        return {"applied": self.applied, "entity_id": self.entity_id}


def _payload(new_value) -> dict | None:
    if new_value is None:
        return None
    if not isinstance(new_value, dict):
        raise ValidationError("Stored change payload is not an object", field="new_value")
    return {k: v for k, v in new_value.items() if k != "schema_version"}


def apply_change(entity_type: str, entity_id, new_value: dict | None, *, actor_user_id: int | None,
                 request_id: int | None = None) -> ApplyResult:
    """Dispatch one change payload by entity type."""
    payload = _payload(new_value)

    if entity_type in BASIC_INFO_BY_ENTITY:
        written = master_data_service.apply_basic_info_change(entity_type, entity_id, payload, actor_user_id)
    elif entity_type in BRANCH_MAPS:
        written = master_data_service.apply_account_party_change(entity_type, entity_id, payload, actor_user_id)
    elif entity_type == "ITEM":
        written = item_service.apply_item_change(entity_id, payload, actor_user_id)
    elif entity_type == "SKU":
        written = item_service.apply_sku_change(entity_id, payload, actor_user_id)
    elif entity_type == bom_service.BOM_ENTITY_TYPE:
        written = bom_service.apply_bom_change(entity_id, payload, actor_user_id, request_id=request_id)
    else:
        raise ValidationError(f"Unsupported entity type: {entity_type}", field="entity_type")

    return ApplyResult(applied=True, entity_id=written)


def apply_master_data_change(request: ApprovalRequest, *, actor_user_id: int | None) -> ApplyResult:
    """
    Apply an approved request.

    The write is attributed to the deciding moderator; the requester stays
    on the request row.
    """
    result = apply_change(
        request.entity_type,
        request.entity_id,
        request.new_value,
        actor_user_id=actor_user_id,
        request_id=request.id,
    )
    logger.info(
        "Applied approval request %s (%s:%s) -> %s",
        request.id, request.entity_type, request.entity_id, result.entity_id,
    )
    return result
