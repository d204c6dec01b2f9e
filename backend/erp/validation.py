from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.exc import IntegrityError, DataError
from sqlalchemy.orm import DeclarativeMeta


FK_IN_USE_MESSAGE = "This record is linked to other data and cannot be deleted."


class ValidationError(ValueError):
    """400-level input problem, optionally pinned to a field."""

    def __init__(self, message: str, field: str | None = None, errors: list[dict] | None = None):
        super().__init__(message)
        self.field = field
        self.errors = errors or ([{"field": field, "message": message}] if field else [])

    def to_dict(self) -> dict:
        payload = {"error": str(self)}
        if self.errors:
            payload["field_errors"] = self.errors
        return payload


class DuplicateError(ValidationError):
    """Uniqueness violation on `code` or `name` (DUPLICATE_CODE / DUPLICATE_NAME)."""

    def __init__(self, field: str, message: str | None = None):
        self.code = "DUPLICATE_CODE" if field == "code" else "DUPLICATE_NAME"
        super().__init__(message or f"A record with this {field} already exists.", field=field)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["code"] = self.code
        return payload


class ConflictError(ValueError):
    """409-level business rule conflict (draft collision, terminal status)."""


class ForeignKeyInUseError(ConflictError):
    def __init__(self, message: str = FK_IN_USE_MESSAGE):
        super().__init__(message)


class NotFoundError(LookupError):
    """404-level missing entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: column fields clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: non-column keys passed through untouched (child maps such as branch_ids)
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    extra_fields: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Booleans first (form posts send "on"/"true"/"1")
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "on", "yes"}
        return bool(value)

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
            return int(stripped)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    # Numerics stay float in patches so they can be stored inside JSON snapshots
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number", field=col.key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number", field=col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields + extra_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                errors=[{"field": f, "message": "This field is required."} for f in missing],
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k in policy.extra_fields:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.extra_fields:
            patch[k] = raw
            continue

        col = cols[k]

        if raw is None or (raw == "" and col.nullable and not isinstance(col.type, (String, Text))):
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank", field=k)
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def coerce_id_list(value: Any, *, field_name: str) -> list[int]:
    """Normalize a multi-select (list, CSV string, single value) into sorted unique ints."""
    if value is None or value == "":
        return []
    if isinstance(value, (int, str)):
        value = str(value).split(",")
    ids: set[int] = set()
    for raw in value:
        text = str(raw).strip()
        if not text:
            continue
        if not text.isdigit():
            raise ValidationError(f"{field_name} must contain ids", field=field_name)
        ids.add(int(text))
    return sorted(ids)


_SQLITE_MESSAGES = (
    ("FOREIGN KEY constraint failed", "23503"),
    ("UNIQUE constraint failed", "23505"),
    ("NOT NULL constraint failed", "23502"),
)


def _sqlstate(exc: Exception) -> str | None:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return str(code)
    message = str(orig or exc)
    for needle, mapped in _SQLITE_MESSAGES:
        if needle in message:
            return mapped
    return None


def translate_integrity_error(exc: Exception) -> Exception:
    """
    Map a driver error onto the typed hierarchy.

    Returns the exception to raise; unknown failures come back unchanged so the
    route layer can surface them as a generic 500.
    """
    if not isinstance(exc, (IntegrityError, DataError)):
        return exc
    code = _sqlstate(exc)
    message = str(getattr(exc, "orig", exc))
    if code == "23503":
        return ForeignKeyInUseError()
    if code == "23505":
        if "name" in message.lower():
            return DuplicateError("name")
        if "code" in message.lower():
            return DuplicateError("code")
        return ConflictError("A record with these values already exists.")
    if code == "23502":
        return ValidationError("A required field is missing.")
    if code == "22P02":
        return ValidationError("One of the values has an invalid format.")
    return exc
