# Overview: Deterministic code derivation for master-data rows (slug codes, SKU codes).

from __future__ import annotations

import re
from typing import Callable

from sqlalchemy import func

from ..extensions import db


_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify_code(value, max_len: int = 50) -> str:
    """Lowercase, runs of non-alphanumerics become "_", trimmed of "_"."""
    text = _NON_ALNUM.sub("_", str(value or "").lower()).strip("_")
    return text[:max_len]


def item_code(value) -> str:
    return slugify_code(value, max_len=80)


def build_base_code(*, name, prefix: str = "", max_len: int = 50) -> str:
    name_code = slugify_code(name, max_len)
    prefix_code = slugify_code(prefix, max_len)
    base = "_".join(part for part in (prefix_code, name_code) if part)
    return (base or prefix_code or "item")[:max_len]


def _code_exists(model, candidate: str, exclude_id: int | None) -> bool:
    query = db.session.query(model.id).filter(func.lower(model.code) == candidate.lower())
    if exclude_id:
        query = query.filter(model.id != exclude_id)
    return query.first() is not None


def generate_unique_code(
    *,
    name,
    model=None,
    prefix: str = "",
    max_len: int = 50,
    exclude_id: int | None = None,
    exists: Callable[[str], bool] | None = None,
) -> str:
    """
    Slug `name` and append _2, _3, ... until no row of `model` has the code
    (case-insensitive). Pass `exists` to supply a custom collision check.
    """
    base = build_base_code(name=name, prefix=prefix, max_len=max_len)
    check = exists or (lambda candidate: _code_exists(model, candidate, exclude_id))

    candidate = base
    suffix = 2
    while check(candidate):
        suffix_text = f"_{suffix}"
        candidate = f"{base[:max(1, max_len - len(suffix_text))]}{suffix_text}"
        suffix += 1
    return candidate


# -- SKU codes --

def normalize_sku_part(value) -> str:
    return str(value or "").strip().upper()


def build_sku_code(item_name, parts) -> str:
    """Upper-cased item name followed by the non-empty parts, space joined."""
    clean = [normalize_sku_part(p) for p in parts if p]
    return " ".join([normalize_sku_part(item_name), *clean])


def parse_sfg_name_parts(name: str | None, code: str | None) -> tuple[str, str]:
    """
    "Oxford - STEP" -> ("Oxford", "STEP").

    Names without the separator fall back to the code with underscores as spaces.
    """
    if name and " - " in name:
        base, *rest = name.split(" - ")
        return (base or "").strip(), " - ".join(rest).strip()
    fallback = (code or name or "SFG").replace("_", " ").strip()
    return fallback, ""
