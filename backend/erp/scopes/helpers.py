# Overview: Lookups derived once from the navigation tree.

from __future__ import annotations

from typing import Iterator

from .categories import ScopeType
from .nav_tree import NAV_TREE, LEGACY_SCOPE_ALIASES


def iter_nav_scopes(tree: list | None = None) -> Iterator[dict]:
    """Yield registry rows for every MODULE and SCREEN node, depth first, without duplicates."""
    seen: set[tuple[str, str]] = set()

    def walk(nodes: list, module: dict | None) -> Iterator[dict]:
        for node in nodes:
            current = module
            if node.get("scope_type"):
                if node["scope_type"] == ScopeType.MODULE:
                    current = node
                ident = (node["scope_type"], node["scope_key"])
                if ident not in seen:
                    seen.add(ident)
                    yield {
                        "scope_type": node["scope_type"],
                        "scope_key": node["scope_key"],
                        "module_group": (current or node).get("label"),
                        "description": node.get("label"),
                    }
            yield from walk(node.get("children") or [], current)

    yield from walk(NAV_TREE if tree is None else tree, None)


def build_scope_to_module_map(tree: list | None = None) -> dict[str, str]:
    """screen scope_key -> enclosing module scope_key."""
    mapping: dict[str, str] = {}

    def walk(nodes: list, module_key: str | None) -> None:
        for node in nodes:
            current = module_key
            if node.get("scope_type") == ScopeType.MODULE:
                current = node["scope_key"]
            elif node.get("scope_type") == ScopeType.SCREEN and current:
                mapping.setdefault(node["scope_key"], current)
            walk(node.get("children") or [], current)

    walk(NAV_TREE if tree is None else tree, None)
    return mapping


SCOPE_TO_MODULE = build_scope_to_module_map()


def enclosing_module(scope_key: str) -> str | None:
    return SCOPE_TO_MODULE.get(scope_key)


def legacy_alias(scope_key: str) -> str | None:
    return LEGACY_SCOPE_ALIASES.get(scope_key)


def is_known_screen(scope_key: str) -> bool:
    return scope_key in SCOPE_TO_MODULE
