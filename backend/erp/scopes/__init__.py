# Overview: Scope catalog package (navigation tree, legacy aliases, action flags).
# Re-exports the public lookups used by the resolver and the registry sync.

from .categories import ScopeType, ACTION_FLAGS, FLAG_NAMES, FLAG_PREREQUISITES
from .nav_tree import NAV_TREE, LEGACY_SCOPE_ALIASES
from .helpers import (
    SCOPE_TO_MODULE,
    build_scope_to_module_map,
    enclosing_module,
    is_known_screen,
    iter_nav_scopes,
    legacy_alias,
)

__all__ = [
    "ScopeType",
    "ACTION_FLAGS",
    "FLAG_NAMES",
    "FLAG_PREREQUISITES",
    "NAV_TREE",
    "LEGACY_SCOPE_ALIASES",
    "SCOPE_TO_MODULE",
    "build_scope_to_module_map",
    "enclosing_module",
    "is_known_screen",
    "iter_nav_scopes",
    "legacy_alias",
]
