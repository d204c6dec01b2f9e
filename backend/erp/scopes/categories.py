# Overview: Scope type and action-flag constants shared by the registry and the resolver.


class ScopeType:
    """Permission scope kinds held in permission_scope_registry."""
    MODULE = "MODULE"
    SCREEN = "SCREEN"


# Verb -> stored flag column
ACTION_FLAGS = {
    "navigate": "can_navigate",
    "view": "can_view",
    "create": "can_create",
    "edit": "can_edit",
    "delete": "can_delete",
    "hard_delete": "can_hard_delete",
    "print": "can_print",
    "approve": "can_approve",
}

FLAG_NAMES = tuple(ACTION_FLAGS.values())

# Read-time dependency lattice: a flag only counts when its prerequisites hold too
FLAG_PREREQUISITES = {
    "can_navigate": ("can_view",),
    "can_edit": ("can_navigate",),
    "can_delete": ("can_navigate",),
    "can_hard_delete": ("can_navigate",),
    "can_approve": ("can_navigate",),
    "can_print": ("can_navigate",),
}
