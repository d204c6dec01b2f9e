"""
Scope registry tests.

Verifies:
- Every navigation MODULE and SCREEN lands in the registry exactly once
- Sync is idempotent and never touches existing rows
- Screens map to their enclosing module; group nodes carry no scope
- Legacy aliases resolve only for the retired administration keys
"""

import pytest

from erp.models import PermissionScope
from erp.scopes import ScopeType, enclosing_module, is_known_screen, iter_nav_scopes, legacy_alias
from erp.services import scope_service


# =============================================================================
# NAVIGATION TREE
# =============================================================================


class TestNavTree:
    """Static lookups derived from the navigation tree."""

    def test_modules_are_present(self):
        modules = {row["scope_key"] for row in iter_nav_scopes() if row["scope_type"] == ScopeType.MODULE}
        assert {
            "administration", "master_data", "hr_payroll", "financial", "purchase",
            "production", "inventory", "outward_returnable", "sales",
        } <= modules

    def test_no_duplicate_rows(self):
        rows = [(r["scope_type"], r["scope_key"]) for r in iter_nav_scopes()]
        assert len(rows) == len(set(rows))

    @pytest.mark.parametrize(
        "screen,module",
        [
            ("master_data.accounts", "master_data"),
            ("master_data.basic_info.product_groups", "master_data"),
            ("master_data.bom.approval", "master_data"),
            ("administration.approvals", "administration"),
            ("hr_payroll.labour_rates", "hr_payroll"),
        ],
    )
    def test_enclosing_module(self, screen, module):
        assert enclosing_module(screen) == module

    def test_group_nodes_are_not_screens(self):
        assert not is_known_screen("basic_information")
        assert not is_known_screen("master_data")
        assert is_known_screen("master_data.parties")

    def test_legacy_aliases(self):
        assert legacy_alias("administration.users") == "setup:users"
        assert legacy_alias("master_data.parties") is None


# =============================================================================
# REGISTRY SYNC
# =============================================================================


class TestRegistrySync:
    """sync_nav_scopes() keeps permission_scope_registry in step with the tree."""

    def test_sync_inserts_every_scope(self, db_session):
        created = scope_service.sync_nav_scopes()
        db_session.commit()

        expected = len(list(iter_nav_scopes()))
        assert created == expected
        assert db_session.query(PermissionScope).count() == expected

    def test_sync_is_idempotent(self, db_session):
        scope_service.sync_nav_scopes()
        db_session.commit()

        assert scope_service.sync_nav_scopes() == 0
        assert db_session.query(PermissionScope).count() == len(list(iter_nav_scopes()))

    def test_sync_keeps_existing_rows(self, db_session):
        db_session.add(PermissionScope(
            scope_type=ScopeType.SCREEN, scope_key="master_data.accounts",
            module_group="Custom", description="Renamed",
        ))
        db_session.commit()

        scope_service.sync_nav_scopes()
        db_session.commit()

        row = scope_service.get_scope(ScopeType.SCREEN, "master_data.accounts")
        assert row.description == "Renamed"
        assert db_session.query(PermissionScope).filter_by(scope_key="master_data.accounts").count() == 1

    def test_screen_rows_carry_module_label(self, db_session):
        scope_service.sync_nav_scopes()
        db_session.commit()

        row = scope_service.get_scope(ScopeType.SCREEN, "master_data.bom")
        assert row.module_group == "Master Data"
        assert row.description == "Bill of Materials"

    def test_list_filters_by_type(self, db_session, scopes):
        modules = scope_service.list_scopes(ScopeType.MODULE)
        assert modules
        assert all(s.scope_type == ScopeType.MODULE for s in modules)
