"""
Pytest fixtures for the change-governance backend tests.

Provides the test database, scope registry, users with role grants,
bearer headers and master-data factories.
"""

import pytest

from erp import create_app
from erp.extensions import db
from erp.models import (
    AccountGroup, Branch, City, Department, Item, Labour, ProductGroup, ProductType, RmPurchaseRate, Uom,
)
from erp.services import auth_service, permission_service, scope_service, session_service
from erp.services.notification_bus import approval_events


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'MAIL_SERVER': None,
        'MAIL_SUPPRESS_SEND': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        approval_events.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def scopes(db_session):
    """Populate the scope registry from the navigation tree."""
    scope_service.sync_nav_scopes()
    db_session.commit()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(code="MAIN", name="Main Branch", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


# =============================================================================
# USERS
# =============================================================================


def grant(scope_key: str, *actions: str) -> dict:
    """Role grant entry with the flags for `actions` plus the view/navigate prerequisites."""
    entry = {"scope_key": scope_key, "can_view": True, "can_navigate": True}
    for action in actions:
        entry[f"can_{action}"] = True
    return entry


@pytest.fixture(scope='function')
def make_user(db_session, scopes, branch):
    """Factory: make_user(username, role_name, grants=[...]) -> User in the main branch."""
    def _make(username: str, role_name: str, grants: list | None = None, email: str | None = None):
        user = auth_service.create_user(
            username, PASSWORD, email=email, role_name=role_name, branch_ids=[branch.id],
        )
        if grants:
            permission_service.save_role_grants(role_id=user.primary_role_id, grants=grants)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin", "Admin", email="admin@erp.local")


@pytest.fixture(scope='function')
def clerk(make_user):
    """Non-admin who may create and edit master data but not approve."""
    return make_user("clerk", "Clerk", grants=[
        grant("master_data.accounts", "create", "edit"),
        grant("master_data.parties", "create", "edit"),
        grant("master_data.products.finished", "create", "edit"),
        grant("master_data.products.skus", "create", "edit"),
        grant("master_data.bom", "create", "edit"),
    ])


@pytest.fixture(scope='function')
def moderator(make_user):
    """Non-admin holding can_approve on the approvals screen."""
    return make_user("moderator", "Moderator", grants=[
        grant("administration.approvals", "approve"),
    ])


@pytest.fixture(scope='function')
def viewer(make_user):
    return make_user("viewer", "Viewer", grants=[grant("master_data.accounts")])


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user) -> dict:
    _, token = session_service.create_session(user)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture(scope='function')
def clerk_headers(clerk):
    return headers_for(clerk)


@pytest.fixture(scope='function')
def moderator_headers(moderator):
    return headers_for(moderator)


@pytest.fixture(scope='function')
def viewer_headers(viewer):
    return headers_for(viewer)


# =============================================================================
# MASTER DATA
# =============================================================================


@pytest.fixture(scope='function')
def uom(db_session):
    row = Uom(code="pair", name="Pair")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def product_group(db_session):
    row = ProductGroup(name="Footwear")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def product_type(db_session):
    row = ProductType(code="shoe", name="Shoe")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def city(db_session):
    row = City(name="Lahore")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def account_group(db_session):
    row = AccountGroup(account_type="ASSET", code="cash", name="Cash")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def production_dept(db_session):
    row = Department(name="Stitching", is_production=True)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def labour(db_session, production_dept):
    row = Labour(code="stitcher", name="Stitcher", dept_id=production_dept.id)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def rm_item(db_session, uom, product_group):
    row = Item(item_type="RM", code="leather", name="Leather", group_id=product_group.id, base_uom_id=uom.id)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def rm_rate(db_session, rm_item):
    row = RmPurchaseRate(rm_item_id=rm_item.id, purchase_rate=120, avg_purchase_rate=120)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def fg_item(db_session, uom, product_group, product_type):
    row = Item(
        item_type="FG", code="oxford", name="Oxford",
        group_id=product_group.id, product_type_id=product_type.id, base_uom_id=uom.id,
    )
    db_session.add(row)
    db_session.commit()
    return row


def bom_payload(item, rm_item=None, dept=None, *, level="FINISHED", qty=2):
    """Minimal BOM screen payload: one header and an optional RM line."""
    payload = {
        "header": {"item_id": item.id, "level": level, "output_qty": 1},
        "rm_lines": [],
        "sfg_lines": [],
        "labour_lines": [],
        "variant_rules": [],
    }
    if rm_item is not None:
        payload["rm_lines"].append({"rm_item_id": rm_item.id, "dept_id": dept.id, "qty": qty})
    return payload
