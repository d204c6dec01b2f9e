"""
Authentication route tests.

Verifies:
- Login returns a bearer token plus the permission bag
- Missing, unknown and revoked tokens are 401
- Inactive users cannot log in and lose existing sessions
- Passwords are stored as bcrypt hashes
"""

import pytest

from conftest import PASSWORD, auth_headers
from erp.models.auth import USER_STATUS_INACTIVE
from erp.services import auth_service
from erp.validation import ValidationError


def _login(client, username, password=PASSWORD, **extra):
    return client.post("/api/auth/login", json={"username": username, "password": password, **extra})


class TestLogin:

    def test_login_returns_token_and_permissions(self, client, db_session, clerk, branch):
        resp = _login(client, "clerk")
        assert resp.status_code == 200
        assert resp.json["token"]
        assert resp.json["branch_id"] == branch.id
        assert resp.json["is_admin"] is False
        assert resp.json["permissions"]["SCREEN:master_data.parties"]["can_create"] is True

    def test_login_by_email(self, client, db_session, admin_user):
        resp = _login(client, "admin@erp.local")
        assert resp.status_code == 200
        assert resp.json["is_admin"] is True

    def test_wrong_password(self, client, db_session, clerk):
        assert _login(client, "clerk", "nope").status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"username": "clerk"}).status_code == 400

    def test_inactive_user_rejected(self, client, db_session, clerk):
        clerk.status = USER_STATUS_INACTIVE
        db_session.commit()
        assert _login(client, "clerk").status_code == 401

    def test_foreign_branch_rejected(self, client, db_session, clerk):
        resp = _login(client, "clerk", branch_id=999)
        assert resp.status_code == 400


class TestSession:

    def test_no_token(self, client, db_session):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401

    def test_unknown_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401

    def test_me(self, client, clerk_headers):
        resp = client.get("/api/auth/me", headers=clerk_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "clerk"

    def test_logout_revokes_token(self, client, clerk_headers):
        assert client.post("/api/auth/logout", headers=clerk_headers).status_code == 200
        assert client.get("/api/auth/me", headers=clerk_headers).status_code == 401

    def test_deactivated_user_loses_session(self, client, db_session, clerk, clerk_headers):
        clerk.status = USER_STATUS_INACTIVE
        db_session.commit()
        assert client.get("/api/auth/me", headers=clerk_headers).status_code == 401


class TestPasswords:

    def test_hash_is_bcrypt(self, db_session, clerk):
        assert clerk.password_hash.startswith("$2")
        assert auth_service.verify_password(PASSWORD, clerk.password_hash) is True
        assert auth_service.verify_password("wrong", clerk.password_hash) is False

    def test_weak_password_rejected(self, db_session, scopes):
        with pytest.raises(ValidationError):
            auth_service.create_user("weak", "short")

    def test_duplicate_username_rejected(self, db_session, clerk):
        with pytest.raises(ValidationError, match="Username already exists"):
            auth_service.create_user("clerk", PASSWORD)
