"""
Integration tests for account user management.
"""

import pytest
from fastapi.testclient import TestClient

from sellerdesk.accounts.service import create_account_owner
from sellerdesk.models.user import User, UserRole


@pytest.fixture
def other_account(db_session):
    return create_account_owner(db_session, email="rival@example.com", first_name="Rita")


class TestListUsers:

    def test_lists_only_own_account(self, client, owner, make_sub_user, other_account, login_as):
        make_sub_user(UserRole.PUBLISHER, "pub@example.com")
        login_as(owner)

        body = client.get("/api/users").json()

        assert body["success"] is True
        emails = [u["email"] for u in body["users"]]
        assert emails == ["owner@example.com", "pub@example.com"]
        assert all(u["account_id"] == owner.id for u in body["users"])

    def test_never_returns_credentials(self, client, db_session, owner, vault, login_as):
        owner.ebay_token = vault.encrypt("v^1.1#manual")
        db_session.commit()
        login_as(owner)

        users = client.get("/api/users").json()["users"]

        assert not any(key.startswith("ebay") for key in users[0])

    @pytest.mark.parametrize("role", [UserRole.PUBLISHER, UserRole.OPERATOR])
    def test_sub_roles_forbidden(self, client, owner, make_sub_user, login_as, role):
        login_as(make_sub_user(role, "sub@example.com"))
        assert client.get("/api/users").status_code == 403


class TestUpdateRole:

    def test_admin_changes_role(self, client, db_session, owner, make_sub_user, login_as):
        sub = make_sub_user(UserRole.OPERATOR, "op@example.com")
        login_as(owner)

        response = client.put(f"/api/users/{sub.id}", json={"role": "publisher"})

        assert response.status_code == 200
        assert response.json()["role"] == "publisher"
        db_session.expire_all()
        assert sub.role == UserRole.PUBLISHER

    def test_role_change_reaches_live_session(self, app, client, owner, make_sub_user, login_as, session_store):
        sub = make_sub_user(UserRole.ADMIN, "sub-admin@example.com")
        sub_client = TestClient(app)
        session_store.save("sub-session", {"user_id": sub.id, "role": "admin", "account_id": owner.id}, 3600)
        sub_client.cookies.set("sd_session", "sub-session")
        login_as(owner)

        assert client.put(f"/api/users/{sub.id}", json={"role": "operator"}).status_code == 200

        assert sub_client.get("/api/users").status_code == 403
        assert session_store.load("sub-session")["role"] == "operator"

    def test_invalid_role(self, client, owner, make_sub_user, login_as):
        sub = make_sub_user(UserRole.OPERATOR, "op@example.com")
        login_as(owner)

        response = client.put(f"/api/users/{sub.id}", json={"role": "owner"})

        assert response.status_code == 400

    def test_cannot_change_own_role(self, client, owner, login_as):
        login_as(owner)

        response = client.put(f"/api/users/{owner.id}", json={"role": "operator"})

        assert response.status_code == 400

    def test_other_account_is_not_found(self, client, owner, other_account, login_as):
        login_as(owner)

        response = client.put(f"/api/users/{other_account.id}", json={"role": "operator"})

        assert response.status_code == 404


class TestDeleteUser:

    def test_delete_sub_user_and_sessions(self, client, db_session, owner, make_sub_user, login_as, session_store):
        sub = make_sub_user(UserRole.OPERATOR, "op@example.com")
        sub_id = sub.id
        session_store.save("sub-session", {"user_id": sub_id, "role": "operator", "account_id": owner.id}, 3600)
        login_as(owner)

        response = client.delete(f"/api/users/{sub_id}")

        assert response.status_code == 200
        assert session_store.load("sub-session") is None
        db_session.expire_all()
        assert db_session.query(User).filter(User.id == sub_id).count() == 0

    def test_cannot_delete_self(self, client, owner, login_as):
        login_as(owner)
        assert client.delete(f"/api/users/{owner.id}").status_code == 400

    def test_cannot_delete_owner(self, client, owner, make_sub_user, login_as):
        login_as(make_sub_user(UserRole.ADMIN, "second-admin@example.com"))

        response = client.delete(f"/api/users/{owner.id}")

        assert response.status_code == 400

    def test_other_account_is_not_found(self, client, owner, other_account, login_as):
        login_as(owner)
        assert client.delete(f"/api/users/{other_account.id}").status_code == 404
