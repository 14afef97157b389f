"""
Tests for the role capability table and account identity helpers.
"""

import pytest

from sellerdesk.accounts.roles import Capability, has_capability, parse_role
from sellerdesk.accounts.service import (
    RequestIdentity,
    establish_session,
    load_account_context,
    sync_session_identity,
)
from sellerdesk.models.user import User, UserRole
from sellerdesk.platform.sessions import ACCOUNT_ID, ROLE, USER_ID, ServerSession


class TestCapabilities:

    @pytest.mark.parametrize("capability", list(Capability))
    def test_admin_has_every_capability(self, capability):
        assert has_capability(UserRole.ADMIN, capability) is True

    @pytest.mark.parametrize("role", [UserRole.PUBLISHER, UserRole.OPERATOR])
    @pytest.mark.parametrize("capability", [
        Capability.VIEW_CREDENTIALS,
        Capability.MANAGE_CREDENTIALS,
        Capability.MANAGE_OAUTH,
        Capability.MANAGE_USERS,
    ])
    def test_sub_roles_cannot_touch_secrets(self, role, capability):
        assert has_capability(role, capability) is False

    def test_publisher_may_edit_template_operator_may_not(self):
        assert has_capability(UserRole.PUBLISHER, Capability.EDIT_TEMPLATE) is True
        assert has_capability(UserRole.OPERATOR, Capability.EDIT_TEMPLATE) is False

    @pytest.mark.parametrize("role", ["publisher", "operator", "admin"])
    def test_every_role_may_use_credentials(self, role):
        assert has_capability(role, Capability.USE_CREDENTIALS) is True

    @pytest.mark.parametrize("value", [None, "", "owner", "ADMIN"])
    def test_unknown_roles_have_nothing(self, value):
        assert parse_role(value) is None
        assert has_capability(value, Capability.USE_CREDENTIALS) is False


class TestAccountOwner:

    def test_owner_owns_itself(self, owner):
        assert owner.account_id == owner.id
        assert owner.is_account_owner is True
        assert owner.role == UserRole.ADMIN
        assert owner.email == "owner@example.com"
        assert owner.ebay_token is None
        assert owner.has_oauth_tokens is False

    def test_repr_and_safe_dict_exclude_credentials(self, db_session, owner, vault):
        owner.ebay_token = vault.encrypt("v^1.1#manual")
        owner.ebay_oauth_access_token = vault.encrypt("v^1.1#oauth")
        db_session.commit()

        assert "ebay" not in repr(owner)
        safe = owner.to_safe_dict()
        assert not any(key.startswith("ebay") for key in safe)


class TestLoadAccountContext:

    def test_sub_user_joined_to_owner(self, db_session, owner, make_sub_user):
        sub = make_sub_user(UserRole.PUBLISHER, "pub@example.com")

        context = load_account_context(db_session, sub.id)

        assert context.user.id == sub.id
        assert context.owner.id == owner.id
        assert context.account_id == owner.id
        assert context.role == UserRole.PUBLISHER
        assert context.is_admin is False
        assert sub.is_account_owner is False

    def test_owner_context(self, db_session, owner):
        context = load_account_context(db_session, owner.id)
        assert context.user.id == context.owner.id == owner.id
        assert context.is_admin is True

    def test_missing_user_returns_none(self, db_session, owner):
        assert load_account_context(db_session, 9999) is None

    def test_identity_snapshot(self, db_session, owner, make_sub_user):
        sub = make_sub_user(UserRole.OPERATOR, "op@example.com")
        identity = RequestIdentity.from_context(load_account_context(db_session, sub.id))

        assert identity == RequestIdentity(user_id=sub.id, account_id=owner.id, role=UserRole.OPERATOR)
        assert identity.is_admin is False


class TestSessionIdentitySync:

    def test_stale_role_overwritten(self, db_session, owner, make_sub_user):
        sub = make_sub_user(UserRole.ADMIN, "sub@example.com")
        session = ServerSession("sid", {USER_ID: sub.id, ROLE: "admin", ACCOUNT_ID: owner.id})

        sub.role = UserRole.PUBLISHER
        db_session.commit()

        changed = sync_session_identity(session, load_account_context(db_session, sub.id))

        assert changed is True
        assert session[ROLE] == "publisher"
        assert session.modified is True

    def test_stale_account_overwritten(self, db_session, owner):
        session = ServerSession("sid", {USER_ID: owner.id, ROLE: "admin", ACCOUNT_ID: 12345})

        assert sync_session_identity(session, load_account_context(db_session, owner.id)) is True
        assert session[ACCOUNT_ID] == owner.id

    def test_fresh_session_unchanged(self, db_session, owner):
        session = ServerSession("sid", {USER_ID: owner.id, ROLE: "admin", ACCOUNT_ID: owner.id})

        assert sync_session_identity(session, load_account_context(db_session, owner.id)) is False
        assert session.modified is False

    def test_establish_session(self, owner):
        session = ServerSession()
        establish_session(session, owner)

        assert session.user_id == owner.id
        assert session[ROLE] == "admin"
        assert session[ACCOUNT_ID] == owner.id
        assert session.is_authenticated is True


class TestUserModel:

    def test_role_stored_as_value(self, db_session, owner):
        raw = db_session.execute(
            User.__table__.select().with_only_columns(User.__table__.c.role)
        ).scalar_one()
        assert raw == "admin"
