"""
Shared pytest fixtures for SellerDesk tests.

Each test gets its own SQLite database file, an in-memory session store
and a fake eBay token client, so the full request pipeline can run
without network or external services.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sellerdesk.accounts.service import create_account_owner
from sellerdesk.config.settings import EbaySettings, SessionSettings
from sellerdesk.credentials.app_tokens import ApplicationTokenCache
from sellerdesk.credentials.ebay_client import EbayTokenClient, TokenGrant
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.db_base import Base
from sellerdesk.main import create_app
from sellerdesk.models.user import User, UserRole
from sellerdesk.platform.sessions import (
    ACCOUNT_ID,
    ROLE,
    USER_ID,
    InMemorySessionStore,
    generate_session_id,
)

MASTER_SECRET = "test-master-secret"
SESSION_COOKIE = "sd_session"

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# HELPERS
# ============================================================================

def add_sub_user(db_session, owner: User, role: UserRole, email: str) -> User:
    user = User(
        account_id=owner.id,
        email=email,
        first_name="Sub",
        last_name="User",
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


def login(client: TestClient, session_store, user: User, **extra) -> str:
    """Seed a server-side session for user and attach its cookie to the client."""
    session_id = generate_session_id()
    data = {
        USER_ID: user.id,
        ROLE: user.role.value,
        ACCOUNT_ID: user.account_id,
    }
    data.update(extra)
    session_store.save(session_id, data, 3600)
    client.cookies.set(SESSION_COOKIE, session_id)
    return session_id


# ============================================================================
# CORE FIXTURES
# ============================================================================

@pytest.fixture
def vault():
    return SecretVault(MASTER_SECRET)


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sellerdesk.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def owner(db_session):
    """Admin account owner with no credentials."""
    return create_account_owner(
        db_session,
        email="owner@example.com",
        first_name="Olive",
        last_name="Owner",
        company_name="Olive's Records",
    )


@pytest.fixture
def ebay_settings():
    return EbaySettings(
        client_id="server-client-id",
        client_secret="server-client-secret",
        runame="Seller_Desk-SellerDe-PRD-runame",
    )


@pytest.fixture
def token_client():
    client = AsyncMock(spec=EbayTokenClient)
    client.exchange_code.return_value = TokenGrant(
        access_token="v^1.1#i^1#new-access-token",
        expires_in=7200,
        refresh_token="v^1.1#i^1#new-refresh-token",
    )
    client.refresh_access_token.return_value = TokenGrant(
        access_token="v^1.1#i^1#refreshed-access-token",
        expires_in=7200,
    )
    client.fetch_username.return_value = "olives_records"
    return client


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def app_token_cache():
    return ApplicationTokenCache()


# ============================================================================
# APPLICATION FIXTURES
# ============================================================================

@pytest.fixture
def app(ebay_settings, session_store, session_factory, vault, token_client, app_token_cache):
    return create_app(
        settings=ebay_settings,
        session_settings=SessionSettings(cookie_name=SESSION_COOKIE),
        session_store=session_store,
        session_factory=session_factory,
        vault=vault,
        token_client=token_client,
        app_token_cache=app_token_cache,
    )


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def login_as(client, session_store):
    def _login(user: User, **extra) -> str:
        return login(client, session_store, user, **extra)
    return _login


@pytest.fixture
def make_sub_user(db_session, owner):
    def _make(role: UserRole, email: str) -> User:
        return add_sub_user(db_session, owner, role, email)
    return _make
