"""
SellerDesk backend application factory.

Request pipeline (outermost first):
    ErrorHandlerMiddleware -> SessionMiddleware -> CredentialResolutionMiddleware -> routes

Every collaborator can be injected so tests can run the whole pipeline
against a throwaway database, an in-memory session store and fake eBay
clients.
"""

import logging
from typing import Optional

import redis
from fastapi import FastAPI, Request

from sellerdesk.api.dependencies.auth import get_vault
from sellerdesk.api.routes import auth, config, ebay_oauth, health, users
from sellerdesk.config.settings import EbaySettings, SessionSettings
from sellerdesk.credentials.app_tokens import (
    ApplicationTokenCache,
    ApplicationTokenProvider,
    RedisApplicationTokenCache,
)
from sellerdesk.credentials.ebay_client import EbayTokenClient
from sellerdesk.credentials.redaction import setup_credential_logging
from sellerdesk.credentials.resolver import CredentialResolver
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.database.session import SessionFactory, get_session_factory
from sellerdesk.middleware.credential_resolution import CredentialResolutionMiddleware
from sellerdesk.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler
from sellerdesk.platform.sessions import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionMiddleware,
    SessionStore,
)

logger = logging.getLogger(__name__)


def _resolver_for(request: Request) -> CredentialResolver:
    return CredentialResolver(
        vault=get_vault(request),
        token_client=request.app.state.token_client,
    )


def _db_for(request: Request):
    factory = request.app.state.session_factory or get_session_factory()
    return factory()


def create_app(
    settings: Optional[EbaySettings] = None,
    session_settings: Optional[SessionSettings] = None,
    session_store: Optional[SessionStore] = None,
    session_factory: Optional[SessionFactory] = None,
    vault: Optional[SecretVault] = None,
    token_client: Optional[EbayTokenClient] = None,
    app_token_cache=None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: eBay app configuration (default: from environment)
        session_settings: cookie/TTL/Redis settings (default: from environment)
        session_store: session persistence (default: Redis when REDIS_URL is
            set, otherwise in-process)
        session_factory: callable returning a database session (default:
            engine built from DATABASE_URL on first use)
        vault: credential vault (default: built from SESSION_SECRET on first use)
        token_client: client for code exchange and refresh (default: built
            from the server's eBay app keys when both are configured)
        app_token_cache: application token cache (default: Redis when
            REDIS_URL is set, otherwise in-process)
    """
    settings = settings or EbaySettings.from_env()
    session_settings = session_settings or SessionSettings.from_env()

    redis_client = None
    if session_settings.redis_url and (session_store is None or app_token_cache is None):
        redis_client = redis.Redis.from_url(session_settings.redis_url)

    if session_store is None:
        session_store = RedisSessionStore(redis_client) if redis_client else InMemorySessionStore()
    if app_token_cache is None:
        app_token_cache = RedisApplicationTokenCache(redis_client) if redis_client else ApplicationTokenCache()

    if token_client is None and settings.can_refresh:
        token_client = EbayTokenClient(
            settings.client_id,
            settings.client_secret,
            timeout=settings.http_timeout_seconds,
        )
    if token_client is None:
        logger.warning("eBay app keys not configured; OAuth tokens cannot be exchanged or refreshed")

    setup_credential_logging()

    app = FastAPI(title="SellerDesk API")

    app.state.ebay_settings = settings
    app.state.session_store = session_store
    app.state.session_factory = session_factory
    app.state.vault = vault
    app.state.token_client = token_client
    app.state.app_token_provider = ApplicationTokenProvider(
        app_token_cache,
        client_factory=lambda client_id, client_secret: EbayTokenClient(
            client_id, client_secret, timeout=settings.http_timeout_seconds
        ),
    )

    # Starlette runs the last-added middleware first
    app.add_middleware(
        CredentialResolutionMiddleware,
        resolver_factory=_resolver_for,
        session_factory=_db_for,
    )
    app.add_middleware(
        SessionMiddleware,
        store=session_store,
        cookie_name=session_settings.cookie_name,
        ttl_seconds=session_settings.ttl_seconds,
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(ebay_oauth.router)
    app.include_router(config.router)
    app.include_router(users.router)

    return app
