"""
Application tokens and the bearer-credential fallback chain.

Application tokens come from the client-credentials grant using the
account's MANUAL client id/secret. They are not tied to an eBay user and
only work for catalog/taxonomy reads, so they are used only when no OAuth
user token is available and only by call sites that accept them.

They are cached per account id until shortly before their own expiry.
The cache is injected (in-memory or Redis) rather than being a module
global, so tests can substitute a fake clock.

Fallback chain:
    USER_CONTEXT_CHAIN: OAuth user token -> manual token
    CATALOG_CHAIN:      OAuth user token -> application token
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import redis

from sellerdesk.credentials.ebay_client import EbayTokenClient, TokenEndpointError
from sellerdesk.credentials.resolver import CredentialBundle

logger = logging.getLogger(__name__)

# Cached application tokens are dropped this long before eBay's expiry
EARLY_EXPIRY_SECONDS = 300


class ApplicationTokenCache:
    """In-process cache of application tokens keyed by account id."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def get(self, account_id) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(str(account_id))
            if entry is None:
                return None
            token, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[str(account_id)]
                return None
            return token

    def set(self, account_id, token: str, expires_in: int) -> None:
        ttl = max(expires_in - EARLY_EXPIRY_SECONDS, 0)
        if ttl <= 0:
            return
        with self._lock:
            self._entries[str(account_id)] = (token, self._clock() + ttl)

    def invalidate(self, account_id) -> None:
        with self._lock:
            self._entries.pop(str(account_id), None)


class RedisApplicationTokenCache:
    """
    Redis-backed application token cache.

    Key schema: ebay:app_token:{account_id} -> token (TTL = expires_in - 300s)

    Redis failures are logged and behave like a cache miss.
    """

    KEY_PREFIX = "ebay:app_token:"

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    def _key(self, account_id) -> str:
        return f"{self.KEY_PREFIX}{account_id}"

    def get(self, account_id) -> Optional[str]:
        try:
            raw = self._redis.get(self._key(account_id))
        except redis.RedisError:
            logger.warning("Application token cache get failed", extra={"account_id": account_id}, exc_info=True)
            return None
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    def set(self, account_id, token: str, expires_in: int) -> None:
        ttl = int(expires_in) - EARLY_EXPIRY_SECONDS
        if ttl <= 0:
            return
        try:
            self._redis.setex(self._key(account_id), ttl, token)
        except redis.RedisError:
            logger.warning("Application token cache set failed", extra={"account_id": account_id}, exc_info=True)

    def invalidate(self, account_id) -> None:
        try:
            self._redis.delete(self._key(account_id))
        except redis.RedisError:
            logger.warning("Application token cache delete failed", extra={"account_id": account_id}, exc_info=True)


ClientFactory = Callable[[str, str], EbayTokenClient]


class ApplicationTokenProvider:
    """Returns a cached or freshly issued application token for an account."""

    def __init__(self, cache, client_factory: ClientFactory = EbayTokenClient):
        self.cache = cache
        self.client_factory = client_factory

    async def get_token(self, account_id, client_id: str, client_secret: str) -> str:
        """
        Raises:
            TokenEndpointError: If eBay does not issue a token
        """
        cached = self.cache.get(account_id)
        if cached:
            return cached

        grant = await self.client_factory(client_id, client_secret).request_application_token()
        self.cache.set(account_id, grant.access_token, grant.expires_in)
        logger.info(
            "Application token issued",
            extra={"account_id": account_id, "expires_in": grant.expires_in},
        )
        return grant.access_token


class CredentialSource(str, enum.Enum):
    OAUTH = "oauth"
    MANUAL = "manual"
    APPLICATION = "application"


@dataclass(frozen=True)
class BearerCredential:
    token: str
    source: CredentialSource

    def __repr__(self) -> str:
        return f"<BearerCredential(source={self.source.value})>"


class OAuthUserTokenStrategy:
    """Use the OAuth user token when the account is connected."""

    async def resolve(self, bundle: CredentialBundle, account_id) -> Optional[BearerCredential]:
        if bundle.oauth_connected and bundle.oauth_token:
            return BearerCredential(bundle.oauth_token, CredentialSource.OAUTH)
        return None


class ManualTokenStrategy:
    """Use the manually entered user token."""

    async def resolve(self, bundle: CredentialBundle, account_id) -> Optional[BearerCredential]:
        if bundle.manual_token:
            return BearerCredential(bundle.manual_token, CredentialSource.MANUAL)
        return None


class ApplicationTokenStrategy:
    """Mint (or reuse) an application token from the manual client id/secret."""

    def __init__(self, provider: ApplicationTokenProvider):
        self.provider = provider

    async def resolve(self, bundle: CredentialBundle, account_id) -> Optional[BearerCredential]:
        if not bundle.has_manual_app_keys:
            return None
        try:
            token = await self.provider.get_token(
                account_id, bundle.manual_client_id, bundle.manual_client_secret
            )
        except TokenEndpointError as e:
            logger.warning(
                "Application token unavailable",
                extra={"account_id": account_id, "status_code": e.status_code},
            )
            return None
        return BearerCredential(token, CredentialSource.APPLICATION)


def user_context_chain() -> list:
    return [OAuthUserTokenStrategy(), ManualTokenStrategy()]


def catalog_chain(provider: ApplicationTokenProvider) -> list:
    return [OAuthUserTokenStrategy(), ApplicationTokenStrategy(provider)]


async def resolve_bearer_credential(
    bundle: CredentialBundle,
    account_id,
    strategies: Sequence,
) -> Optional[BearerCredential]:
    """Evaluate strategies in order; first usable credential wins."""
    for strategy in strategies:
        credential = await strategy.resolve(bundle, account_id)
        if credential is not None:
            return credential
    return None
