"""
Client for eBay's OAuth token and identity endpoints.

Covers the three grants this backend uses:
- authorization_code: finishing the consent flow
- refresh_token: renewing an expiring user access token
- client_credentials: application tokens for catalog/taxonomy reads

Every call uses HTTP Basic auth built from the client id/secret it was
constructed with, and a bounded timeout. Any failure (non-2xx, malformed
body, missing access token, timeout, network error) raises
TokenEndpointError so callers decide whether it is fatal.

SECURITY: token values are never logged; provider error codes are.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

EBAY_AUTH_URL = "https://auth.ebay.com/oauth2/authorize"
EBAY_TOKEN_URL = "https://api.ebay.com/identity/v1/oauth2/token"
EBAY_IDENTITY_URL = "https://apiz.ebay.com/commerce/identity/v1/user/"

EBAY_OAUTH_SCOPES = (
    "https://api.ebay.com/oauth/api_scope",
    "https://api.ebay.com/oauth/api_scope/sell.inventory",
    "https://api.ebay.com/oauth/api_scope/sell.account",
    "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
    "https://api.ebay.com/oauth/api_scope/commerce.identity.readonly",
)
EBAY_APPLICATION_SCOPE = "https://api.ebay.com/oauth/api_scope"

DEFAULT_TOKEN_LIFETIME_SECONDS = 7200
# eBay access tokens live two hours; anything above a day is not trusted
MAX_TOKEN_LIFETIME_SECONDS = 86400
DEFAULT_TIMEOUT_SECONDS = 10.0


def scope_string(scopes=EBAY_OAUTH_SCOPES) -> str:
    """eBay expects scopes space-separated."""
    return " ".join(scopes)


class TokenEndpointError(Exception):
    """Raised when the eBay token endpoint cannot produce a usable token."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider_error: Optional[str] = None,
    ):
        self.status_code = status_code
        self.provider_error = provider_error
        super().__init__(message)


def parse_expires_in(value) -> int:
    """
    Lifetime in seconds from a token response.

    Missing, unparseable, non-positive or implausibly large values fall back
    to the default lifetime.
    """
    if isinstance(value, bool):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    try:
        seconds = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    if seconds <= 0 or seconds > MAX_TOKEN_LIFETIME_SECONDS:
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    return seconds


@dataclass(frozen=True)
class TokenGrant:
    """
    Tokens returned by the token endpoint.

    refresh_token is None when eBay did not issue one (client-credentials
    grants, refresh responses without rotation, some re-consents).
    """
    access_token: str
    expires_in: int = DEFAULT_TOKEN_LIFETIME_SECONDS
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"<TokenGrant(expires_in={self.expires_in}, has_refresh_token={self.refresh_token is not None})>"


class EbayTokenClient:
    """Async client for one eBay application's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_url: str = EBAY_TOKEN_URL,
        identity_url: str = EBAY_IDENTITY_URL,
    ):
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")
        self._auth = (client_id, client_secret)
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport
        self._token_url = token_url
        self._identity_url = identity_url

    @property
    def client_id(self) -> str:
        return self._auth[0]

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """
        Exchange an authorization code for user tokens.

        redirect_uri must be byte-for-byte the value sent on the consent
        redirect (the RuName), or eBay rejects the exchange.
        """
        return await self._post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }, grant="authorization_code")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": scope_string(),
        }, grant="refresh_token")

    async def request_application_token(self) -> TokenGrant:
        return await self._post_token({
            "grant_type": "client_credentials",
            "scope": EBAY_APPLICATION_SCOPE,
        }, grant="client_credentials")

    async def fetch_username(self, access_token: str) -> Optional[str]:
        """
        Look up the eBay username for a user access token.

        Best-effort: returns None on any failure and never raises.
        """
        try:
            async with self._http() as client:
                response = await client.get(
                    self._identity_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            if response.status_code != 200:
                logger.info(
                    "eBay identity lookup returned non-200",
                    extra={"status_code": response.status_code},
                )
                return None
            payload = response.json()
            if not isinstance(payload, dict):
                logger.info("eBay identity lookup returned a non-object body")
                return None
            username = payload.get("username")
            return username if isinstance(username, str) and username else None
        except (httpx.HTTPError, ValueError):
            logger.info("eBay identity lookup failed", exc_info=True)
            return None

    async def _post_token(self, data: dict, grant: str) -> TokenGrant:
        try:
            async with self._http() as client:
                response = await client.post(
                    self._token_url,
                    data=data,
                    auth=self._auth,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.TimeoutException as e:
            logger.warning("eBay token request timed out", extra={"grant_type": grant})
            raise TokenEndpointError("Token request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(
                "eBay token request failed",
                extra={"grant_type": grant, "error_type": type(e).__name__},
            )
            raise TokenEndpointError("Token request failed") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        access_token = payload.get("access_token")
        if not response.is_success or not isinstance(access_token, str) or not access_token:
            provider_error = payload.get("error")
            logger.error(
                "eBay token endpoint rejected request",
                extra={
                    "grant_type": grant,
                    "status_code": response.status_code,
                    "provider_error": provider_error,
                    "provider_error_description": payload.get("error_description"),
                },
            )
            raise TokenEndpointError(
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
                provider_error=provider_error,
            )

        refresh_token = payload.get("refresh_token")
        return TokenGrant(
            access_token=access_token,
            expires_in=parse_expires_in(payload.get("expires_in")),
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        )
