"""
Environment-backed settings.

Values are read when a setting object is built, not at import time, and a
missing required value is reported as a ConfigurationError at the point
where it is needed.

Environment variables:
- EBAY_APP_CLIENT_ID / EBAY_APP_CLIENT_SECRET: server-held eBay app keys
- EBAY_RUNAME: redirect identifier registered with eBay (RuName)
- EBAY_OAUTH_RETURN_PATH: page the OAuth callback redirects to
- EBAY_HTTP_TIMEOUT_SECONDS: timeout for every call to eBay identity endpoints
- SESSION_SECRET: master secret for credential encryption
- SESSION_COOKIE_NAME / SESSION_TTL_SECONDS / REDIS_URL: session storage
"""

import os
from dataclasses import dataclass
from typing import Optional

from sellerdesk.platform.errors import ConfigurationError

DEFAULT_RETURN_PATH = "/config.html"
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_SESSION_COOKIE = "sd_session"
DEFAULT_SESSION_TTL_SECONDS = 30 * 24 * 60 * 60


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", missing=[name])


@dataclass(frozen=True)
class EbaySettings:
    """Server-side eBay application configuration."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    runame: Optional[str] = None
    return_path: str = DEFAULT_RETURN_PATH
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "EbaySettings":
        return cls(
            client_id=os.getenv("EBAY_APP_CLIENT_ID") or None,
            client_secret=os.getenv("EBAY_APP_CLIENT_SECRET") or None,
            runame=os.getenv("EBAY_RUNAME") or None,
            return_path=os.getenv("EBAY_OAUTH_RETURN_PATH") or DEFAULT_RETURN_PATH,
            http_timeout_seconds=_float_env("EBAY_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
        )

    @property
    def can_refresh(self) -> bool:
        """True when the token endpoint can be called with server credentials."""
        return bool(self.client_id and self.client_secret)

    def require_initiate_config(self) -> None:
        """Starting a consent flow needs the client id and the RuName."""
        missing = [
            name for name, value in (
                ("EBAY_APP_CLIENT_ID", self.client_id),
                ("EBAY_RUNAME", self.runame),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(
                "eBay OAuth is not configured. EBAY_APP_CLIENT_ID and EBAY_RUNAME must be set.",
                missing=missing,
            )

    def require_token_exchange_config(self) -> None:
        """Exchanging a code additionally needs the client secret."""
        missing = [
            name for name, value in (
                ("EBAY_APP_CLIENT_ID", self.client_id),
                ("EBAY_APP_CLIENT_SECRET", self.client_secret),
                ("EBAY_RUNAME", self.runame),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(
                "eBay OAuth token exchange is not configured.",
                missing=missing,
            )


@dataclass(frozen=True)
class SessionSettings:
    cookie_name: str = DEFAULT_SESSION_COOKIE
    ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SessionSettings":
        return cls(
            cookie_name=os.getenv("SESSION_COOKIE_NAME") or DEFAULT_SESSION_COOKIE,
            ttl_seconds=int(_float_env("SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)),
            redis_url=os.getenv("REDIS_URL") or None,
        )


def get_master_secret() -> str:
    """
    Return the master secret used to derive the vault key.

    Raises:
        ConfigurationError: If SESSION_SECRET is not set
    """
    secret = os.getenv("SESSION_SECRET")
    if not secret:
        raise ConfigurationError(
            "Credential encryption is not configured. SESSION_SECRET must be set.",
            missing=["SESSION_SECRET"],
        )
    return secret
