"""
Per-request credential resolution for an account owner.

Given the owner row, produce the CredentialBundle a request should use:

1. The manual key triplet is always decrypted (fallback layer).
2. No stored OAuth access token -> OAuth disconnected.
3. Access token outside the buffer window -> use it as-is (no network).
4. Expired (or inside the buffer window) with a refresh token -> refresh,
   persist the new access token/expiry (and rotated refresh token if eBay
   sent one), use the new token.
5. Refresh impossible or failed -> OAuth disconnected; the manual keys in
   the same bundle still satisfy the request.

Refresh failures are NEVER raised to the caller. Database errors while
persisting a successful refresh are.

Concurrent refreshes for one owner are not serialized: both may refresh
and the last write wins. A stale refresh token fails gracefully and that
request falls back to manual keys.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from sellerdesk.credentials.ebay_client import EbayTokenClient, TokenEndpointError
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.models.user import User

logger = logging.getLogger(__name__)

# Tokens expiring within this window are treated as already expired
REFRESH_BUFFER = timedelta(minutes=5)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize naive datetimes (as returned by some drivers) to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CredentialBundle:
    """
    Request-scoped, decrypted credentials for one account.

    Constructed fresh per request and never persisted.

    SECURITY: repr excludes every secret.
    """
    manual_token: Optional[str] = None
    manual_client_id: Optional[str] = None
    manual_client_secret: Optional[str] = None
    oauth_token: Optional[str] = None
    oauth_connected: bool = False
    oauth_username: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"<CredentialBundle(oauth_connected={self.oauth_connected}, "
            f"oauth_username={self.oauth_username}, "
            f"has_manual_token={self.manual_token is not None}, "
            f"has_manual_app_keys={self.has_manual_app_keys})>"
        )

    @property
    def has_manual_app_keys(self) -> bool:
        return bool(self.manual_client_id and self.manual_client_secret)

    @property
    def user_token(self) -> Optional[str]:
        """OAuth token when connected, otherwise the manual token."""
        if self.oauth_connected and self.oauth_token:
            return self.oauth_token
        return self.manual_token


def is_token_expired(expiry: Optional[datetime], now: datetime, buffer: timedelta = REFRESH_BUFFER) -> bool:
    """A missing expiry counts as expired; so does anything inside the buffer."""
    expiry = as_utc(expiry)
    if expiry is None:
        return True
    return now >= expiry - buffer


class CredentialResolver:
    """
    Resolves the CredentialBundle for an account owner row.

    The only side effect is persisting a successfully refreshed token onto
    the owner row.
    """

    def __init__(
        self,
        vault: SecretVault,
        token_client: Optional[EbayTokenClient] = None,
        clock: Clock = utcnow,
        buffer: timedelta = REFRESH_BUFFER,
    ):
        """
        Args:
            vault: Vault used to decrypt/encrypt owner credentials
            token_client: Client for the refresh grant; None when the server
                has no eBay app keys configured (refresh is then impossible)
            clock: Returns the current aware UTC datetime
            buffer: Refresh lead time before the literal expiry
        """
        self.vault = vault
        self.token_client = token_client
        self.clock = clock
        self.buffer = buffer

    async def resolve(self, owner: User, db: Session) -> CredentialBundle:
        manual = dict(
            manual_token=self.vault.decrypt(owner.ebay_token),
            manual_client_id=self.vault.decrypt(owner.ebay_client_id),
            manual_client_secret=self.vault.decrypt(owner.ebay_client_secret),
        )

        if not owner.ebay_oauth_access_token:
            return CredentialBundle(**manual)

        now = self.clock()
        if not is_token_expired(owner.ebay_oauth_token_expiry, now, self.buffer):
            access_token = self.vault.decrypt(owner.ebay_oauth_access_token)
            if access_token:
                return CredentialBundle(
                    **manual,
                    oauth_token=access_token,
                    oauth_connected=True,
                    oauth_username=owner.ebay_oauth_username,
                )
            logger.warning(
                "Stored OAuth access token could not be decrypted",
                extra={"account_id": owner.id},
            )

        refreshed = await self._refresh(owner, db, now)
        if refreshed is None:
            return CredentialBundle(**manual)

        return CredentialBundle(
            **manual,
            oauth_token=refreshed,
            oauth_connected=True,
            oauth_username=owner.ebay_oauth_username,
        )

    async def _refresh(self, owner: User, db: Session, now: datetime) -> Optional[str]:
        """
        Refresh the owner's access token.

        Returns:
            The new plaintext access token, or None if refresh was not
            possible or failed
        """
        refresh_token = self.vault.decrypt(owner.ebay_oauth_refresh_token)
        if not refresh_token:
            logger.info(
                "OAuth token expired and no usable refresh token; falling back to manual keys",
                extra={"account_id": owner.id},
            )
            return None

        if self.token_client is None:
            logger.warning(
                "OAuth token expired but eBay app keys are not configured; cannot refresh",
                extra={"account_id": owner.id},
            )
            return None

        try:
            grant = await self.token_client.refresh_access_token(refresh_token)
        except TokenEndpointError as e:
            logger.error(
                "OAuth token refresh failed; falling back to manual keys",
                extra={
                    "account_id": owner.id,
                    "status_code": e.status_code,
                    "provider_error": e.provider_error,
                },
            )
            return None

        new_expiry = now + timedelta(seconds=grant.expires_in)
        owner.ebay_oauth_access_token = self.vault.encrypt(grant.access_token)
        owner.ebay_oauth_token_expiry = new_expiry
        if grant.refresh_token:
            owner.ebay_oauth_refresh_token = self.vault.encrypt(grant.refresh_token)

        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "OAuth token refreshed",
            extra={
                "account_id": owner.id,
                "new_expires_at": new_expiry.isoformat(),
                "refresh_token_rotated": grant.refresh_token is not None,
            },
        )
        return grant.access_token
