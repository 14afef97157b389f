"""
eBay three-legged OAuth (authorization code) flow.

States: Idle -> AwaitingCallback -> Connected | Declined | Error

- initiate: stores a random state nonce in the session (replacing any
  pending one) and builds the consent URL
- callback: the route consumes the session's state nonce BEFORE anything
  else, then evaluate_callback() decides the terminal outcome in a fixed
  order; only a clean pass reaches the token exchange
- disconnect: clears every OAuth field on the owner row locally; no
  revocation call is made

Tokens are always written to the account OWNER's row, never to the
sub-user who happened to complete the consent.
"""

import enum
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sellerdesk.config.settings import EbaySettings
from sellerdesk.credentials.ebay_client import (
    EBAY_AUTH_URL,
    EbayTokenClient,
    TokenEndpointError,
    scope_string,
)
from sellerdesk.credentials.resolver import Clock, utcnow
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.models.user import User
from sellerdesk.platform.errors import ConfigurationError
from sellerdesk.platform.sessions import OAUTH_STATE, ServerSession

logger = logging.getLogger(__name__)

# Provider error codes meaning the user explicitly said no
DECLINE_ERRORS = frozenset({"access_denied", "consent_declined"})

STATE_BYTES = 16


class CallbackStatus(str, enum.Enum):
    CONNECTED = "connected"
    DECLINED = "declined"
    STATE_ERROR = "state_error"
    NO_CODE = "no_code"
    EXCHANGE_ERROR = "exchange_error"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class CallbackOutcome:
    """Terminal result of one callback."""
    status: CallbackStatus
    username: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == CallbackStatus.CONNECTED

    def redirect_params(self) -> dict:
        """Query flags for the redirect back to the config page."""
        if self.status == CallbackStatus.CONNECTED:
            return {"ebay_oauth": "success"}
        if self.status in (CallbackStatus.DECLINED, CallbackStatus.NO_CODE):
            return {"ebay_oauth": "declined"}
        reason = {
            CallbackStatus.STATE_ERROR: "invalid_state",
            CallbackStatus.EXCHANGE_ERROR: "token_exchange",
        }.get(self.status, "server_error")
        return {"ebay_oauth": "error", "reason": reason}


def consume_state(session: ServerSession) -> Optional[str]:
    """Remove and return the pending state nonce. Call on callback entry, always."""
    return session.pop(OAUTH_STATE)


def _states_match(saved_state: Optional[str], returned_state: Optional[str]) -> bool:
    if not saved_state or not returned_state:
        return False
    return hmac.compare_digest(saved_state.encode("utf-8"), returned_state.encode("utf-8"))


def evaluate_callback(
    saved_state: Optional[str],
    returned_state: Optional[str],
    code: Optional[str],
    error: Optional[str],
) -> Optional[CallbackOutcome]:
    """
    Decide the pre-exchange outcome of a callback.

    Order matters:
    1. explicit denial -> Declined (no exchange)
    2. state missing or mismatched -> StateError (CSRF defense)
    3. no code -> NoCode

    Returns:
        A terminal outcome, or None when the code should be exchanged
    """
    if error in DECLINE_ERRORS:
        return CallbackOutcome(CallbackStatus.DECLINED)
    if not _states_match(saved_state, returned_state):
        return CallbackOutcome(CallbackStatus.STATE_ERROR)
    if not code:
        return CallbackOutcome(CallbackStatus.NO_CODE)
    return None


class EbayOAuthService:
    """Runs the consent flow for one eBay application."""

    def __init__(
        self,
        settings: EbaySettings,
        vault: SecretVault,
        token_client: Optional[EbayTokenClient] = None,
        clock: Clock = utcnow,
        state_factory: Callable[[], str] = lambda: secrets.token_hex(STATE_BYTES),
    ):
        self.settings = settings
        self.vault = vault
        self._token_client = token_client
        self.clock = clock
        self.state_factory = state_factory

    def _client(self) -> EbayTokenClient:
        if self._token_client is None:
            self._token_client = EbayTokenClient(
                self.settings.client_id,
                self.settings.client_secret,
                timeout=self.settings.http_timeout_seconds,
            )
        return self._token_client

    def build_authorization_url(self, session: ServerSession) -> str:
        """
        Start a consent flow.

        Raises:
            ConfigurationError: If client id or RuName is not configured
        """
        self.settings.require_initiate_config()

        state = self.state_factory()
        session[OAUTH_STATE] = state

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": self.settings.runame,  # RuName, not a URL
            "scope": scope_string(),
            "state": state,
        }
        return f"{EBAY_AUTH_URL}?{urlencode(params)}"

    async def handle_callback(
        self,
        db: Session,
        account_id: Optional[int],
        saved_state: Optional[str],
        returned_state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
    ) -> CallbackOutcome:
        """
        Finish a consent flow. saved_state must already be consumed from the session.

        Never raises for provider, configuration or database failures; they
        become terminal outcomes.
        """
        outcome = evaluate_callback(saved_state, returned_state, code, error)
        if outcome is not None:
            logger.info(
                "eBay OAuth callback ended before token exchange",
                extra={"account_id": account_id, "outcome": outcome.status.value, "provider_error": error},
            )
            return outcome

        try:
            self.settings.require_token_exchange_config()
        except ConfigurationError as e:
            logger.error(
                "eBay OAuth callback cannot exchange code: configuration missing",
                extra={"missing": e.missing},
            )
            return CallbackOutcome(CallbackStatus.SERVER_ERROR)

        if account_id is None:
            logger.error("eBay OAuth callback without an account in session")
            return CallbackOutcome(CallbackStatus.SERVER_ERROR)

        client = self._client()
        try:
            grant = await client.exchange_code(code, self.settings.runame)
        except TokenEndpointError as e:
            logger.error(
                "eBay token exchange failed",
                extra={
                    "account_id": account_id,
                    "status_code": e.status_code,
                    "provider_error": e.provider_error,
                },
            )
            return CallbackOutcome(CallbackStatus.EXCHANGE_ERROR)

        username = await client.fetch_username(grant.access_token)
        expiry = self.clock() + timedelta(seconds=grant.expires_in)

        values = {
            User.ebay_oauth_access_token: self.vault.encrypt(grant.access_token),
            User.ebay_oauth_token_expiry: expiry,
            User.ebay_oauth_username: username,
        }
        # eBay may omit the refresh token on re-consent; keep the stored one then
        if grant.refresh_token:
            values[User.ebay_oauth_refresh_token] = self.vault.encrypt(grant.refresh_token)

        try:
            updated = (
                db.query(User)
                .filter(User.id == account_id)
                .update(values, synchronize_session=False)
            )
            if not updated:
                db.rollback()
                logger.error("eBay OAuth callback: account owner row missing", extra={"account_id": account_id})
                return CallbackOutcome(CallbackStatus.SERVER_ERROR)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store eBay OAuth tokens", extra={"account_id": account_id})
            return CallbackOutcome(CallbackStatus.SERVER_ERROR)

        logger.info(
            "eBay account connected",
            extra={
                "account_id": account_id,
                "ebay_username": username,
                "expires_at": expiry.isoformat(),
            },
        )
        return CallbackOutcome(CallbackStatus.CONNECTED, username=username)

    def disconnect(self, db: Session, account_id: int) -> None:
        """
        Clear all four OAuth fields on the owner row in one update.

        Raises:
            SQLAlchemyError: If the update fails (after rollback)
        """
        try:
            db.query(User).filter(User.id == account_id).update(
                {
                    User.ebay_oauth_access_token: None,
                    User.ebay_oauth_refresh_token: None,
                    User.ebay_oauth_token_expiry: None,
                    User.ebay_oauth_username: None,
                },
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        logger.info("eBay account disconnected", extra={"account_id": account_id})
