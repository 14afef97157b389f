"""
Request-scoped dependencies for session identity, roles and credentials.

Role checks read the session's cached role. On /api routes the credential
resolution middleware has already overwritten it from the user row before
any of these run.
"""

from typing import Callable, Optional

from fastapi import Depends, Request

from sellerdesk.accounts.roles import Capability, has_capability
from sellerdesk.accounts.service import RequestIdentity
from sellerdesk.config.settings import EbaySettings
from sellerdesk.credentials.app_tokens import ApplicationTokenProvider
from sellerdesk.credentials.resolver import CredentialBundle
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.platform.errors import AuthenticationError, PermissionDeniedError
from sellerdesk.platform.sessions import ROLE, ServerSession, SessionStore
from sellerdesk.services.ebay_oauth_service import EbayOAuthService


def require_session(request: Request) -> ServerSession:
    session: Optional[ServerSession] = getattr(request.state, "session", None)
    if session is None or not session.is_authenticated:
        raise AuthenticationError()
    return session


def require_capability(capability: Capability) -> Callable[..., ServerSession]:
    """Dependency factory: 403 unless the session's role grants the capability."""

    def dependency(session: ServerSession = Depends(require_session)) -> ServerSession:
        if not has_capability(session.get(ROLE), capability):
            raise PermissionDeniedError()
        return session

    return dependency


def get_identity(request: Request, session: ServerSession = Depends(require_session)) -> RequestIdentity:
    identity: Optional[RequestIdentity] = getattr(request.state, "identity", None)
    if identity is None:
        raise AuthenticationError()
    return identity


def get_credentials(request: Request, session: ServerSession = Depends(require_session)) -> CredentialBundle:
    bundle: Optional[CredentialBundle] = getattr(request.state, "credentials", None)
    if bundle is None:
        raise AuthenticationError()
    return bundle


def get_vault(request: Request) -> SecretVault:
    """
    The application's vault, built from SESSION_SECRET on first use.

    Raises:
        ConfigurationError: If SESSION_SECRET is not set
    """
    vault = getattr(request.app.state, "vault", None)
    if vault is None:
        vault = SecretVault.from_env()
        request.app.state.vault = vault
    return vault


def get_ebay_settings(request: Request) -> EbaySettings:
    return request.app.state.ebay_settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_app_token_provider(request: Request) -> ApplicationTokenProvider:
    return request.app.state.app_token_provider


def get_oauth_service(
    request: Request,
    vault: SecretVault = Depends(get_vault),
    settings: EbaySettings = Depends(get_ebay_settings),
) -> EbayOAuthService:
    return EbayOAuthService(
        settings=settings,
        vault=vault,
        token_client=getattr(request.app.state, "token_client", None),
    )
