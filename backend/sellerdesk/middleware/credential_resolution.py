"""
Credential resolution middleware.

Per request (only when a session is active):
1. Load the user joined to their account owner in one read
2. Missing user -> destroy the session, 401 "User not found"
3. Overwrite the session's cached role/account from the fresh row
4. Resolve the owner's CredentialBundle (refreshing OAuth if needed)
5. Attach request.state.identity and request.state.credentials

Any database error is a hard 500: the request never proceeds with a stale
or partial bundle. This middleware never writes credential fields itself;
only the resolver does, and only after a successful refresh.
"""

import logging
from typing import Callable, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from sellerdesk.accounts.service import (
    RequestIdentity,
    load_account_context,
    sync_session_identity,
)
from sellerdesk.credentials.resolver import CredentialResolver
from sellerdesk.platform.errors import AuthenticationError, get_correlation_id
from sellerdesk.platform.sessions import ServerSession

logger = logging.getLogger(__name__)


class CredentialResolutionMiddleware(BaseHTTPMiddleware):
    """Resolve identity and credentials for every authenticated API request."""

    # Paths that manage the session itself and need no credentials
    SKIP_PREFIXES: Tuple[str, ...] = ("/api/auth/",)

    def __init__(
        self,
        app,
        resolver_factory: Callable[[Request], CredentialResolver],
        session_factory: Callable[[Request], Session],
        path_prefix: str = "/api/",
    ):
        """
        Args:
            resolver_factory: Builds the resolver for a request (lazily, so a
                missing SESSION_SECRET surfaces as a configuration error on use)
            session_factory: Opens a database session for a request
            path_prefix: Only requests under this prefix are resolved
        """
        super().__init__(app)
        self.resolver_factory = resolver_factory
        self.session_factory = session_factory
        self.path_prefix = path_prefix

    def _applies_to(self, path: str) -> bool:
        return path.startswith(self.path_prefix) and not path.startswith(self.SKIP_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        session: Optional[ServerSession] = getattr(request.state, "session", None)
        if session is None or not session.is_authenticated or not self._applies_to(request.url.path):
            return await call_next(request)

        correlation_id = get_correlation_id(request)
        db = self.session_factory(request)
        try:
            context = load_account_context(db, session.user_id)
            if context is None:
                logger.warning(
                    "Session references a missing user; destroying session",
                    extra={"user_id": session.user_id, "correlation_id": correlation_id},
                )
                session.destroy()
                return AuthenticationError("User not found").to_response(correlation_id)

            sync_session_identity(session, context)
            identity = RequestIdentity.from_context(context)

            resolver = self.resolver_factory(request)
            bundle = await resolver.resolve(context.owner, db)
        except SQLAlchemyError:
            logger.exception(
                "Database error while resolving credentials",
                extra={"user_id": session.user_id, "correlation_id": correlation_id},
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "Internal server error",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )
        finally:
            db.close()

        request.state.identity = identity
        request.state.credentials = bundle
        logger.debug(
            "Credentials resolved",
            extra={
                "user_id": identity.user_id,
                "account_id": identity.account_id,
                "oauth_connected": bundle.oauth_connected,
            },
        )
        return await call_next(request)
