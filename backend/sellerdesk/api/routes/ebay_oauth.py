"""
eBay OAuth API routes.

Handles:
- GET  /api/ebay/oauth/initiate    start a consent flow (admin)
- GET  /api/ebay/oauth/callback    finish it; redirects to the config page
- POST /api/ebay/oauth/disconnect  clear stored OAuth tokens (admin)

The callback consumes the session's state nonce and persists that change
before looking at anything else, so a replayed callback always sees an
empty slot.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from sellerdesk.accounts.roles import Capability
from sellerdesk.accounts.service import RequestIdentity
from sellerdesk.api.dependencies.auth import (
    get_identity,
    get_oauth_service,
    require_capability,
    require_session,
)
from sellerdesk.api.schemas.config import SuccessResponse
from sellerdesk.database.session import get_db_session
from sellerdesk.platform.sessions import ServerSession, flush_session
from sellerdesk.services.ebay_oauth_service import EbayOAuthService, consume_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ebay/oauth", tags=["ebay-oauth"])


@router.get("/initiate")
async def initiate(
    session: ServerSession = Depends(require_capability(Capability.MANAGE_OAUTH)),
    service: EbayOAuthService = Depends(get_oauth_service),
):
    """
    Redirect the admin to eBay's consent page.

    Returns 500 CONFIGURATION_ERROR when EBAY_APP_CLIENT_ID or EBAY_RUNAME
    is missing.
    """
    auth_url = service.build_authorization_url(session)
    logger.info(
        "eBay OAuth flow initiated",
        extra={"user_id": session.user_id},
    )
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    session: ServerSession = Depends(require_session),
    identity: RequestIdentity = Depends(get_identity),
    service: EbayOAuthService = Depends(get_oauth_service),
    db_session=Depends(get_db_session),
):
    """Handle eBay's redirect back. Always answers with a redirect to the config page."""
    saved_state = consume_state(session)
    flush_session(request)

    outcome = await service.handle_callback(
        db_session,
        account_id=identity.account_id,
        saved_state=saved_state,
        returned_state=state,
        code=code,
        error=error,
    )

    target = f"{service.settings.return_path}?{urlencode(outcome.redirect_params())}"
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)


@router.post("/disconnect", response_model=SuccessResponse)
async def disconnect(
    session: ServerSession = Depends(require_capability(Capability.MANAGE_OAUTH)),
    identity: RequestIdentity = Depends(get_identity),
    service: EbayOAuthService = Depends(get_oauth_service),
    db_session=Depends(get_db_session),
):
    try:
        service.disconnect(db_session, identity.account_id)
    except SQLAlchemyError:
        logger.error(
            "Failed to disconnect eBay account",
            extra={"account_id": identity.account_id},
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect eBay account",
        )
    return SuccessResponse(success=True)
