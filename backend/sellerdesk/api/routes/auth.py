"""
Session routes.

Login itself (password verification) lives outside this service; these
routes only report and end the current session. They are skipped by
credential resolution.
"""

import logging

from fastapi import APIRouter, Depends

from sellerdesk.api.dependencies.auth import require_session
from sellerdesk.api.schemas.config import SuccessResponse
from sellerdesk.api.schemas.users import SessionIdentity
from sellerdesk.platform.sessions import ACCOUNT_ID, ROLE, ServerSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/me", response_model=SessionIdentity)
async def me(session: ServerSession = Depends(require_session)):
    return SessionIdentity(
        user_id=session.user_id,
        account_id=session.get(ACCOUNT_ID),
        role=session.get(ROLE),
    )


@router.post("/logout", response_model=SuccessResponse)
async def logout(session: ServerSession = Depends(require_session)):
    user_id = session.user_id
    session.destroy()
    logger.info("User logged out", extra={"user_id": user_id})
    return SuccessResponse(success=True)
