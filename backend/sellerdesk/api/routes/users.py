"""
Account user management routes (admin only).

All lookups are scoped to the caller's account: a user id from another
account is reported as not found.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from sellerdesk.accounts.roles import Capability, parse_role
from sellerdesk.accounts.service import RequestIdentity
from sellerdesk.api.dependencies.auth import (
    get_identity,
    get_session_store,
    require_capability,
)
from sellerdesk.api.schemas.config import SuccessResponse
from sellerdesk.api.schemas.users import AccountUser, AccountUserList, RoleUpdate
from sellerdesk.database.session import get_db_session
from sellerdesk.models.user import User
from sellerdesk.platform.errors import NotFoundError, ValidationError
from sellerdesk.platform.sessions import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
    dependencies=[Depends(require_capability(Capability.MANAGE_USERS))],
)


def _account_user(db_session, identity: RequestIdentity, user_id: int) -> User:
    user = (
        db_session.query(User)
        .filter(User.id == user_id, User.account_id == identity.account_id)
        .one_or_none()
    )
    if user is None:
        raise NotFoundError("User", str(user_id))
    return user


@router.get("", response_model=AccountUserList)
async def list_users(
    identity: RequestIdentity = Depends(get_identity),
    db_session=Depends(get_db_session),
):
    users = (
        db_session.query(User)
        .filter(User.account_id == identity.account_id)
        .order_by(User.id)
        .all()
    )
    return AccountUserList(users=[AccountUser(**u.to_safe_dict()) for u in users])


@router.put("/{user_id}", response_model=AccountUser)
async def update_user_role(
    user_id: int,
    payload: RoleUpdate,
    identity: RequestIdentity = Depends(get_identity),
    db_session=Depends(get_db_session),
):
    """
    Change a user's role.

    The new role reaches that user's live sessions on their next request,
    when credential resolution re-syncs the cached role.
    """
    role = parse_role(payload.role)
    if role is None:
        raise ValidationError("Invalid role", details={"role": payload.role})
    if user_id == identity.user_id:
        raise ValidationError("You cannot change your own role")

    user = _account_user(db_session, identity, user_id)
    user.role = role
    try:
        db_session.commit()
    except SQLAlchemyError:
        db_session.rollback()
        raise

    logger.info(
        "User role changed",
        extra={"account_id": identity.account_id, "target_user_id": user_id, "role": role.value},
    )
    return AccountUser(**user.to_safe_dict())


@router.delete("/{user_id}", response_model=SuccessResponse)
async def delete_user(
    user_id: int,
    identity: RequestIdentity = Depends(get_identity),
    db_session=Depends(get_db_session),
    session_store: SessionStore = Depends(get_session_store),
):
    if user_id == identity.user_id:
        raise ValidationError("You cannot delete your own account")

    user = _account_user(db_session, identity, user_id)
    if user.is_account_owner:
        raise ValidationError("The account owner cannot be deleted")

    try:
        db_session.delete(user)
        db_session.commit()
    except SQLAlchemyError:
        db_session.rollback()
        raise

    removed = session_store.delete_for_user(user_id)
    logger.info(
        "User deleted",
        extra={"account_id": identity.account_id, "target_user_id": user_id, "sessions_removed": removed},
    )
    return SuccessResponse(success=True)
