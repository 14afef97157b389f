"""
Account identity resolution.

The persisted user row is the source of truth for role and account; the
copies cached in the session are hints for fast authorization checks and
are overwritten from the row on every credential-resolution pass.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session, aliased

from sellerdesk.models.user import User, UserRole
from sellerdesk.platform.sessions import ACCOUNT_ID, ROLE, USER_ID, ServerSession

logger = logging.getLogger(__name__)


@dataclass
class AccountContext:
    """The requesting user joined to the owner row of their account."""
    user: User
    owner: User

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def account_id(self) -> int:
        return self.user.account_id

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


@dataclass(frozen=True)
class RequestIdentity:
    """Plain copy of the fresh identity values, safe to use after the DB session closes."""
    user_id: int
    account_id: int
    role: UserRole

    @classmethod
    def from_context(cls, context: AccountContext) -> "RequestIdentity":
        return cls(user_id=context.user.id, account_id=context.account_id, role=context.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def load_account_context(db: Session, user_id: int) -> Optional[AccountContext]:
    """
    Read the user and its account owner in one query.

    Returns None when the user no longer exists (or has no owner row).
    Database errors propagate to the caller.
    """
    owner = aliased(User)
    row = (
        db.query(User, owner)
        .join(owner, owner.id == User.account_id)
        .filter(User.id == user_id)
        .one_or_none()
    )
    if row is None:
        return None
    user, owner_row = row
    return AccountContext(user=user, owner=owner_row)


def sync_session_identity(session: ServerSession, context: AccountContext) -> bool:
    """
    Overwrite the session's cached role/account with the persisted values.

    Returns:
        True if anything in the session changed
    """
    changed = False
    role_value = context.role.value if context.role else None

    if session.get(ROLE) != role_value:
        logger.info(
            "Session role re-synced from user record",
            extra={"user_id": context.user.id, "role": role_value},
        )
        session[ROLE] = role_value
        changed = True

    if session.get(ACCOUNT_ID) != context.account_id:
        logger.info(
            "Session account re-synced from user record",
            extra={"user_id": context.user.id, "account_id": context.account_id},
        )
        session[ACCOUNT_ID] = context.account_id
        changed = True

    return changed


def establish_session(session: ServerSession, user: User) -> None:
    """Write a user's identity into a session (called after a successful login)."""
    session[USER_ID] = user.id
    session[ROLE] = user.role.value if user.role else None
    session[ACCOUNT_ID] = user.account_id


def create_account_owner(
    db: Session,
    email: str,
    first_name: str = "",
    last_name: str = "",
    company_name: Optional[str] = None,
) -> User:
    """
    Create a new account: an admin user that owns itself.

    Credential fields start empty.
    """
    owner = User(
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        company_name=company_name,
        role=UserRole.ADMIN,
    )
    db.add(owner)
    db.flush()
    owner.account_id = owner.id
    db.commit()
    logger.info("Account created", extra={"account_id": owner.id})
    return owner
