"""Account hierarchy, roles and session identity."""

from sellerdesk.accounts.roles import (
    Capability,
    ROLE_CAPABILITIES,
    has_capability,
    parse_role,
)
from sellerdesk.accounts.service import (
    AccountContext,
    RequestIdentity,
    load_account_context,
    sync_session_identity,
    establish_session,
    create_account_owner,
)

__all__ = [
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "parse_role",
    "AccountContext",
    "RequestIdentity",
    "load_account_context",
    "sync_session_identity",
    "establish_session",
    "create_account_owner",
]
