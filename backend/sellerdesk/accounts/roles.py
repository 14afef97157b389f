"""
Role capability table.

Roles are not ordered; each simply maps to an allowed-action set. For
credentials the only distinction is that admins may read and write the
owner's secrets and manage the OAuth connection, while publishers and
operators may only use the resolved credentials. Publishers may also edit
the account's listing template.
"""

import enum
from typing import FrozenSet, Optional, Union

from sellerdesk.models.user import UserRole


class Capability(str, enum.Enum):
    VIEW_CREDENTIALS = "view_credentials"
    MANAGE_CREDENTIALS = "manage_credentials"
    MANAGE_OAUTH = "manage_oauth"
    MANAGE_USERS = "manage_users"
    USE_CREDENTIALS = "use_credentials"
    EDIT_TEMPLATE = "edit_template"


ROLE_CAPABILITIES: dict[UserRole, FrozenSet[Capability]] = {
    UserRole.ADMIN: frozenset(Capability),
    UserRole.PUBLISHER: frozenset({Capability.USE_CREDENTIALS, Capability.EDIT_TEMPLATE}),
    UserRole.OPERATOR: frozenset({Capability.USE_CREDENTIALS}),
}


def parse_role(value: Union[str, UserRole, None]) -> Optional[UserRole]:
    """Return the UserRole for a stored/session value, or None if unknown."""
    if value is None:
        return None
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        return None


def has_capability(role: Union[str, UserRole, None], capability: Capability) -> bool:
    parsed = parse_role(role)
    if parsed is None:
        return False
    return capability in ROLE_CAPABILITIES[parsed]
