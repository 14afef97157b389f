"""ORM models."""

from sellerdesk.models.user import (
    User,
    UserRole,
    MANUAL_CREDENTIAL_FIELDS,
    OAUTH_CREDENTIAL_FIELDS,
)

__all__ = [
    "User",
    "UserRole",
    "MANUAL_CREDENTIAL_FIELDS",
    "OAUTH_CREDENTIAL_FIELDS",
]
