"""
User model - account owners and role-scoped sub-users.

An account is the set of users sharing one account_id. The owner row has
id == account_id and is the ONLY row that carries eBay credentials:
- manual key triplet: ebay_token, ebay_client_id, ebay_client_secret
- OAuth set: access token, refresh token, expiry, username

SECURITY:
- Credential columns hold vault ciphertext ("nonce:tag:ciphertext"), never plaintext
- Credential values are NEVER included in repr or safe dicts
- A non-null OAuth access token always has a non-null expiry
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text

from sellerdesk.db_base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    """Capability roles within an account."""
    ADMIN = "admin"
    PUBLISHER = "publisher"
    OPERATOR = "operator"


MANUAL_CREDENTIAL_FIELDS = ("ebay_token", "ebay_client_id", "ebay_client_secret")
OAUTH_CREDENTIAL_FIELDS = (
    "ebay_oauth_access_token",
    "ebay_oauth_refresh_token",
    "ebay_oauth_token_expiry",
    "ebay_oauth_username",
)


class User(Base):
    """A login within an account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=True,
        index=True,
        comment="Owner row id; equals id for the account owner",
    )

    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    company_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=False, unique=True)

    role = Column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=20,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=UserRole.ADMIN,
    )

    # Manual credential triplet (owner only) - encrypted, NEVER log
    ebay_token = Column(Text, nullable=True)
    ebay_client_id = Column(Text, nullable=True)
    ebay_client_secret = Column(Text, nullable=True)

    # OAuth credential set (owner only) - tokens encrypted, NEVER log
    ebay_oauth_access_token = Column(Text, nullable=True)
    ebay_oauth_refresh_token = Column(Text, nullable=True)
    ebay_oauth_token_expiry = Column(DateTime(timezone=True), nullable=True)
    ebay_oauth_username = Column(String(255), nullable=True, comment="Display name (allowed in logs)")

    # Listing template shared by the whole account (owner only)
    example_template = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self) -> str:
        """Safe repr - NEVER include credential values."""
        return (
            f"<User(id={self.id}, account_id={self.account_id}, "
            f"role={self.role.value if self.role else None})>"
        )

    @property
    def is_account_owner(self) -> bool:
        return self.id is not None and self.id == self.account_id

    @property
    def has_oauth_tokens(self) -> bool:
        return self.ebay_oauth_access_token is not None

    def to_profile_dict(self) -> dict:
        """Profile fields any role may see about themselves."""
        return {
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "company_name": self.company_name or "",
            "email": self.email or "",
            "role": self.role.value if self.role else None,
        }

    def to_safe_dict(self) -> dict:
        """Dictionary safe for logging and user listings. Excludes all credentials."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
