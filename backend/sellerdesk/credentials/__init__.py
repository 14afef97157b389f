"""
Credentials module for the account owner's eBay secrets.

This module provides:
- SecretVault: AES-256-GCM encryption of stored secrets (fails closed)
- EbayTokenClient: token/identity endpoint calls with bounded timeouts
- CredentialResolver: per-request bundle with transparent token refresh
- Application token cache and the bearer-credential fallback chain
- Redaction/masking helpers

SECURITY:
- Secrets are encrypted at rest with a key derived from SESSION_SECRET
- No plaintext secrets outside process memory
- Secrets NEVER appear in logs or non-admin API responses
"""

from sellerdesk.credentials.vault import SecretVault
from sellerdesk.credentials.ebay_client import (
    EbayTokenClient,
    TokenEndpointError,
    TokenGrant,
)
from sellerdesk.credentials.resolver import (
    CredentialBundle,
    CredentialResolver,
    REFRESH_BUFFER,
)
from sellerdesk.credentials.app_tokens import (
    ApplicationTokenCache,
    ApplicationTokenProvider,
    BearerCredential,
    CredentialSource,
    RedisApplicationTokenCache,
    resolve_bearer_credential,
)
from sellerdesk.credentials.redaction import (
    CredentialLoggingFilter,
    mask_secret,
    setup_credential_logging,
)

__all__ = [
    "SecretVault",
    "EbayTokenClient",
    "TokenEndpointError",
    "TokenGrant",
    "CredentialBundle",
    "CredentialResolver",
    "REFRESH_BUFFER",
    "ApplicationTokenCache",
    "ApplicationTokenProvider",
    "BearerCredential",
    "CredentialSource",
    "RedisApplicationTokenCache",
    "resolve_bearer_credential",
    "CredentialLoggingFilter",
    "mask_secret",
    "setup_credential_logging",
]
