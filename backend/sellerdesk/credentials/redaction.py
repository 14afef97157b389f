"""
Credential redaction and masking utilities.

SECURITY REQUIREMENTS:
- Tokens and keys NEVER appear in logs (manual keys, OAuth access/refresh tokens)
- ALLOWED in logs: account_id, user_id, ebay username
- API responses only ever carry masked previews, and only to admins

Usage:
    from sellerdesk.credentials.redaction import mask_secret, setup_credential_logging

    mask_secret("v^1.1#i^1#p^3#abcdef")   # {"set": True, "preview": "v^1.1#...cdef"}
"""

import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"

PREVIEW_HEAD = 6
PREVIEW_TAIL = 4

# Value patterns that look like eBay or bearer credentials
CREDENTIAL_VALUE_PATTERNS = [
    re.compile(r"(v\^1\.1#[A-Za-z0-9^#+/=_\-.]+)"),          # eBay user/app tokens
    re.compile(r"(Bearer\s+[A-Za-z0-9\-._~+/]+=*)", re.IGNORECASE),
    re.compile(r"(Basic\s+[A-Za-z0-9+/]+=*)", re.IGNORECASE),
    re.compile(r"((?:access|refresh)_token=[^&\s]+)", re.IGNORECASE),
]

# Key names that indicate a secret value
CREDENTIAL_KEY_PATTERNS = (
    "token", "secret", "password", "authorization", "api_key", "apikey", "credential",
)

# Log record attributes that are never secrets even though they match a pattern
_SAFE_RECORD_KEYS = frozenset({"msg", "args", "levelname", "name", "oauth_connected"})


def is_credential_secret_key(key: str) -> bool:
    """Check if a key name indicates a credential secret."""
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in CREDENTIAL_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """Redact credential-looking substrings from a string value."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_VALUE_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    Use this before logging anything that came from the token endpoint.
    """
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


def mask_secret(plaintext: Optional[str]) -> dict:
    """
    Build the admin-facing preview of a decrypted secret.

    Returns:
        {"set": False, "preview": ""} when the secret is unset or undecryptable,
        otherwise {"set": True, "preview": "<first 6>...<last 4>"}
    """
    if not plaintext:
        return {"set": False, "preview": ""}
    return {
        "set": True,
        "preview": f"{plaintext[:PREVIEW_HEAD]}...{plaintext[-PREVIEW_TAIL:]}",
    }


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        logger.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Fields passed through extra={...}
        for key in list(record.__dict__.keys()):
            if key in _SAFE_RECORD_KEYS:
                continue
            value = record.__dict__[key]
            if is_credential_secret_key(key) and isinstance(value, str):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(value, str):
                setattr(record, key, redact_credential_value(value))

        return True


def setup_credential_logging() -> None:
    """
    Install the redaction filter on every logger that touches credentials.

    Call this during application startup.
    """
    credential_filter = CredentialLoggingFilter()

    credential_loggers = [
        "sellerdesk.credentials",
        "sellerdesk.credentials.vault",
        "sellerdesk.credentials.ebay_client",
        "sellerdesk.credentials.resolver",
        "sellerdesk.credentials.app_tokens",
        "sellerdesk.services.ebay_oauth_service",
        "sellerdesk.middleware.credential_resolution",
        "sellerdesk.api.routes.ebay_oauth",
        "sellerdesk.api.routes.config",
        "sellerdesk.api.routes.users",
        "sellerdesk.platform.sessions",
    ]

    for logger_name in credential_loggers:
        log = logging.getLogger(logger_name)
        if not any(isinstance(f, CredentialLoggingFilter) for f in log.filters):
            log.addFilter(credential_filter)

    logger.info("Credential logging configured with redaction filter")
