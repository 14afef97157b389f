"""Configuration module for backend services."""

from sellerdesk.config.settings import (
    EbaySettings,
    SessionSettings,
    get_master_secret,
)

__all__ = [
    "EbaySettings",
    "SessionSettings",
    "get_master_secret",
]
