"""
Secret vault for credentials stored on the account owner's row.

Implements AES-256-GCM encryption of individual secret strings.

SECURITY:
- The 32-byte key is the SHA-256 digest of one master secret (SESSION_SECRET)
- Each encryption uses a fresh random 96-bit nonce
- Stored form is three base64 segments: nonce:tag:ciphertext
- Decryption FAILS CLOSED: any malformed, truncated or tampered value
  decrypts to None, never to an exception or partial plaintext
- No key rotation: changing the master secret makes every stored value
  decrypt to None

Usage:
    from sellerdesk.credentials.vault import SecretVault

    vault = SecretVault.from_env()
    stored = vault.encrypt("v^1.1#i^1#...")
    plaintext = vault.decrypt(stored)  # None if unusable
"""

import base64
import binascii
import hashlib
import logging
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sellerdesk.config.settings import get_master_secret

logger = logging.getLogger(__name__)


# AES-GCM constants
NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256

SEGMENT_SEPARATOR = ":"


def derive_key(master_secret: str) -> bytes:
    """Derive the 32-byte vault key from the master secret."""
    return hashlib.sha256(master_secret.encode("utf-8")).digest()


def _decode_segment(segment: str) -> bytes:
    """Strict base64 decode; non-canonical encodings are rejected as tampering."""
    decoded = base64.b64decode(segment, validate=True)
    if base64.b64encode(decoded).decode("ascii") != segment:
        raise ValueError("non-canonical base64 segment")
    return decoded


class SecretVault:
    """
    AES-256-GCM vault for single secret strings.

    encrypt(None or "") returns None so that an absent secret never turns
    into a non-null ciphertext.
    """

    def __init__(self, master_secret: str):
        if not master_secret:
            raise ValueError("master_secret is required")
        self._aesgcm = AESGCM(derive_key(master_secret))

    @classmethod
    def from_env(cls) -> "SecretVault":
        """
        Build a vault from SESSION_SECRET.

        Raises:
            ConfigurationError: If SESSION_SECRET is not set
        """
        return cls(get_master_secret())

    @staticmethod
    def generate_nonce() -> bytes:
        return secrets.token_bytes(NONCE_SIZE)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a secret for storage.

        Returns:
            "nonce:tag:ciphertext" (base64 segments), or None for empty input
        """
        if not plaintext:
            return None

        nonce = self.generate_nonce()
        # AESGCM.encrypt returns ciphertext + tag concatenated
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

        return SEGMENT_SEPARATOR.join(
            base64.b64encode(part).decode("ascii") for part in (nonce, tag, ciphertext)
        )

    def decrypt(self, stored: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored secret.

        Returns:
            The plaintext, or None when the value is empty, malformed,
            or fails authentication.
        """
        if not stored:
            return None

        try:
            nonce_b64, tag_b64, ciphertext_b64 = stored.split(SEGMENT_SEPARATOR)
            nonce = _decode_segment(nonce_b64)
            tag = _decode_segment(tag_b64)
            ciphertext = _decode_segment(ciphertext_b64)
        except (ValueError, binascii.Error):
            logger.warning("Stored secret is malformed", extra={"operation": "decrypt"})
            return None

        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            logger.warning("Stored secret has invalid segment sizes", extra={"operation": "decrypt"})
            return None

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except InvalidTag:
            logger.warning(
                "Stored secret failed authentication (tampered or key changed)",
                extra={"operation": "decrypt"},
            )
            return None
        except UnicodeDecodeError:
            logger.warning("Stored secret is not valid UTF-8", extra={"operation": "decrypt"})
            return None
