"""
Tests for the credential vault.

Tests AES-256-GCM encryption of stored secrets and fail-closed decryption.
"""

import base64
import hashlib

import pytest

from sellerdesk.credentials.vault import (
    KEY_SIZE,
    NONCE_SIZE,
    SEGMENT_SEPARATOR,
    TAG_SIZE,
    SecretVault,
    derive_key,
)
from sellerdesk.platform.errors import ConfigurationError


class TestKeyDerivation:

    def test_key_is_sha256_of_master_secret(self):
        key = derive_key("master")
        assert key == hashlib.sha256(b"master").digest()
        assert len(key) == KEY_SIZE

    def test_empty_master_secret_rejected(self):
        with pytest.raises(ValueError):
            SecretVault("")

    def test_from_env_requires_session_secret(self, monkeypatch):
        monkeypatch.delenv("SESSION_SECRET", raising=False)
        with pytest.raises(ConfigurationError) as exc_info:
            SecretVault.from_env()
        assert exc_info.value.missing == ["SESSION_SECRET"]

    def test_from_env_uses_session_secret(self, monkeypatch):
        monkeypatch.setenv("SESSION_SECRET", "from-env")
        stored = SecretVault.from_env().encrypt("secret")
        assert SecretVault("from-env").decrypt(stored) == "secret"


class TestEncrypt:

    @pytest.fixture
    def vault(self) -> SecretVault:
        return SecretVault("unit-test-master")

    def test_roundtrip(self, vault):
        """decrypt(encrypt(s)) returns s."""
        for plaintext in ("v^1.1#i^1#p^3#r^1", "x", "ünïcødé ✓", "a:b:c"):
            assert vault.decrypt(vault.encrypt(plaintext)) == plaintext

    def test_empty_and_none_encrypt_to_none(self, vault):
        assert vault.encrypt(None) is None
        assert vault.encrypt("") is None

    def test_none_and_empty_decrypt_to_none(self, vault):
        assert vault.decrypt(None) is None
        assert vault.decrypt("") is None

    def test_stored_form_is_three_base64_segments(self, vault):
        stored = vault.encrypt("secret-value")
        segments = stored.split(SEGMENT_SEPARATOR)

        assert len(segments) == 3
        nonce, tag, ciphertext = (base64.b64decode(s) for s in segments)
        assert len(nonce) == NONCE_SIZE
        assert len(tag) == TAG_SIZE
        assert len(ciphertext) == len("secret-value")

    def test_fresh_nonce_per_call(self, vault):
        first = vault.encrypt("same")
        second = vault.encrypt("same")

        assert first != second
        assert first.split(SEGMENT_SEPARATOR)[0] != second.split(SEGMENT_SEPARATOR)[0]

    def test_ciphertext_does_not_contain_plaintext(self, vault):
        stored = vault.encrypt("plain-secret-value")
        assert "plain-secret-value" not in stored


class TestDecryptFailsClosed:

    @pytest.fixture
    def vault(self) -> SecretVault:
        return SecretVault("unit-test-master")

    @staticmethod
    def _flip_byte(stored: str, segment_index: int, byte_index: int) -> str:
        segments = stored.split(SEGMENT_SEPARATOR)
        raw = bytearray(base64.b64decode(segments[segment_index]))
        raw[byte_index] ^= 0x01
        segments[segment_index] = base64.b64encode(bytes(raw)).decode("ascii")
        return SEGMENT_SEPARATOR.join(segments)

    def test_flipping_any_byte_returns_none(self, vault):
        """Every single-byte change in nonce, tag or ciphertext is rejected."""
        stored = vault.encrypt("v^1.1#i^1#secret")
        sizes = [len(base64.b64decode(s)) for s in stored.split(SEGMENT_SEPARATOR)]

        for segment_index, size in enumerate(sizes):
            for byte_index in range(size):
                tampered = self._flip_byte(stored, segment_index, byte_index)
                assert vault.decrypt(tampered) is None

    def test_flipping_any_character_never_raises(self, vault):
        stored = vault.encrypt("v^1.1#i^1#secret")

        for index, char in enumerate(stored):
            replacement = "A" if char != "A" else "B"
            tampered = stored[:index] + replacement + stored[index + 1:]
            assert vault.decrypt(tampered) is None

    def test_wrong_master_secret_returns_none(self, vault):
        stored = vault.encrypt("secret")
        assert SecretVault("different-master").decrypt(stored) is None

    @pytest.mark.parametrize("stored", [
        "not-a-token",
        "a:b",
        "a:b:c:d",
        "!!!:???:***",
        ":::",
        "AAAA:AAAA:AAAA",
    ])
    def test_malformed_values_return_none(self, vault, stored):
        assert vault.decrypt(stored) is None

    def test_truncated_ciphertext_returns_none(self, vault):
        stored = vault.encrypt("a much longer secret value")
        assert vault.decrypt(stored[:-8]) is None

    def test_wrong_nonce_size_returns_none(self, vault):
        nonce, tag, ciphertext = vault.encrypt("secret").split(SEGMENT_SEPARATOR)
        short_nonce = base64.b64encode(b"\x00" * 8).decode("ascii")
        assert vault.decrypt(SEGMENT_SEPARATOR.join([short_nonce, tag, ciphertext])) is None
