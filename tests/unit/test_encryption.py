"""Tests for AES-256-GCM secret encryption."""

import pytest

from src.core import encryption
from src.core.encryption import DecryptionError


@pytest.mark.unit
class TestEncryption:
    def test_round_trip(self):
        ciphertext = encryption.encrypt("sk-live-123")

        assert ciphertext != "sk-live-123"
        assert encryption.decrypt(ciphertext) == "sk-live-123"

    def test_layout_is_hex_iv_tag_data(self):
        ciphertext = encryption.encrypt("abc")

        raw = bytes.fromhex(ciphertext)
        assert len(raw) == encryption.IV_LENGTH + encryption.AUTH_TAG_LENGTH + 3

    def test_fresh_iv_per_encryption(self):
        assert encryption.encrypt("same") != encryption.encrypt("same")

    def test_tampering_is_detected(self):
        raw = bytearray(bytes.fromhex(encryption.encrypt("sk-live-123")))
        raw[-1] ^= 0x01

        with pytest.raises(DecryptionError, match="authentication"):
            encryption.decrypt(raw.hex())

    def test_wrong_key_fails(self):
        ciphertext = encryption.encrypt("secret", secret="a" * 32)

        with pytest.raises(DecryptionError):
            encryption.decrypt(ciphertext, secret="b" * 32)

    def test_rejects_non_hex(self):
        with pytest.raises(DecryptionError, match="hex"):
            encryption.decrypt("not-hex!")

    def test_rejects_truncated(self):
        with pytest.raises(DecryptionError, match="truncated"):
            encryption.decrypt("00" * 10)

    def test_short_key_is_rejected(self):
        with pytest.raises(ValueError, match="at least 32 bytes"):
            encryption.encrypt("secret", secret="short")
