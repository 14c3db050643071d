"""AES-256-GCM encryption for secrets stored at rest (AI provider API keys).

Ciphertexts are hex strings laid out as ``iv (16 bytes) | auth tag (16 bytes) | data``.
The key is the first 32 bytes of the UTF-8 encoded ``ENCRYPTION_KEY`` setting.
"""

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.core.config import settings


logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32


class DecryptionError(ValueError):
    """Raised when a ciphertext is malformed or fails authentication."""


def _derive_key(secret: str | None = None) -> bytes:
    raw = secret if secret is not None else settings.require_credential("encryption_key", "Encryption")
    key = raw.encode("utf-8")[:KEY_LENGTH]
    if len(key) != KEY_LENGTH:
        msg = f"Encryption key must be at least {KEY_LENGTH} bytes"
        raise ValueError(msg)
    return key


def encrypt(plaintext: str, *, secret: str | None = None) -> str:
    """Encrypt a string and return the hex encoded ``iv | tag | ciphertext``."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(secret)).encrypt(iv, plaintext.encode("utf-8"), None)
    # cryptography appends the tag; the stored layout puts it first.
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return (iv + tag + ciphertext).hex()


def decrypt(encrypted: str, *, secret: str | None = None) -> str:
    """Decrypt a value produced by :func:`encrypt`.

    Raises:
        DecryptionError: If the input is not valid hex, is truncated, or was tampered with
    """
    try:
        blob = bytes.fromhex(encrypted)
    except ValueError as e:
        raise DecryptionError("Ciphertext is not valid hex") from e

    if len(blob) < IV_LENGTH + AUTH_TAG_LENGTH:
        raise DecryptionError("Ciphertext is truncated")

    iv = blob[:IV_LENGTH]
    tag = blob[IV_LENGTH : IV_LENGTH + AUTH_TAG_LENGTH]
    ciphertext = blob[IV_LENGTH + AUTH_TAG_LENGTH :]

    try:
        plaintext = AESGCM(_derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        logger.warning("Secret failed authentication during decryption")
        raise DecryptionError("Ciphertext failed authentication") from e

    return plaintext.decode("utf-8")
