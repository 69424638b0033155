# catalog_hub/security/vault.py
# ==========================================================
# Credential vault: AES-256-GCM for per-shop API credentials
# Storage format (single text column): nonce:tag:ciphertext
# each part standard base64.
# ==========================================================
from __future__ import annotations

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from catalog_hub.config import settings
from catalog_hub.errors import FormatError, IntegrityError, VaultConfigError

KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16
_DELIM = ":"
_KEY_PREFIX = "base64:"


def load_key(raw: Optional[str]) -> bytes:
    """
    Decode ENCRYPTION_KEY. Accepts plain base64 or "base64:<b64>".
    Raises VaultConfigError unless it decodes to exactly 32 bytes.
    """
    if not raw or not raw.strip():
        raise VaultConfigError("ENCRYPTION_KEY environment variable is required")
    data = raw.strip()
    if data.startswith(_KEY_PREFIX):
        data = data[len(_KEY_PREFIX):]
    try:
        key = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise VaultConfigError("Invalid ENCRYPTION_KEY format. Must be base64 encoded 32 bytes")
    if len(key) != KEY_BYTES:
        raise VaultConfigError(f"Encryption key must be {KEY_BYTES} bytes (256 bits), got {len(key)}")
    return key


def generate_key() -> str:
    """New random key in the form accepted by load_key()."""
    return _KEY_PREFIX + base64.b64encode(os.urandom(KEY_BYTES)).decode("ascii")


def _b64(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def _unb64(s: str, part: str) -> bytes:
    try:
        raw = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError):
        raise FormatError(f"Invalid encrypted data format: {part} is not base64")
    # b64decode ignores the unused low bits before padding; only the canonical encoding is accepted
    if _b64(raw) != s:
        raise FormatError(f"Invalid encrypted data format: {part} is not canonical base64")
    return raw


class CredentialVault:
    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise VaultConfigError(f"Encryption key must be {KEY_BYTES} bytes (256 bits)")
        self._aead = AESGCM(key)

    @classmethod
    def from_env(cls) -> "CredentialVault":
        return cls(load_key(settings.ENCRYPTION_KEY))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return _DELIM.join((_b64(nonce), _b64(tag), _b64(ciphertext)))

    def decrypt(self, compact: str) -> str:
        parts = (compact or "").split(_DELIM)
        if len(parts) != 3:
            raise FormatError("Invalid encrypted data format: expected nonce:tag:ciphertext")
        nonce = _unb64(parts[0], "nonce")
        tag = _unb64(parts[1], "tag")
        ciphertext = _unb64(parts[2], "ciphertext")
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise FormatError("Invalid encrypted data format: bad nonce or tag length")
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise IntegrityError("Credential authentication failed (tampered data or wrong key)")
        return plain.decode("utf-8")


if __name__ == "__main__":
    print(generate_key())
