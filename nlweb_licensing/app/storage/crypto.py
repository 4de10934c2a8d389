"""Authenticated encryption for secrets persisted in the option store."""
from __future__ import annotations

import base64
import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_VERSION_PREFIX = "v1:"
_NONCE_BYTES = 12
_ASSOCIATED_DATA = b"nlweb-licensing"


class SecretDecryptionError(ValueError):
    """Raised when a stored secret cannot be decrypted or was tampered with."""


class SecretCipher:
    """AES-GCM cipher keyed by a host-provided secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        key = hashlib.sha256(secret.encode("utf-8")).digest()
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), _ASSOCIATED_DATA)
        token = base64.urlsafe_b64encode(nonce + sealed).decode("ascii")
        return f"{_VERSION_PREFIX}{token}"

    def decrypt(self, token: str) -> str:
        if not token or not token.startswith(_VERSION_PREFIX):
            raise SecretDecryptionError("Unsupported secret format")
        try:
            raw = base64.urlsafe_b64decode(token[len(_VERSION_PREFIX):].encode("ascii"))
        except (ValueError, UnicodeEncodeError) as exc:
            raise SecretDecryptionError("Secret is not valid base64") from exc
        if len(raw) <= _NONCE_BYTES:
            raise SecretDecryptionError("Secret payload is truncated")
        nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, _ASSOCIATED_DATA)
        except InvalidTag as exc:
            raise SecretDecryptionError("Secret failed authentication") from exc
        return plaintext.decode("utf-8")

    def decrypt_optional(self, token: Optional[str]) -> Optional[str]:
        """Return ``None`` for empty values instead of raising."""

        if not token:
            return None
        return self.decrypt(token)


def mask_secret(value: Optional[str], *, visible: int = 8) -> str:
    """Truncate a secret for log output."""

    if not value:
        return ""
    return f"{value[:visible]}..."


__all__ = ["SecretCipher", "SecretDecryptionError", "mask_secret"]
