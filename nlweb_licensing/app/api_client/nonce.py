"""Per-request nonces signed with the host secret."""
from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional


class NonceSigner:
    """HMAC based nonce generator for request headers and payloads."""

    def __init__(self, secret: str, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        self._secret = secret.encode("utf-8")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, action: str = "api_request") -> str:
        timestamp = int(self._clock().timestamp())
        salt = secrets.token_hex(8)
        material = f"{action}|{timestamp}|{salt}".encode("utf-8")
        digest = hmac.new(self._secret, material, hashlib.sha256).hexdigest()
        return f"{timestamp}.{salt}.{digest[:32]}"

    def verify(self, nonce: str, action: str = "api_request", *, max_age_seconds: int = 300) -> bool:
        try:
            timestamp_raw, salt, digest = nonce.split(".")
            timestamp = int(timestamp_raw)
        except ValueError:
            return False
        if abs(int(self._clock().timestamp()) - timestamp) > max_age_seconds:
            return False
        material = f"{action}|{timestamp}|{salt}".encode("utf-8")
        expected = hmac.new(self._secret, material, hashlib.sha256).hexdigest()[:32]
        return hmac.compare_digest(expected, digest)
