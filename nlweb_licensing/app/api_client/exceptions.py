"""Error taxonomy for calls to the remote licensing server."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base error raised by :class:`ApiClient` requests."""

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        *,
        http_status: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "http_status": self.http_status}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, http_status={self.http_status!r})"


class TransportError(ApiError):
    """Network, DNS or timeout failure before a response was received."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__("transport_error", message)


class ClientError(ApiError):
    """4xx response; the request itself must change before it can succeed."""


class ServerError(ApiError):
    """5xx response from the licensing server."""

    retryable = True


class MalformedResponseError(ApiError):
    """Body is not valid JSON or lacks required fields."""

    def __init__(self, message: str = "Invalid JSON response from server", *, http_status: Optional[int] = None) -> None:
        super().__init__("json_decode_error", message, http_status=http_status)


class NoTokenError(ApiError):
    """No usable bearer token is available for an authenticated request."""

    def __init__(self, message: str = "No valid authentication token available") -> None:
        super().__init__("no_auth_token", message)


__all__ = [
    "ApiError",
    "ClientError",
    "MalformedResponseError",
    "NoTokenError",
    "ServerError",
    "TransportError",
]
