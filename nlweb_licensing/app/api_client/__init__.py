"""HTTP client for the remote licensing server."""

from .cache import InMemoryResponseCache, ResponseCache
from .client import ApiClient, ConnectionTestResult, TokenProvider
from .exceptions import (
    ApiError,
    ClientError,
    MalformedResponseError,
    NoTokenError,
    ServerError,
    TransportError,
)
from .nonce import NonceSigner

__all__ = [
    "ApiClient",
    "ApiError",
    "ClientError",
    "ConnectionTestResult",
    "InMemoryResponseCache",
    "MalformedResponseError",
    "NoTokenError",
    "NonceSigner",
    "ResponseCache",
    "ServerError",
    "TokenProvider",
    "TransportError",
]
