"""Authenticated HTTP client for the remote licensing server."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from ...config import LicensingConfig
from .cache import InMemoryResponseCache, ResponseCache
from .exceptions import (
    ApiError,
    ClientError,
    MalformedResponseError,
    ServerError,
    TransportError,
)
from .nonce import NonceSigner

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
SITE_HEADER = "X-Site-Url"
NONCE_HEADER = "X-Request-Nonce"


class TokenProvider(Protocol):
    """Source of bearer credentials for authenticated requests."""

    def get_access_token(self) -> str:
        ...

    def has_valid_token(self) -> bool:
        ...


class ConnectionTestResult(BaseModel):
    """Outcome of a liveness probe against the licensing server."""

    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    server_info: Dict[str, Any] = {}
    response_time_ms: float = 0.0

    model_config = ConfigDict(frozen=True)


class ApiClient:
    """Executes JSON calls with retry, backoff and opt-in response caching.

    5xx responses and transport failures are retried up to ``max_retries``
    times with exponential backoff (``base``, ``2*base``, ``4*base``...).
    4xx responses are terminal and returned to the caller as
    :class:`ClientError` without a retry.
    """

    def __init__(
        self,
        config: LicensingConfig,
        token_provider: TokenProvider,
        *,
        http_client: Optional[httpx.Client] = None,
        cache: Optional[ResponseCache] = None,
        nonce_signer: Optional[NonceSigner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._http = http_client or httpx.Client(follow_redirects=True)
        self._cache = cache or InMemoryResponseCache()
        self._nonce_signer = nonce_signer or NonceSigner(config.encryption_secret)
        self._sleep = sleep
        self._max_retries = config.max_retries
        self._last_response_time_ms = 0.0

    @property
    def last_response_time_ms(self) -> float:
        return self._last_response_time_ms

    @property
    def nonce_signer(self) -> NonceSigner:
        return self._nonce_signer

    def is_available(self) -> bool:
        return bool(self._config.server_url) and self._token_provider.has_valid_token()

    def request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        *,
        require_auth: bool = True,
        timeout: Optional[float] = None,
        cache_key: Optional[str] = None,
        cache_ttl: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Perform a request and return the decoded JSON object."""

        method = method.upper()
        if cache_key:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        headers = self._build_headers(require_auth)
        url = f"{self._config.server_url.rstrip('/')}{path}"
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "timeout": timeout or self._config.request_timeout,
        }
        if body:
            if method in _BODY_METHODS:
                kwargs["json"] = dict(body)
            elif method == "GET":
                kwargs["params"] = dict(body)

        start = time.perf_counter()
        try:
            response = self._send_with_retry(method, url, **kwargs)
        finally:
            self._last_response_time_ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.warning(
                "Licensing API error",
                extra={
                    "api_path": path,
                    "api_status": response.status_code,
                    "api_error_code": error.code,
                },
            )
            raise error

        data = _decode_json(response)
        if cache_key:
            self._cache.set(cache_key, data, cache_ttl or self._config.response_cache_ttl)
        return data

    def test_connection(self) -> ConnectionTestResult:
        if not self._config.server_url:
            return ConnectionTestResult(success=False, error="Server URL not configured", code="missing_url")
        try:
            info = self.request("GET", self._config.health_path, require_auth=False)
        except ApiError as exc:
            return ConnectionTestResult(
                success=False,
                error=exc.message,
                code=exc.code,
                response_time_ms=self._last_response_time_ms,
            )
        return ConnectionTestResult(
            success=True,
            server_info=info,
            response_time_ms=self._last_response_time_ms,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._http.close()

    def _build_headers(self, require_auth: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
            SITE_HEADER: self._config.site_url,
            NONCE_HEADER: self._nonce_signer.create(),
        }
        if require_auth:
            token = self._token_provider.get_access_token()
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _send_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        last_response: Optional[httpx.Response] = None
        last_error: Optional[ApiError] = None
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                response = self._http.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = TransportError(str(exc) or type(exc).__name__)
                last_response = None
            else:
                if response.status_code < 500:
                    return response
                last_response = response
                last_error = None

            if attempt >= self._max_retries:
                break
            delay = self._config.retry_backoff_base * (2 ** attempt)
            logger.info(
                "Retrying licensing API request",
                extra={
                    "api_url": url,
                    "api_attempt": attempt + 1,
                    "api_attempts": attempts,
                    "api_retry_delay": delay,
                },
            )
            self._sleep(delay)

        if last_response is not None:
            return last_response
        assert last_error is not None
        logger.warning(
            "Licensing API unreachable after %d attempts: %s",
            attempts,
            last_error.message,
        )
        raise last_error


def _decode_json(response: httpx.Response) -> Dict[str, Any]:
    if response.status_code == 204 or not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponseError(http_status=response.status_code) from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(
            "Expected a JSON object from server", http_status=response.status_code
        )
    return data


def _error_from_response(response: httpx.Response) -> ApiError:
    status_code = response.status_code
    payload: Dict[str, Any] = {}
    try:
        decoded = response.json()
        if isinstance(decoded, dict):
            payload = decoded
    except ValueError:
        payload = {}

    message = payload.get("detail") or payload.get("message") or payload.get("error_message")
    if not isinstance(message, str):
        message = "API request failed"
    code = str(payload.get("error_code") or payload.get("code") or "api_error")

    if status_code >= 500:
        return ServerError(code, message, http_status=status_code, payload=payload)
    return ClientError(code, message, http_status=status_code, payload=payload)


__all__ = ["ApiClient", "ConnectionTestResult", "TokenProvider"]
