"""Encrypted token storage with proactive refresh."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from ...config import LicensingConfig
from ...scheduling import DeferredTaskScheduler
from ..api_client.exceptions import NoTokenError
from ..storage import OptionStore, SecretCipher, SecretDecryptionError
from .models import AuthResult, AuthStatus, TokenResponse

logger = logging.getLogger(__name__)

ACCESS_TOKEN_OPTION = "nlweb_access_token"
REFRESH_TOKEN_OPTION = "nlweb_refresh_token"
TOKEN_EXPIRES_OPTION = "nlweb_token_expires"
API_KEY_OPTION = "nlweb_api_key"
SITE_REGISTRATION_OPTION = "nlweb_site_registration"
REFRESH_TASK_NAME = "nlweb_token_refresh"


class TokenStore:
    """Holds API credentials encrypted at rest and keeps the access token fresh.

    ``get_access_token`` refreshes transparently once the token is within
    ``token_refresh_buffer`` seconds of expiry. A failed refresh never clears
    the stored tokens; the current token stays usable until it actually
    expires.
    """

    def __init__(
        self,
        config: LicensingConfig,
        store: OptionStore,
        cipher: SecretCipher,
        *,
        http_client: Optional[httpx.Client] = None,
        scheduler: Optional[DeferredTaskScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._cipher = cipher
        self._http = http_client or httpx.Client()
        self._scheduler = scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._refresh_buffer = timedelta(seconds=config.token_refresh_buffer)

    def get_access_token(self) -> str:
        token = self._read_secret(ACCESS_TOKEN_OPTION)
        if token is None:
            raise NoTokenError()

        expires_at = self.token_expires_at()
        if expires_at is not None and self._clock() >= expires_at - self._refresh_buffer:
            if self.refresh():
                token = self._read_secret(ACCESS_TOKEN_OPTION) or token
                expires_at = self.token_expires_at()

        if expires_at is not None and self._clock() >= expires_at:
            raise NoTokenError("Access token expired and could not be refreshed")
        return token

    def has_valid_token(self) -> bool:
        if self._read_secret(ACCESS_TOKEN_OPTION) is None:
            return False
        expires_at = self.token_expires_at()
        return expires_at is None or self._clock() < expires_at

    def token_expires_at(self) -> Optional[datetime]:
        raw = self._store.get(TOKEN_EXPIRES_OPTION)
        if not raw:
            return None
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)

    def store_tokens(self, token_response: Union[TokenResponse, Mapping[str, Any]]) -> TokenResponse:
        """Persist a token response; raises ``ValueError`` when it lacks an access token."""

        if not isinstance(token_response, TokenResponse):
            token_response = TokenResponse.model_validate(dict(token_response))

        expires_at = self._clock() + timedelta(seconds=token_response.expires_in)
        self._store.set(ACCESS_TOKEN_OPTION, self._cipher.encrypt(token_response.access_token))
        self._store.set(TOKEN_EXPIRES_OPTION, int(expires_at.timestamp()))
        if token_response.refresh_token:
            self._store.set(REFRESH_TOKEN_OPTION, self._cipher.encrypt(token_response.refresh_token))

        self._schedule_refresh(expires_at)
        return token_response

    def refresh(self) -> bool:
        refresh_token = self._read_secret(REFRESH_TOKEN_OPTION)
        if not refresh_token:
            logger.warning("Token refresh skipped: no refresh token stored")
            return False

        data = self._post(
            self._config.refresh_path,
            {"refresh_token": refresh_token, "site_url": self._config.site_url},
            bearer=refresh_token,
        )
        if data is None:
            return False
        try:
            self.store_tokens(data)
        except ValidationError:
            logger.warning("Token refresh response did not contain an access token")
            return False
        logger.info("Access token refreshed")
        return True

    def refresh_from_schedule(self) -> None:
        if not self.refresh():
            logger.warning("Scheduled token refresh failed; will retry on next schedule")

    def clear(self) -> None:
        for option in (
            ACCESS_TOKEN_OPTION,
            REFRESH_TOKEN_OPTION,
            TOKEN_EXPIRES_OPTION,
            API_KEY_OPTION,
            SITE_REGISTRATION_OPTION,
        ):
            self._store.delete(option)
        if self._scheduler is not None:
            self._scheduler.cancel(REFRESH_TASK_NAME)

    def store_api_key(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key must not be empty")
        self._store.set(API_KEY_OPTION, self._cipher.encrypt(api_key.strip()))

    def get_api_key(self) -> Optional[str]:
        return self._read_secret(API_KEY_OPTION)

    def authenticate(self, auth_data: Mapping[str, Any]) -> AuthResult:
        payload: Dict[str, Any] = {"site_url": self._config.site_url}
        payload.update(auth_data)
        data = self._post(self._config.login_path, payload)
        if data is None:
            return AuthResult(success=False, error="Authentication failed")
        if data.get("access_token"):
            self.store_tokens(data)
        return AuthResult(success=True, data=data)

    def register_site(self, registration_data: Optional[Mapping[str, Any]] = None) -> AuthResult:
        payload: Dict[str, Any] = {
            "site_url": self._config.site_url,
            "plugin_version": self._config.plugin_version,
            "wp_version": self._config.host_version,
            "php_version": self._config.runtime_version,
        }
        payload.update(registration_data or {})
        data = self._post(self._config.register_path, payload)
        if data is None:
            return AuthResult(success=False, error="Site registration failed")
        if data.get("site_id"):
            self._store.set(SITE_REGISTRATION_OPTION, data)
        if data.get("api_key"):
            self.store_api_key(str(data["api_key"]))
        return AuthResult(success=True, data={k: v for k, v in data.items() if k != "api_key"})

    def get_auth_status(self) -> AuthStatus:
        registration = self._store.get(SITE_REGISTRATION_OPTION) or {}
        site_id = registration.get("site_id")
        return AuthStatus(
            has_api_key=self.get_api_key() is not None,
            has_valid_token=self.has_valid_token(),
            token_expires=self.token_expires_at(),
            is_registered=bool(registration),
            site_id=str(site_id) if site_id is not None else None,
        )

    def _schedule_refresh(self, expires_at: datetime) -> None:
        if self._scheduler is None:
            return
        run_at = max(expires_at - self._refresh_buffer, self._clock())
        self._scheduler.schedule_at(REFRESH_TASK_NAME, run_at, self.refresh_from_schedule)

    def _read_secret(self, option: str) -> Optional[str]:
        try:
            return self._cipher.decrypt_optional(self._store.get(option))
        except SecretDecryptionError:
            logger.warning("Stored credential could not be decrypted", extra={"option": option})
            return None

    def _post(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        bearer: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        url = f"{self._config.server_url.rstrip('/')}{path}"
        try:
            response = self._http.post(
                url, json=dict(payload), headers=headers, timeout=self._config.request_timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("Auth request failed", extra={"auth_path": path, "error": str(exc)})
            return None

        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code != 200 or not isinstance(data, dict):
            detail = data.get("detail") if isinstance(data, dict) else None
            logger.warning(
                "Auth request rejected",
                extra={"auth_path": path, "status_code": response.status_code, "detail": detail},
            )
            return None
        return data


__all__ = [
    "ACCESS_TOKEN_OPTION",
    "API_KEY_OPTION",
    "REFRESH_TASK_NAME",
    "REFRESH_TOKEN_OPTION",
    "TOKEN_EXPIRES_OPTION",
    "TokenStore",
]
