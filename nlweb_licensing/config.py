"""Configuration for the licensing and remote-validation subsystem."""
from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_PRODUCT_NAME = "NLWeb"
DEFAULT_PLUGIN_VERSION = "1.0.3"
MAX_LICENSE_CACHE_TTL = 300
MIN_SECRET_LENGTH = 16


class ConfigError(ValueError):
    """Raised when configuration values are missing or malformed."""


@dataclass(frozen=True)
class LicensingConfig:
    """Typed configuration validated at load time."""

    server_url: str
    site_url: str
    encryption_secret: str
    product_name: str = DEFAULT_PRODUCT_NAME
    plugin_version: str = DEFAULT_PLUGIN_VERSION
    host_version: str = "unknown"
    runtime_version: str = platform.python_version()
    license_key: Optional[str] = None
    request_timeout: float = 10.0
    validation_timeout: float = 5.0
    activation_timeout: float = 15.0
    max_retries: int = 3
    retry_backoff_base: float = 1.0
    token_refresh_buffer: int = 300
    license_cache_ttl: int = MAX_LICENSE_CACHE_TTL
    response_cache_ttl: int = 300
    rate_limit_max_requests: int = 30
    rate_limit_window_seconds: int = 60
    addon_cache_ttl: int = 3600
    denial_log_limit: int = 100
    capability_prefix: str = "nlweb_"
    upgrade_base_url: str = "https://wpnlweb.com/pricing/"
    addon_store_url: str = "https://wpnlweb.com/addons/"
    refresh_path: str = "/v1/auth/refresh"
    login_path: str = "/v1/auth/login"
    register_path: str = "/v1/sites/register"
    validate_path: str = "/validate"
    activate_path: str = "/activate"
    deactivate_path: str = "/deactivate"
    check_path: str = "/check"
    credits_path: str = "/credits/use"
    health_path: str = "/health"

    def __post_init__(self) -> None:
        if not self.server_url:
            raise ConfigError("server_url must be provided")
        if not self.server_url.startswith(("http://", "https://")):
            raise ConfigError(f"server_url must be an http(s) URL, got {self.server_url!r}")
        if not self.site_url:
            raise ConfigError("site_url must be provided")
        if len(self.encryption_secret or "") < MIN_SECRET_LENGTH:
            raise ConfigError(
                f"encryption_secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        for name in ("request_timeout", "validation_timeout", "activation_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if not 0 < self.license_cache_ttl <= MAX_LICENSE_CACHE_TTL:
            raise ConfigError(
                f"license_cache_ttl must be between 1 and {MAX_LICENSE_CACHE_TTL} seconds"
            )
        if self.rate_limit_max_requests < 1 or self.rate_limit_window_seconds < 1:
            raise ConfigError("rate limit settings must be >= 1")
        if self.denial_log_limit < 1:
            raise ConfigError("denial_log_limit must be >= 1")

    @property
    def user_agent(self) -> str:
        return f"{self.product_name}/{self.plugin_version}"


def _to_int(name: str, value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: expected integer value, got {value!r}") from exc
    if parsed < 0:
        raise ConfigError(f"{name}: expected non-negative value, got {parsed}")
    return parsed


def _to_float(name: str, value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: expected float value, got {value!r}") from exc
    if parsed < 0:
        raise ConfigError(f"{name}: expected non-negative value, got {parsed}")
    return parsed


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} is required")
    return value


def load_licensing_config(env: Optional[Mapping[str, str]] = None) -> LicensingConfig:
    """Load :class:`LicensingConfig` from ``NLWEB_*`` environment variables."""

    env_mapping = os.environ if env is None else env

    return LicensingConfig(
        server_url=_required(env_mapping, "NLWEB_SERVER_URL").rstrip("/"),
        site_url=_required(env_mapping, "NLWEB_SITE_URL").rstrip("/"),
        encryption_secret=_required(env_mapping, "NLWEB_ENCRYPTION_SECRET"),
        product_name=env_mapping.get("NLWEB_PRODUCT_NAME", DEFAULT_PRODUCT_NAME),
        plugin_version=env_mapping.get("NLWEB_PLUGIN_VERSION", DEFAULT_PLUGIN_VERSION),
        host_version=env_mapping.get("NLWEB_HOST_VERSION", "unknown"),
        license_key=(env_mapping.get("NLWEB_LICENSE_KEY") or "").strip() or None,
        request_timeout=_to_float(
            "NLWEB_REQUEST_TIMEOUT", env_mapping.get("NLWEB_REQUEST_TIMEOUT"), default=10.0
        ),
        validation_timeout=_to_float(
            "NLWEB_VALIDATION_TIMEOUT", env_mapping.get("NLWEB_VALIDATION_TIMEOUT"), default=5.0
        ),
        activation_timeout=_to_float(
            "NLWEB_ACTIVATION_TIMEOUT", env_mapping.get("NLWEB_ACTIVATION_TIMEOUT"), default=15.0
        ),
        max_retries=_to_int("NLWEB_MAX_RETRIES", env_mapping.get("NLWEB_MAX_RETRIES"), default=3),
        retry_backoff_base=_to_float(
            "NLWEB_RETRY_BACKOFF", env_mapping.get("NLWEB_RETRY_BACKOFF"), default=1.0
        ),
        token_refresh_buffer=_to_int(
            "NLWEB_TOKEN_REFRESH_BUFFER", env_mapping.get("NLWEB_TOKEN_REFRESH_BUFFER"), default=300
        ),
        license_cache_ttl=_to_int(
            "NLWEB_LICENSE_CACHE_TTL", env_mapping.get("NLWEB_LICENSE_CACHE_TTL"), default=300
        ),
        rate_limit_max_requests=_to_int(
            "NLWEB_RATE_LIMIT", env_mapping.get("NLWEB_RATE_LIMIT"), default=30
        ),
        rate_limit_window_seconds=_to_int(
            "NLWEB_RATE_LIMIT_WINDOW", env_mapping.get("NLWEB_RATE_LIMIT_WINDOW"), default=60
        ),
        addon_cache_ttl=_to_int(
            "NLWEB_ADDON_CACHE_TTL", env_mapping.get("NLWEB_ADDON_CACHE_TTL"), default=3600
        ),
        upgrade_base_url=env_mapping.get("NLWEB_UPGRADE_URL", "https://wpnlweb.com/pricing/"),
    )


__all__ = ["ConfigError", "LicensingConfig", "load_licensing_config"]
