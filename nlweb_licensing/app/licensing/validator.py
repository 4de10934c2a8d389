"""Server-authority license validation."""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError

from ...config import LicensingConfig
from ...scheduling import DeferredTaskScheduler
from ..api_client import ApiClient, ApiError, ClientError, MalformedResponseError
from ..storage import OptionStore, SecretCipher, SecretDecryptionError
from ..storage.crypto import mask_secret
from .cache import LicenseSnapshotCache, ValidationCache
from .domains import domain_from_url, verify_domain_binding
from .messages import status_from_server, status_message
from .models import (
    AccessDecision,
    DecisionState,
    License,
    LicenseActionResult,
    LicenseStatus,
    RateLimited,
    ReasonCode,
    Tier,
)
from .rate_limit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

LICENSE_KEY_OPTION = "nlweb_license_key"
LICENSE_KEY_PATTERN = re.compile(r"[A-Za-z0-9_-]{32,128}")
SLOW_VALIDATION_MS = 50.0
SYNC_TASK_NAME = "nlweb_license_sync"
WARM_TASK_NAME = "nlweb_license_cache_warm"
SYNC_INTERVAL = timedelta(hours=1)
WARM_INTERVAL = timedelta(seconds=240)
ACTIVATION_ATTEMPTS_PER_HOUR = 10

LicenseChangeListener = Callable[[License, Optional[License]], None]


class FeatureTierLookup(Protocol):
    """Resolves the minimum tier for a feature identifier."""

    def get_feature_tier_requirement(self, feature: str) -> Optional[Tier]:
        ...


class LicenseValidator:
    """Delegates every access decision to the licensing server.

    Local state is a cache only: granted decisions are reused for at most
    the cache TTL, everything else goes back to the server subject to the
    per-(feature, context) rate limit. Remote failures never raise out of
    :meth:`validate_feature_access`; they degrade to a denial of paid
    features while free features stay available.
    """

    def __init__(
        self,
        config: LicensingConfig,
        api_client: ApiClient,
        store: OptionStore,
        cipher: SecretCipher,
        *,
        tier_lookup: Optional[FeatureTierLookup] = None,
        cache: Optional[ValidationCache] = None,
        snapshot_cache: Optional[LicenseSnapshotCache] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        activation_limiter: Optional[FixedWindowRateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._api = api_client
        self._store = store
        self._cipher = cipher
        self._tier_lookup = tier_lookup
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cache = cache or ValidationCache(ttl_seconds=config.license_cache_ttl, clock=self._clock)
        self._snapshots = snapshot_cache or LicenseSnapshotCache(
            store, max_ttl_seconds=config.license_cache_ttl, clock=self._clock
        )
        self._rate_limiter = rate_limiter or FixedWindowRateLimiter(
            config.rate_limit_max_requests,
            config.rate_limit_window_seconds,
            clock=self._clock,
        )
        self._activation_limiter = activation_limiter or FixedWindowRateLimiter(
            ACTIVATION_ATTEMPTS_PER_HOUR, 3600, clock=self._clock
        )
        self._listeners: List[LicenseChangeListener] = []
        self._domain = domain_from_url(config.site_url)

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def snapshot_cache(self) -> LicenseSnapshotCache:
        return self._snapshots

    def set_tier_lookup(self, tier_lookup: FeatureTierLookup) -> None:
        self._tier_lookup = tier_lookup

    def add_change_listener(self, listener: LicenseChangeListener) -> None:
        self._listeners.append(listener)

    def get_license_key(self) -> Optional[str]:
        stored = self._store.get(LICENSE_KEY_OPTION)
        if stored:
            try:
                return self._cipher.decrypt(stored)
            except SecretDecryptionError:
                logger.warning("Stored license key could not be decrypted")
                return None
        return self._config.license_key

    def validate_feature_access(
        self,
        feature: str,
        context: str = "default",
        principal_id: Optional[str] = None,
    ) -> AccessDecision:
        start = time.perf_counter()
        license_key = self.get_license_key()

        if not license_key:
            decision = self._decision(
                feature,
                principal_id,
                DecisionState.NO_LICENSE,
                ReasonCode.NO_LICENSE,
                "No license key is configured.",
            )
        else:
            cached = self._cache.get(feature, context)
            if cached is not None:
                return cached.model_copy(update={"principal_id": principal_id})
            decision = self._validate_remotely(feature, context, principal_id, license_key)
            self._cache.put(decision, context)

        decision = self._apply_free_floor(decision)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > SLOW_VALIDATION_MS:
            logger.warning(
                "Slow license validation",
                extra={"feature": feature, "duration_ms": round(elapsed_ms, 2)},
            )
        return decision

    def activate(self, license_key: str) -> LicenseActionResult:
        key = (license_key or "").strip()
        if not key:
            return LicenseActionResult(success=False, message="License key is required.", error_code="missing")
        if not LICENSE_KEY_PATTERN.fullmatch(key):
            return LicenseActionResult(
                success=False, message="Invalid license key format.", error_code="invalid_format"
            )
        try:
            self._activation_limiter.hit("activation")
        except RateLimited:
            return LicenseActionResult(
                success=False,
                message="Too many validation attempts. Please try again later.",
                error_code="rate_limited",
            )

        try:
            data = self._api.request(
                "POST",
                self._config.activate_path,
                self._license_payload(key),
                require_auth=self._api.is_available(),
                timeout=self._config.activation_timeout,
            )
        except ApiError as exc:
            self._log_failure(key, exc.message)
            return LicenseActionResult(
                success=False, message=f"Activation failed: {exc.message}", error_code=exc.code
            )

        if not data.get("success"):
            code = str(data.get("license_status") or data.get("error_code") or "invalid")
            message = _optional_str(data.get("message")) or status_message(code)
            self._log_failure(key, code)
            return LicenseActionResult(success=False, message=message, error_code=code)

        try:
            license = self._license_from_response(data, default_status=LicenseStatus.ACTIVE)
        except (MalformedResponseError, ValidationError) as exc:
            self._log_failure(key, str(exc))
            return LicenseActionResult(
                success=False,
                message="Activation failed: Invalid response from licensing server.",
                error_code="json_decode_error",
            )
        old = self._snapshots.get_license()
        self._store.set(LICENSE_KEY_OPTION, self._cipher.encrypt(key))
        self._clear_caches()
        self._snapshots.set_license(license)
        self._notify(license, old)
        logger.info("License activated", extra={"domain": self._domain, "tier": license.tier.value})
        return LicenseActionResult(
            success=True,
            message="License activated successfully.",
            license=license,
            remote_confirmed=True,
        )

    def deactivate(self) -> LicenseActionResult:
        """Remove the local license; the server call is best effort."""

        key = self.get_license_key()
        if not key:
            return LicenseActionResult(success=True, message="No license to deactivate.")

        old = self._snapshots.get_license()
        remote_confirmed = False
        message = "License deactivated."
        try:
            data = self._api.request(
                "POST",
                self._config.deactivate_path,
                self._license_payload(key),
                require_auth=self._api.is_available(),
                timeout=self._config.activation_timeout,
            )
            remote_confirmed = bool(data.get("success"))
            if not remote_confirmed:
                message = (
                    "License removed locally; the server did not confirm deactivation: "
                    f"{_optional_str(data.get('message')) or status_message(data.get('license_status'))}"
                )
        except ApiError as exc:
            self._log_failure(key, exc.message)
            message = f"License removed locally; deactivation could not reach the server: {exc.message}"
        finally:
            self._store.delete(LICENSE_KEY_OPTION)
            self._clear_caches()

        inactive = License(status=LicenseStatus.INACTIVE, cached_at=self._clock())
        self._notify(inactive, old)
        logger.info("License deactivated", extra={"domain": self._domain, "remote_confirmed": remote_confirmed})
        return LicenseActionResult(
            success=True,
            message=message,
            license=inactive,
            remote_confirmed=remote_confirmed,
        )

    def get_status(self) -> License:
        """Return the current license snapshot; never raises."""

        if not self.get_license_key():
            return License(status=LicenseStatus.INACTIVE, cached_at=self._clock())
        cached = self._snapshots.get_license()
        if cached is not None:
            return cached
        license = self._fetch_status()
        if license.status != LicenseStatus.UNKNOWN:
            self._snapshots.set_license(license)
        return license

    def refresh_status(self) -> License:
        self._snapshots.invalidate_license()
        return self.get_status()

    def get_tier(self) -> Tier:
        return self.get_status().tier

    def is_valid(self) -> bool:
        return self.get_status().is_active

    def background_sync(self) -> None:
        if not self.get_license_key():
            return
        old = self._snapshots.get_license()
        new = self._fetch_status()
        if new.status == LicenseStatus.UNKNOWN:
            logger.warning("Background license sync failed", extra={"domain": self._domain})
            return
        if self._snapshots.update_if_changed(new, old):
            self._cache.clear()
            self._notify(new, old)

    def warm_cache(self) -> None:
        if self.get_license_key() and self._snapshots.get_license() is None:
            self.get_status()

    def register_background_jobs(self, scheduler: DeferredTaskScheduler) -> None:
        scheduler.schedule_every(SYNC_TASK_NAME, SYNC_INTERVAL, self.background_sync)
        scheduler.schedule_every(WARM_TASK_NAME, WARM_INTERVAL, self.warm_cache)

    def clear_cache(self) -> None:
        self._clear_caches()

    def _validate_remotely(
        self,
        feature: str,
        context: str,
        principal_id: Optional[str],
        license_key: str,
    ) -> AccessDecision:
        try:
            self._rate_limiter.hit(f"{feature}|{context}")
        except RateLimited as exc:
            logger.info(
                "License validation rate limited",
                extra={"feature": feature, "retry_after": round(exc.retry_after, 1)},
            )
            return self._decision(
                feature,
                principal_id,
                DecisionState.RATE_LIMITED,
                ReasonCode.RATE_LIMITED,
                "Too many validation requests. Please try again shortly.",
            )

        payload = {
            "license_key": license_key,
            "domain": self._domain,
            "feature": feature,
            "context": context,
            "plugin_version": self._config.plugin_version,
            "wp_version": self._config.host_version,
            "php_version": self._config.runtime_version,
            "timestamp": int(self._clock().timestamp()),
            "nonce": self._api.nonce_signer.create("license_validation"),
        }
        try:
            data = self._api.request(
                "POST",
                self._config.validate_path,
                payload,
                require_auth=self._api.is_available(),
                timeout=self._config.validation_timeout,
            )
        except ClientError as exc:
            self._log_failure(license_key, exc.message, feature=feature)
            if exc.http_status == 403:
                return self._decision(
                    feature, principal_id, DecisionState.DENIED, ReasonCode.DENIED, exc.message
                )
            return self._decision(
                feature, principal_id, DecisionState.SERVER_ERROR, ReasonCode.SERVER_ERROR, exc.message
            )
        except ApiError as exc:
            self._log_failure(license_key, exc.message, feature=feature)
            return self._decision(
                feature, principal_id, DecisionState.SERVER_ERROR, ReasonCode.SERVER_ERROR, exc.message
            )

        try:
            return self._interpret_validation(feature, principal_id, data)
        except MalformedResponseError as exc:
            self._log_failure(license_key, exc.message, feature=feature)
            return self._decision(
                feature,
                principal_id,
                DecisionState.SERVER_ERROR,
                ReasonCode.SERVER_ERROR,
                "Invalid response from licensing server.",
            )

    def _interpret_validation(
        self, feature: str, principal_id: Optional[str], data: Mapping[str, Any]
    ) -> AccessDecision:
        granted = data.get("access_granted")
        if not isinstance(granted, bool):
            raise MalformedResponseError("Response missing access_granted")

        sites = _site_list(data.get("sites"))
        if granted and not verify_domain_binding(self._domain, sites):
            return self._decision(
                feature,
                principal_id,
                DecisionState.DENIED,
                ReasonCode.DOMAIN_MISMATCH,
                f"License not valid for domain: {self._domain}",
            )

        if granted:
            return self._decision(feature, principal_id, DecisionState.GRANTED, ReasonCode.GRANTED)

        error_code = _optional_str(data.get("error_code"))
        reason = ReasonCode.TIER_INSUFFICIENT if error_code == "tier_insufficient" else ReasonCode.DENIED
        message = _optional_str(data.get("error_message")) or status_message(data.get("license_status"))
        return self._decision(feature, principal_id, DecisionState.DENIED, reason, message)

    def _fetch_status(self) -> License:
        license_key = self.get_license_key()
        if not license_key:
            return License(status=LicenseStatus.INACTIVE, cached_at=self._clock())
        try:
            data = self._api.request(
                "POST",
                self._config.check_path,
                {"license_key": license_key, "domain": self._domain},
                require_auth=self._api.is_available(),
                timeout=self._config.validation_timeout,
            )
        except ApiError as exc:
            self._log_failure(license_key, exc.message)
            return self._unavailable_license()

        if not data.get("success"):
            code = data.get("license_status")
            return License(
                status=status_from_server(code),
                message=_optional_str(data.get("message")) or status_message(code),
                cached_at=self._clock(),
            )

        try:
            license = self._license_from_response(
                data, default_status=status_from_server(data.get("license_status") or "active")
            )
        except (MalformedResponseError, ValidationError) as exc:
            self._log_failure(license_key, str(exc))
            return self._unavailable_license()
        if not verify_domain_binding(self._domain, license.sites):
            return License(
                status=LicenseStatus.DENIED,
                message=f"License not valid for domain: {self._domain}",
                cached_at=self._clock(),
            )
        return license

    def _license_from_response(self, data: Mapping[str, Any], *, default_status: LicenseStatus) -> License:
        status = default_status
        if data.get("license_status") and default_status == LicenseStatus.ACTIVE:
            status = status_from_server(data["license_status"])
        message = None if status == LicenseStatus.ACTIVE else status_message(data.get("license_status"))
        return License(
            status=status,
            tier=data.get("tier") or Tier.PRO,
            expires_at=_parse_expiry(data.get("expires_at")),
            sites_used=_int_field(data, "sites_used", 1),
            sites_limit=_int_field(data, "sites_limit", 1),
            sites=_site_list(data.get("sites")),
            credit_balance=_int_field(data, "credit_balance", None),
            message=message,
            cached_at=self._clock(),
        )

    def _unavailable_license(self) -> License:
        return License(
            status=LicenseStatus.UNKNOWN,
            message="License status is temporarily unavailable.",
            cached_at=self._clock(),
        )

    def _license_payload(self, license_key: str) -> Dict[str, Any]:
        return {
            "license_key": license_key,
            "domain": self._domain,
            "site_data": {
                "site_url": self._config.site_url,
                "plugin_version": self._config.plugin_version,
                "wp_version": self._config.host_version,
                "php_version": self._config.runtime_version,
            },
        }

    def _apply_free_floor(self, decision: AccessDecision) -> AccessDecision:
        if decision.granted or self._tier_lookup is None:
            return decision
        required = self._tier_lookup.get_feature_tier_requirement(decision.feature_id)
        if required == Tier.FREE:
            return decision.model_copy(update={"granted": True, "reason_code": ReasonCode.FREE_FEATURE})
        return decision

    def _decision(
        self,
        feature: str,
        principal_id: Optional[str],
        state: DecisionState,
        reason: ReasonCode,
        message: Optional[str] = None,
    ) -> AccessDecision:
        return AccessDecision(
            feature_id=feature,
            principal_id=principal_id,
            granted=state == DecisionState.GRANTED,
            state=state,
            reason_code=reason,
            message=message,
            timestamp=self._clock(),
        )

    def _clear_caches(self) -> None:
        self._cache.clear()
        self._snapshots.invalidate_license()
        self._api.clear_cache()

    def _notify(self, new: License, old: Optional[License]) -> None:
        for listener in list(self._listeners):
            try:
                listener(new, old)
            except Exception:
                logger.exception("License change listener failed")

    def _log_failure(self, license_key: str, error: str, *, feature: Optional[str] = None) -> None:
        logger.warning(
            "License validation failed",
            extra={
                "license_key": mask_secret(license_key),
                "error": error,
                "domain": self._domain,
                "feature": feature,
            },
        )


def _parse_expiry(value: Any) -> Optional[datetime]:
    if value in (None, "", "lifetime"):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedResponseError(f"Invalid expires_at: {value!r}") from None
    text = str(value).strip().replace(" ", "T", 1)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable license expiry", extra={"expires_at": value})
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int_field(data: Mapping[str, Any], name: str, default: Optional[int]) -> Optional[int]:
    """Integer field of a server response; present but unparseable is malformed."""

    value = data.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedResponseError(f"Invalid {name}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(f"Invalid {name}: {value!r}") from None


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _site_list(value: Any) -> Tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)) or not all(isinstance(site, str) for site in value):
        # An unreadable binding must not fall through to "unbound".
        raise MalformedResponseError(f"Invalid sites list: {value!r}")
    return tuple(site for site in value if site)


__all__ = [
    "FeatureTierLookup",
    "LICENSE_KEY_OPTION",
    "LICENSE_KEY_PATTERN",
    "LicenseChangeListener",
    "LicenseValidator",
]
