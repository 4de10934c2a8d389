"""Add-on activation and metered credit consumption."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Dict, Mapping, Optional, Protocol
from urllib.parse import urlencode

from ...config import LicensingConfig
from ..api_client import ApiClient, ApiError, MalformedResponseError
from ..licensing.domains import domain_from_url
from ..licensing.messages import status_message
from ..licensing.models import License, Tier
from ..licensing.validator import LicenseValidator
from ..storage import OptionStore, SecretCipher, SecretDecryptionError
from ..storage.crypto import mask_secret
from .catalog import (
    ADDON_BASE_PRICE,
    ADDON_CATALOG,
    AGENCY_DISCOUNTS,
    DEFAULT_AGENCY_DISCOUNT,
    AddonDefinition,
)
from .models import (
    AddonActionResult,
    AddonEvent,
    AddonEventType,
    AddonPricing,
    CreditDebitRejected,
    InsufficientCredits,
)

logger = logging.getLogger(__name__)

ACTIVE_ADDONS_OPTION = "nlweb_active_addons"
ADDON_LICENSE_PREFIX = "nlweb_addon_license_"
ADDON_CREDITS_PREFIX = "nlweb_addon_credits_"


class AddonEventLogger(Protocol):
    """Receives add-on audit events."""

    def log(self, event: AddonEvent) -> None:
        ...


class LoggingAddonEventLogger:
    """Writes add-on events to the module logger."""

    def log(self, event: AddonEvent) -> None:
        logger.info(
            "Addon event",
            extra={
                "addon_event": event.event_type.value,
                "addon_id": event.addon_id,
                "operation": event.operation,
                "cost": event.cost,
                "balance": event.balance,
            },
        )


class AddonManager:
    """Manages add-on licenses layered on top of the base tier.

    Add-on access always requires the base tier to meet the add-on's
    ``required_tier``. Deactivation removes local state whether or not the
    server acknowledges it. Credit debits are serialized per add-on and are
    all-or-nothing.
    """

    def __init__(
        self,
        config: LicensingConfig,
        api_client: ApiClient,
        store: OptionStore,
        cipher: SecretCipher,
        validator: LicenseValidator,
        *,
        catalog: Optional[Mapping[str, AddonDefinition]] = None,
        event_logger: Optional[AddonEventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._api = api_client
        self._store = store
        self._cipher = cipher
        self._validator = validator
        self._catalog: Dict[str, AddonDefinition] = dict(catalog if catalog is not None else ADDON_CATALOG)
        self._event_logger = event_logger or LoggingAddonEventLogger()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._domain = domain_from_url(config.site_url)
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def get_addon_config(self, addon_id: str) -> Optional[AddonDefinition]:
        return self._catalog.get(addon_id)

    def get_active_addons(self) -> Dict[str, AddonDefinition]:
        cached = self._load_active_cache()
        if cached is not None:
            return {addon_id: self._catalog[addon_id] for addon_id in cached if addon_id in self._catalog}

        base_tier = self._validator.get_tier()
        active: Dict[str, AddonDefinition] = {}
        for addon_id, definition in self._catalog.items():
            if base_tier < definition.required_tier:
                continue
            if self._validate_addon_license(addon_id):
                active[addon_id] = definition

        expires_at = self._clock() + timedelta(seconds=self._config.addon_cache_ttl)
        self._store.set(
            ACTIVE_ADDONS_OPTION,
            {"addons": sorted(active), "expires_at": int(expires_at.timestamp())},
        )
        return active

    def has_addon(self, addon_id: str) -> bool:
        if addon_id not in self._catalog:
            return False
        return addon_id in self.get_active_addons()

    def validate_addon_access(self, addon_id: str, base_tier: Optional[Tier] = None) -> bool:
        definition = self._catalog.get(addon_id)
        if definition is None:
            return False
        tier = base_tier if base_tier is not None else self._validator.get_tier()
        if tier < definition.required_tier:
            return False
        return self._validate_addon_license(addon_id)

    def activate_addon(self, addon_id: str, license_key: str) -> AddonActionResult:
        definition = self._catalog.get(addon_id)
        if definition is None:
            return AddonActionResult(
                success=False, addon_id=addon_id, message="Invalid addon identifier.", error_code="unknown_addon"
            )
        key = (license_key or "").strip()
        if not key:
            return AddonActionResult(
                success=False, addon_id=addon_id, message="License key is required.", error_code="missing"
            )

        base_tier = self._validator.get_tier()
        if base_tier < definition.required_tier:
            return AddonActionResult(
                success=False,
                addon_id=addon_id,
                message=(
                    f"{definition.name} requires {definition.required_tier.label_with_article} "
                    "license or higher."
                ),
                error_code="tier_insufficient",
            )

        try:
            data = self._api.request(
                "POST",
                self._config.activate_path,
                self._addon_payload(definition, key),
                require_auth=self._api.is_available(),
                timeout=self._config.activation_timeout,
            )
        except ApiError as exc:
            logger.warning(
                "Addon activation failed",
                extra={"addon_id": addon_id, "license_key": mask_secret(key), "error": exc.message},
            )
            return AddonActionResult(
                success=False, addon_id=addon_id, message=f"Activation failed: {exc.message}", error_code=exc.code
            )

        if not data.get("success"):
            code = str(data.get("license_status") or data.get("error_code") or "invalid")
            message = data.get("message")
            if not isinstance(message, str) or not message:
                message = status_message(code)
            return AddonActionResult(success=False, addon_id=addon_id, message=message, error_code=code)

        self._store.set(
            self._license_option(addon_id),
            {
                "license_key": self._cipher.encrypt(key),
                "activated_at": int(self._clock().timestamp()),
            },
        )
        self._store_balance(addon_id, data.get("credit_balance"))
        self.clear_addon_cache()
        self._emit(AddonEvent(event_type=AddonEventType.ACTIVATED, addon_id=addon_id, timestamp=self._clock()))
        return AddonActionResult(
            success=True,
            addon_id=addon_id,
            message=f"{definition.name} activated successfully.",
            remote_confirmed=True,
        )

    def deactivate_addon(self, addon_id: str) -> AddonActionResult:
        definition = self._catalog.get(addon_id)
        if definition is None:
            return AddonActionResult(
                success=False, addon_id=addon_id, message="Invalid addon identifier.", error_code="unknown_addon"
            )
        key = self._get_addon_key(addon_id)
        if not key:
            self._remove_local_state(addon_id)
            return AddonActionResult(success=True, addon_id=addon_id, message="Addon license already inactive.")

        remote_confirmed = False
        message = f"{definition.name} deactivated."
        try:
            data = self._api.request(
                "POST",
                self._config.deactivate_path,
                self._addon_payload(definition, key),
                require_auth=self._api.is_available(),
                timeout=self._config.activation_timeout,
            )
            remote_confirmed = bool(data.get("success"))
            if not remote_confirmed:
                message = f"{definition.name} removed locally; the server did not confirm deactivation."
        except ApiError as exc:
            logger.warning(
                "Addon deactivation could not reach the server",
                extra={"addon_id": addon_id, "error": exc.message},
            )
            message = f"{definition.name} removed locally; deactivation could not reach the server."
        finally:
            self._remove_local_state(addon_id)

        self._emit(
            AddonEvent(
                event_type=AddonEventType.DEACTIVATED,
                addon_id=addon_id,
                remote_confirmed=remote_confirmed,
                timestamp=self._clock(),
            )
        )
        return AddonActionResult(
            success=True, addon_id=addon_id, message=message, remote_confirmed=remote_confirmed
        )

    def get_credit_balance(self, addon_id: str) -> int:
        if not self.has_addon(addon_id):
            return 0
        definition = self._catalog[addon_id]
        if not definition.is_credit_based:
            return 0
        return self._read_balance(addon_id)

    def consume_credits(self, addon_id: str, operation: str, cost: Optional[int] = None) -> bool:
        """Debit ``cost`` credits (or the catalog cost for ``operation``).

        Returns ``False`` without touching the balance when the add-on is
        inactive, the balance is insufficient or the server rejects the debit.
        """

        if not self.has_addon(addon_id):
            return False
        definition = self._catalog[addon_id]
        if not definition.is_credit_based:
            return True
        if cost is None:
            cost = definition.cost_for(operation)
        if cost is None or cost <= 0:
            return True

        with self._lock_for(addon_id):
            balance = self._read_balance(addon_id)
            try:
                new_balance = self._debit(definition, operation, cost, balance)
            except InsufficientCredits as exc:
                self._emit(
                    AddonEvent(
                        event_type=AddonEventType.INSUFFICIENT_CREDITS,
                        addon_id=addon_id,
                        operation=operation,
                        cost=cost,
                        balance=exc.balance,
                        timestamp=self._clock(),
                    )
                )
                return False
            except (ApiError, CreditDebitRejected) as exc:
                logger.warning(
                    "Credit debit failed",
                    extra={"addon_id": addon_id, "operation": operation, "error": str(exc)},
                )
                self._emit(
                    AddonEvent(
                        event_type=AddonEventType.DEBIT_FAILED,
                        addon_id=addon_id,
                        operation=operation,
                        cost=cost,
                        balance=self._read_balance(addon_id),
                        timestamp=self._clock(),
                    )
                )
                return False

        self._emit(
            AddonEvent(
                event_type=AddonEventType.CREDITS_CONSUMED,
                addon_id=addon_id,
                operation=operation,
                cost=cost,
                balance=new_balance,
                timestamp=self._clock(),
            )
        )
        return True

    def clear_addon_cache(self) -> None:
        self._store.delete(ACTIVE_ADDONS_OPTION)

    def on_license_changed(self, new: License, old: Optional[License]) -> None:
        self.clear_addon_cache()

    def get_addon_pricing(self, addon_id: str, base_tier: Tier = Tier.PRO) -> Optional[AddonPricing]:
        definition = self._catalog.get(addon_id)
        if definition is None:
            return None
        discount = 0
        if base_tier == Tier.AGENCY:
            discount = AGENCY_DISCOUNTS.get(addon_id, DEFAULT_AGENCY_DISCOUNT)
        final_price = round(ADDON_BASE_PRICE * (1 - discount / 100), 2)
        query = urlencode(
            {
                "tier": base_tier.value,
                "utm_source": "plugin",
                "utm_medium": "addon_prompt",
                "utm_campaign": "addon_purchase",
            }
        )
        return AddonPricing(
            addon_id=addon_id,
            name=definition.name,
            base_price=ADDON_BASE_PRICE,
            discount=discount,
            final_price=final_price,
            purchase_url=f"{self._config.addon_store_url}{addon_id}/?{query}",
        )

    def _debit(self, definition: AddonDefinition, operation: str, cost: int, balance: int) -> int:
        addon_id = definition.addon_id
        if balance < cost:
            raise InsufficientCredits(addon_id, operation, cost, balance)

        data = self._api.request(
            "POST",
            self._config.credits_path,
            {
                "license_key": self._get_addon_key(addon_id),
                "domain": self._domain,
                "feature": addon_id,
                "cost": cost,
                "context": operation,
                "nonce": self._api.nonce_signer.create("credit_usage"),
            },
            require_auth=self._api.is_available(),
        )
        server_balance = _response_balance(data.get("balance"))
        if not data.get("success"):
            if server_balance is not None:
                self._store_balance(addon_id, server_balance)
                if server_balance < cost:
                    raise InsufficientCredits(addon_id, operation, cost, server_balance)
            reason = data.get("message") or data.get("error_code") or "rejected by server"
            raise CreditDebitRejected(addon_id, operation, str(reason))

        new_balance = server_balance if server_balance is not None else balance - cost
        self._store_balance(addon_id, max(new_balance, 0))
        return max(new_balance, 0)

    def _validate_addon_license(self, addon_id: str) -> bool:
        key = self._get_addon_key(addon_id)
        if not key:
            return False
        definition = self._catalog[addon_id]
        try:
            data = self._api.request(
                "POST",
                self._config.check_path,
                {"license_key": key, "domain": self._domain, "item_name": definition.item_name},
                require_auth=self._api.is_available(),
                timeout=self._config.validation_timeout,
            )
        except ApiError as exc:
            logger.warning(
                "Addon license validation failed",
                extra={"addon_id": addon_id, "license_key": mask_secret(key), "error": exc.message},
            )
            return False
        if not data.get("success"):
            return False
        if definition.is_credit_based:
            self._store_balance(addon_id, data.get("credit_balance"))
        return True

    def _addon_payload(self, definition: AddonDefinition, license_key: str) -> Dict[str, Any]:
        return {
            "license_key": license_key,
            "domain": self._domain,
            "item_name": definition.item_name,
            "site_data": {
                "site_url": self._config.site_url,
                "plugin_version": self._config.plugin_version,
            },
        }

    def _get_addon_key(self, addon_id: str) -> Optional[str]:
        record = self._store.get(self._license_option(addon_id))
        if not isinstance(record, dict) or not record.get("license_key"):
            return None
        try:
            return self._cipher.decrypt(record["license_key"])
        except SecretDecryptionError:
            logger.warning("Stored addon license could not be decrypted", extra={"addon_id": addon_id})
            return None

    def _read_balance(self, addon_id: str) -> int:
        stored = self._store.get(self._credits_option(addon_id))
        if stored is None:
            fallback = self._validator.get_status().credit_balance
            return int(fallback or 0)
        return int(stored)

    def _store_balance(self, addon_id: str, balance: Any) -> None:
        if balance is None or balance == "":
            return
        try:
            value = int(balance)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed credit balance", extra={"addon_id": addon_id})
            return
        self._store.set(self._credits_option(addon_id), max(value, 0))

    def _remove_local_state(self, addon_id: str) -> None:
        self._store.delete(self._license_option(addon_id))
        self._store.delete(self._credits_option(addon_id))
        self.clear_addon_cache()

    def _load_active_cache(self) -> Optional[list]:
        cached = self._store.get(ACTIVE_ADDONS_OPTION)
        if not isinstance(cached, dict):
            return None
        if int(self._clock().timestamp()) >= int(cached.get("expires_at", 0)):
            return None
        return list(cached.get("addons") or [])

    def _lock_for(self, addon_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(addon_id)
            if lock is None:
                lock = self._locks[addon_id] = Lock()
            return lock

    def _emit(self, event: AddonEvent) -> None:
        try:
            self._event_logger.log(event)
        except Exception:
            logger.exception("Addon event logger failed", extra={"addon_id": event.addon_id})

    @staticmethod
    def _license_option(addon_id: str) -> str:
        return f"{ADDON_LICENSE_PREFIX}{addon_id}"

    @staticmethod
    def _credits_option(addon_id: str) -> str:
        return f"{ADDON_CREDITS_PREFIX}{addon_id}"


def _response_balance(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedResponseError(f"Invalid credit balance: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(f"Invalid credit balance: {value!r}") from None


__all__ = [
    "ACTIVE_ADDONS_OPTION",
    "AddonEventLogger",
    "AddonManager",
    "LoggingAddonEventLogger",
]
