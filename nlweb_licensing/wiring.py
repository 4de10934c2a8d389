"""Construction of the licensing service graph."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, Iterable, Optional

import httpx
from dotenv import load_dotenv

from .app.addons import AddonEventLogger, AddonManager
from .app.api_client import ApiClient
from .app.auth import TokenStore
from .app.features import (
    DecisionObserver,
    DenialEventLog,
    FeatureGate,
    FeatureProvider,
    FeatureRegistry,
    TierMatrix,
)
from .app.licensing import LicenseValidator
from .app.storage import InMemoryOptionStore, OptionStore, SecretCipher
from .app.storage.repository import PostgresOptionStore
from .config import LicensingConfig, load_licensing_config
from .scheduling import DeferredTaskScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LicensingServices:
    """Every collaborator of the licensing subsystem, wired together."""

    config: LicensingConfig
    store: OptionStore
    scheduler: DeferredTaskScheduler
    token_store: TokenStore
    api_client: ApiClient
    registry: FeatureRegistry
    tier_matrix: TierMatrix
    validator: LicenseValidator
    denial_log: DenialEventLog
    gate: FeatureGate
    addons: AddonManager


def build_licensing_services(
    config: LicensingConfig,
    *,
    store: Optional[OptionStore] = None,
    http_client: Optional[httpx.Client] = None,
    scheduler: Optional[DeferredTaskScheduler] = None,
    providers: Iterable[FeatureProvider] = (),
    observers: Iterable[DecisionObserver] = (),
    addon_event_logger: Optional[AddonEventLogger] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Callable[[], datetime]] = None,
) -> LicensingServices:
    store = store if store is not None else InMemoryOptionStore()
    scheduler = scheduler or DeferredTaskScheduler(clock=clock)
    http_client = http_client or httpx.Client(follow_redirects=True)
    cipher = SecretCipher(config.encryption_secret)

    token_store = TokenStore(
        config, store, cipher, http_client=http_client, scheduler=scheduler, clock=clock
    )
    api_client = ApiClient(config, token_store, http_client=http_client, sleep=sleep)
    registry = FeatureRegistry(providers=providers)
    tier_matrix = TierMatrix(registry)
    validator = LicenseValidator(
        config, api_client, store, cipher, tier_lookup=tier_matrix, clock=clock
    )
    denial_log = DenialEventLog(
        store, site_url=config.site_url, limit=config.denial_log_limit, clock=clock
    )
    gate = FeatureGate(
        config, registry, tier_matrix, validator, denial_log, observers=observers, clock=clock
    )
    addons = AddonManager(
        config, api_client, store, cipher, validator, event_logger=addon_event_logger, clock=clock
    )

    validator.add_change_listener(addons.on_license_changed)
    validator.register_background_jobs(scheduler)

    return LicensingServices(
        config=config,
        store=store,
        scheduler=scheduler,
        token_store=token_store,
        api_client=api_client,
        registry=registry,
        tier_matrix=tier_matrix,
        validator=validator,
        denial_log=denial_log,
        gate=gate,
        addons=addons,
    )


@lru_cache(maxsize=1)
def get_licensing_services() -> LicensingServices:
    load_dotenv()
    config = load_licensing_config()
    dsn = os.getenv("NLWEB_DATABASE_URL")
    store: OptionStore
    if dsn:
        postgres_store = PostgresOptionStore(dsn=dsn)
        postgres_store.ensure_schema()
        store = postgres_store
    else:
        logger.warning("NLWEB_DATABASE_URL not set; licensing state is kept in memory only")
        store = InMemoryOptionStore()
    return build_licensing_services(config, store=store)


__all__ = ["LicensingServices", "build_licensing_services", "get_licensing_services"]
