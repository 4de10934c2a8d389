"""Short-lived caches in front of remote license validation."""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..storage import OptionStore
from .models import AccessDecision, License, LicenseStatus

logger = logging.getLogger(__name__)

MAX_CACHE_TTL_SECONDS = 300
SNAPSHOT_OPTION = "nlweb_license_cache"
STATS_OPTION = "nlweb_license_cache_stats"
CACHE_VERSION = 1

_STATUS_DURATIONS = {
    LicenseStatus.ACTIVE: 300,
    LicenseStatus.EXPIRED: 150,
    LicenseStatus.ERROR: 60,
}


@dataclass
class _CacheEntry:
    decision: AccessDecision
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ValidationCache:
    """Holds granted decisions keyed by a hash of feature and context.

    Only grants are stored; denials and errors always go back to the server.
    Each key has its own lock so unrelated features never contend.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = MAX_CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = timedelta(seconds=min(max(ttl_seconds, 1), MAX_CACHE_TTL_SECONDS))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, _CacheEntry] = {}
        self._locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    @staticmethod
    def cache_key(feature: str, context: str) -> str:
        digest = hashlib.sha256(f"{feature}|{context}".encode("utf-8")).hexdigest()
        return f"nlweb_validation_{digest[:32]}"

    def get(self, feature: str, context: str) -> Optional[AccessDecision]:
        key = self.cache_key(feature, context)
        now = self._clock()
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                self._entries.pop(key, None)
                return None
            return entry.decision

    def put(self, decision: AccessDecision, context: str) -> bool:
        if not decision.granted:
            return False
        key = self.cache_key(decision.feature_id, context)
        with self._lock_for(key):
            self._entries[key] = _CacheEntry(decision=decision, expires_at=self._clock() + self._ttl)
        return True

    def clear(self) -> None:
        with self._registry_lock:
            self._entries.clear()
            self._locks.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _lock_for(self, key: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock


class LicenseSnapshotCache:
    """Persists the last license snapshot with a status-dependent lifetime."""

    def __init__(
        self,
        store: OptionStore,
        *,
        max_ttl_seconds: int = MAX_CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._max_ttl = min(max_ttl_seconds, MAX_CACHE_TTL_SECONDS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stats = self._load_stats()

    def get_license(self) -> Optional[License]:
        raw = self._store.get(SNAPSHOT_OPTION)
        license = self._decode(raw)
        if license is None:
            self._record("misses")
            return None
        self._record("hits")
        return license

    def set_license(self, license: License) -> bool:
        now = self._clock()
        duration = self.duration_for(license)
        self._store.set(
            SNAPSHOT_OPTION,
            {
                "version": CACHE_VERSION,
                "data": license.to_storage(),
                "cached_at": int(now.timestamp()),
                "expires_at": int((now + timedelta(seconds=duration)).timestamp()),
            },
        )
        self._record("sets")
        return True

    def invalidate_license(self) -> None:
        if self._store.delete(SNAPSHOT_OPTION):
            self._record("deletes")

    def update_if_changed(self, new: License, old: Optional[License]) -> bool:
        """Rewrite the snapshot only when a decision-relevant field changed."""

        if old is not None and not self.license_changed(new, old):
            return False
        self.set_license(new)
        return True

    @staticmethod
    def license_changed(new: License, old: License) -> bool:
        return (
            new.status != old.status
            or new.tier != old.tier
            or new.expires_at != old.expires_at
            or new.sites_limit != old.sites_limit
        )

    def duration_for(self, license: License) -> int:
        return min(_STATUS_DURATIONS.get(license.status, MAX_CACHE_TTL_SECONDS), self._max_ttl)

    def get_stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = round(self._stats["hits"] / total * 100, 2) if total else 0.0
        return {**self._stats, "hit_rate": hit_rate, "total_requests": total}

    def clear_stats(self) -> None:
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}
        self._store.delete(STATS_OPTION)

    def _decode(self, raw: Any) -> Optional[License]:
        if not isinstance(raw, dict):
            return None
        if raw.get("version") != CACHE_VERSION or "data" not in raw or "expires_at" not in raw:
            return None
        if int(self._clock().timestamp()) >= int(raw["expires_at"]):
            return None
        try:
            return License.model_validate(raw["data"])
        except ValidationError:
            logger.warning("Discarding malformed license snapshot")
            return None

    def _record(self, counter: str) -> None:
        self._stats[counter] += 1
        self._store.set(STATS_OPTION, dict(self._stats))

    def _load_stats(self) -> Dict[str, int]:
        stored = self._store.get(STATS_OPTION) or {}
        return {
            name: int(stored.get(name, 0))
            for name in ("hits", "misses", "sets", "deletes")
        }


__all__ = [
    "CACHE_VERSION",
    "LicenseSnapshotCache",
    "MAX_CACHE_TTL_SECONDS",
    "ValidationCache",
]
