"""Denial event log and decision observers."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, List, Optional

from ..licensing.models import AccessDecision
from ..storage import OptionStore
from .models import AccessStats, DenialEvent

DENIAL_LOG_OPTION = "nlweb_upgrade_opportunities"
RECENT_WINDOW = timedelta(days=7)

DecisionObserver = Callable[[AccessDecision], None]


class DenialEventLog:
    """Append-only, bounded log of access denials for upgrade tracking."""

    def __init__(
        self,
        store: OptionStore,
        *,
        site_url: str,
        limit: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._store = store
        self._site_url = site_url
        self._limit = limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = Lock()

    def record(self, decision: AccessDecision) -> DenialEvent:
        event = DenialEvent(
            feature=decision.feature_id,
            principal_id=decision.principal_id,
            reason=decision.reason_code.value,
            timestamp=self._clock(),
            site_url=self._site_url,
        )
        with self._lock:
            entries = list(self._store.get(DENIAL_LOG_OPTION) or [])
            entries.append(event.model_dump(mode="json"))
            self._store.set(DENIAL_LOG_OPTION, entries[-self._limit:])
        return event

    def events(self) -> List[DenialEvent]:
        return [DenialEvent.model_validate(entry) for entry in self._store.get(DENIAL_LOG_OPTION) or []]

    def get_access_stats(self) -> AccessStats:
        events = self.events()
        cutoff = self._clock() - RECENT_WINDOW
        return AccessStats(
            total_denials=len(events),
            features_denied=dict(Counter(event.feature for event in events)),
            recent_denials=sum(1 for event in events if event.timestamp > cutoff),
        )

    def clear(self) -> None:
        with self._lock:
            self._store.delete(DENIAL_LOG_OPTION)


__all__ = ["DENIAL_LOG_OPTION", "DecisionObserver", "DenialEventLog"]
