"""Fixed-window rate limiting for outbound validation calls."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional

from .models import RateLimited


@dataclass
class _Window:
    started_at: datetime
    count: int = 0


class FixedWindowRateLimiter:
    """Counts hits per key and rejects them once ``max_requests`` is reached."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_requests < 1 or window_seconds < 1:
            raise ValueError("max_requests and window_seconds must be >= 1")
        self._max_requests = max_requests
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def hit(self, key: str) -> int:
        """Record one request for ``key`` and return the remaining allowance."""

        now = self._clock()
        with self._lock:
            window = self._current_window(key, now)
            if window.count >= self._max_requests:
                retry_after = (window.started_at + self._window - now).total_seconds()
                raise RateLimited(key, max(retry_after, 0.0))
            window.count += 1
            return self._max_requests - window.count

    def remaining(self, key: str) -> int:
        with self._lock:
            window = self._current_window(key, self._clock())
            return max(self._max_requests - window.count, 0)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _current_window(self, key: str, now: datetime) -> _Window:
        window = self._windows.get(key)
        if window is None or now >= window.started_at + self._window:
            window = self._windows[key] = _Window(started_at=now)
        return window


__all__ = ["FixedWindowRateLimiter"]
