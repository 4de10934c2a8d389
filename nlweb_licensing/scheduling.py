"""Deferred task scheduling driven by the host's periodic tick."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class _ScheduledTask:
    name: str
    run_at: datetime
    callback: Callable[[], object]
    interval: Optional[timedelta] = None

    def is_due(self, now: datetime) -> bool:
        return now >= self.run_at


class DeferredTaskScheduler:
    """Named one-shot and recurring tasks executed by :meth:`run_pending`.

    Tasks never run on the caller's request path: the host invokes
    ``run_pending`` from its cron-like background runner. A failing task is
    logged; recurring tasks are retried on their next interval and one-shot
    tasks are dropped.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: Dict[str, _ScheduledTask] = {}
        self._lock = Lock()

    def schedule_at(self, name: str, run_at: datetime, callback: Callable[[], object]) -> None:
        """Schedule a one-shot task, replacing any task with the same name."""

        with self._lock:
            self._tasks[name] = _ScheduledTask(name=name, run_at=run_at, callback=callback)

    def schedule_every(
        self,
        name: str,
        interval: timedelta,
        callback: Callable[[], object],
        *,
        first_run: Optional[datetime] = None,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        with self._lock:
            if name in self._tasks:
                return
            run_at = first_run or self._clock() + interval
            self._tasks[name] = _ScheduledTask(
                name=name, run_at=run_at, callback=callback, interval=interval
            )

    def cancel(self, name: str) -> bool:
        with self._lock:
            return self._tasks.pop(name, None) is not None

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self._tasks

    def next_run(self, name: str) -> Optional[datetime]:
        with self._lock:
            task = self._tasks.get(name)
            return task.run_at if task else None

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Run every due task and return the names that were executed."""

        current = now or self._clock()
        with self._lock:
            due = [task for task in self._tasks.values() if task.is_due(current)]
            for task in due:
                if task.interval is None:
                    self._tasks.pop(task.name, None)
                else:
                    task.run_at = current + task.interval

        executed: List[str] = []
        for task in sorted(due, key=lambda item: item.run_at):
            try:
                task.callback()
            except Exception:
                logger.exception("Background task failed", extra={"task_name": task.name})
                continue
            executed.append(task.name)
        return executed


__all__ = ["DeferredTaskScheduler"]
