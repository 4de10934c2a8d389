"""Key/value option storage used for licensing state."""
from __future__ import annotations

import copy
from threading import Lock
from typing import Any, Dict, Optional, Protocol


class OptionStore(Protocol):
    """Protocol describing the durable storage used by the licensing services."""

    def get(self, name: str, default: Optional[Any] = None) -> Any:
        ...

    def set(self, name: str, value: Any) -> None:
        ...

    def delete(self, name: str) -> bool:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...


class InMemoryOptionStore:
    """Simple in-memory store suitable for tests and single-process hosts."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = Lock()

    def get(self, name: str, default: Optional[Any] = None) -> Any:
        with self._lock:
            if name not in self._values:
                return default
            return copy.deepcopy(self._values[name])

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            self._values[name] = copy.deepcopy(value)

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._values.pop(name, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._values if key.startswith(prefix)]
            for key in keys:
                self._values.pop(key, None)
            return len(keys)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._values)
