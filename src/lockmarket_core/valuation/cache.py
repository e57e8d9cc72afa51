"""Simple in-memory TTL cache for computed stats."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any


class StatsCache:
    """Thread-unsafe dict + monotonic clock TTL cache, capped at ``max_entries``."""

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 256,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        self._store: dict[str, tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Any | None:
        """Return cached value or ``None`` if missing / expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        ts, value = entry
        if self._clock() - ts > self._ttl:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        if key not in self._store and len(self._store) >= self._max_entries:
            self._store = {k: e for k, e in self._store.items() if now - e[0] <= self._ttl}
            if len(self._store) >= self._max_entries:
                oldest = min(self._store, key=lambda k: self._store[k][0])
                del self._store[oldest]
        self._store[key] = (now, value)

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            value = compute()
            self.set(key, value)
        return value

    def clear(self) -> None:
        """Drop all entries."""
        self._store.clear()
