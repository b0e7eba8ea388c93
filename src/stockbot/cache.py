"""Short-lived memoization of materialized ledger views."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from . import log


class ViewCache:
    """
    Process-local TTL cache keyed by view name.

    - Each entry carries its own lifetime, set when it is stored.
    - Expired entries are dropped lazily on read.
    - Thread-safe: views are computed in worker threads.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at)
        self._items: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                log.debug("Cache entry '%s' expired", key)
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        with self._lock:
            self._items[key] = (value, self._clock() + ttl_seconds)
        log.debug("Cached '%s' for %ss", key, ttl_seconds)

    def invalidate(self, key: str) -> None:
        with self._lock:
            removed = self._items.pop(key, None)
        if removed is not None:
            log.debug("Invalidated cache entry '%s'", key)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
