"""Short-TTL result cache for the service layer."""

from __future__ import annotations

import copy
import threading
import time
from typing import Callable, Hashable

_MISSING = object()


class TTLCache:
    """Key -> value store whose entries expire *ttl_seconds* after they are written.

    Stored values are deep-copied on the way in and out, so a caller mutating
    a returned DataFrame cannot change what the next caller sees.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, object]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return copy.deepcopy(value)

    def put(self, key: Hashable, value) -> None:
        """Store *value* under *key*, dropping every entry that has already expired."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (stored_at, _) in self._entries.items()
                       if now - stored_at >= self.ttl_seconds]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (now, copy.deepcopy(value))

    def get_or_compute(self, key: Hashable, compute: Callable[[], object]):
        """Return the cached value for *key*, computing and storing it on a miss."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.put(key, value)
        return copy.deepcopy(value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
