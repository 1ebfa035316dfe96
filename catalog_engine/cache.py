"""In-process TTL cache with an injectable clock.

Entries are independently keyed and writers use last-write-wins, so no
locking is needed inside a single event loop.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

Clock = Callable[[], float]

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and the clock reading when it was stored."""

    value: V
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at


class TTLCache(Generic[V]):
    """
    Time-bounded cache.

    `get` only returns fresh entries; `get_entry` also returns expired ones so
    callers can fall back to a stale value when the source of truth is down.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        return entry.age(self.clock()) < self.ttl_seconds

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        """Return the cached value if present and not expired."""
        if self.is_fresh(key):
            return self._entries[key].value
        return default

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[V]]:
        """Return the raw entry regardless of age."""
        return self._entries.get(key)

    def set(self, key: Hashable, value: V) -> CacheEntry[V]:
        entry = CacheEntry(value=value, stored_at=self.clock())
        self._entries[key] = entry
        return entry

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def stats(self) -> dict[str, Any]:
        now = self.clock()
        fresh = sum(1 for e in self._entries.values() if e.age(now) < self.ttl_seconds)
        return {
            "entries": len(self._entries),
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "ttl_seconds": self.ttl_seconds,
        }
