"""
Explicitly owned in-process caches.

Each cache is an object constructed once and handed to whoever needs it;
nothing here is a module-level global. ``LRUCache`` bounds by size,
``TTLCache`` by age with an explicit ``evict(now)`` sweep.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Size-bounded cache that drops the least recently used entry first."""

    def __init__(self, max_size: int = 128):
        if max_size <= 0:
            raise ValueError("max_size must be greater than zero")
        self.max_size = max_size
        self._entries: "OrderedDict[K, V]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key: K, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def pop(self, key: K) -> Optional[V]:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _TimedEntry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """
    Cache whose entries expire ``ttl_seconds`` after their last write or read.

    Expired entries are invisible to ``get`` but only released by ``evict``.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than zero")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict = {}

    def get(self, key: K, now: float | None = None) -> Optional[V]:
        now = self._clock() if now is None else now
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= now:
            return None
        entry.expires_at = now + self.ttl_seconds
        return entry.value

    def put(self, key: K, value: V, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        self._entries[key] = _TimedEntry(value=value, expires_at=now + self.ttl_seconds)

    def pop(self, key: K) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry.value if entry else None

    def evict(self, now: float | None = None) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> Iterator[K]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
