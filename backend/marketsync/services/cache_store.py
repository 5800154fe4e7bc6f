"""In-memory keyed cache with TTL staleness and an LRU size bound."""

from __future__ import annotations

import copy
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from loguru import logger

from marketsync.core.clock import Clock, SystemClock
from marketsync.domain import CacheEntry


@dataclass(frozen=True, slots=True)
class CachedValue:
    data: Any
    is_stale: bool


def _detach(value: Any) -> Any:
    """Hand out copies of mutable containers so callers cannot edit the store."""

    if isinstance(value, (dict, list, set)):
        return copy.deepcopy(value)
    return value


class CacheStore:
    """Sole owner of :class:`CacheEntry` objects.

    Stale entries are returned rather than evicted so callers can serve them
    while a refresh runs. Capacity is bounded; inserting past ``max_entries``
    drops the least recently used key.
    """

    def __init__(self, *, clock: Clock | None = None, max_entries: int = 1000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._clock = clock or SystemClock()
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._evictions = 0

    def get(self, key: str) -> CachedValue | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._entries.move_to_end(key)
        return CachedValue(data=_detach(entry.data), is_stale=entry.is_stale(self._clock.now()))

    def entry(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: str, data: Any, ttl: float) -> CacheEntry:
        now = self._clock.now()
        return self._write(key, data, fetched_at=now, ttl=ttl)

    def restore(self, key: str, data: Any, ttl: float, *, fetched_at: float) -> CacheEntry:
        """Seed ``key`` with data fetched earlier, e.g. from a durable snapshot."""

        return self._write(key, data, fetched_at=fetched_at, ttl=ttl)

    def _write(self, key: str, data: Any, *, fetched_at: float, ttl: float) -> CacheEntry:
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        entry = CacheEntry(
            key=key,
            data=_detach(data),
            fetched_at=fetched_at,
            stale_at=fetched_at + ttl,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted least recently used cache key {}", evicted)
        return entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def stats(self) -> dict[str, Any]:
        now = self._clock.now()
        stale = sum(1 for entry in self._entries.values() if entry.is_stale(now))
        return {
            "size": len(self._entries),
            "stale": stale,
            "max_entries": self._max_entries,
            "evictions": self._evictions,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
