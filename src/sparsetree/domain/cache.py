"""In-process memoization with LRU eviction and per-entry TTL.

Caches carry no cross-process coherence. Any component that mutates the store must
invalidate the keys or prefixes it affected before returning to its caller.
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from sparsetree.config.engine import EngineConfig

log = getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 5 * 60.0


@dataclass(slots=True, frozen=True)
class CacheStats:
    name: str
    size: int
    max_size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass(slots=True)
class _Entry[V]:
    value: V
    expires_at: float


class LRUCache[V]:
    """Bounded keyed cache; the least recently used entry is evicted on overflow."""

    def __init__(
        self,
        name: str,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, *, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("Cache %s evicted %s", self.name, evicted)
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def has(self, key: str) -> bool:
        """Report whether ``key`` holds a live entry without touching recency or counters."""

        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._clock()

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            log.debug("Cache %s invalidated %d entries under %r", self.name, len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                name=self.name,
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
            )


def graph_prefix(db_id: str) -> str:
    return f"db:{db_id}:"


def make_key(namespace: str, params: Mapping[str, object] | None = None) -> str:
    """Build a deterministic cache key from a namespace and keyword parameters."""

    if not params:
        return namespace
    return f"{namespace}:{json.dumps(params, sort_keys=True, default=str)}"


class CacheRegistry:
    """The named caches shared by the engine's store-facing services."""

    def __init__(
        self,
        *,
        query: LRUCache[object] | None = None,
        person: LRUCache[object] | None = None,
        listing: LRUCache[object] | None = None,
    ) -> None:
        self.query: LRUCache[object] = query or LRUCache("query", max_size=2000, ttl_seconds=300)
        self.person: LRUCache[object] = person or LRUCache(
            "person", max_size=5000, ttl_seconds=600
        )
        self.listing: LRUCache[object] = listing or LRUCache("list", max_size=100, ttl_seconds=60)

    @classmethod
    def from_config(cls, config: EngineConfig) -> CacheRegistry:
        return cls(
            query=LRUCache(
                "query",
                max_size=config.query_cache.max_size,
                ttl_seconds=config.query_cache.ttl_seconds,
            ),
            person=LRUCache(
                "person",
                max_size=config.person_cache.max_size,
                ttl_seconds=config.person_cache.ttl_seconds,
            ),
            listing=LRUCache(
                "list",
                max_size=config.list_cache.max_size,
                ttl_seconds=config.list_cache.ttl_seconds,
            ),
        )

    def invalidate_graph(self, db_id: str) -> int:
        prefix = graph_prefix(db_id)
        removed = self.query.invalidate_prefix(prefix) + self.listing.invalidate_prefix(prefix)
        log.debug("Invalidated %d cached entries for graph %s", removed, db_id)
        return removed

    def invalidate_person(self, person_id: str, *, graphs: Iterable[str] = ()) -> int:
        """Drop the person's entries and the query entries of every graph holding them."""

        removed = self.person.invalidate_prefix(f"person:{person_id}:")
        for db_id in graphs:
            removed += self.invalidate_graph(db_id)
        return removed

    def clear(self) -> None:
        for cache in (self.query, self.person, self.listing):
            cache.clear()

    def stats(self) -> tuple[CacheStats, ...]:
        return (self.query.stats(), self.person.stats(), self.listing.stats())
