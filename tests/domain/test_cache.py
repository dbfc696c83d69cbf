from __future__ import annotations

import pytest

from sparsetree.config.engine import CacheSizing, EngineConfig
from sparsetree.domain.cache import CacheRegistry, LRUCache, graph_prefix, make_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_get_returns_value_and_counts_hits() -> None:
    cache: LRUCache[int] = LRUCache("test")

    assert cache.get("a") is None
    cache.set("a", 1)

    assert cache.get("a") == 1
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_rate == pytest.approx(0.5)


def test_least_recently_used_entry_is_evicted() -> None:
    cache: LRUCache[int] = LRUCache("test", max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")

    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert len(cache) == 2


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: LRUCache[str] = LRUCache("test", ttl_seconds=10, clock=clock)
    cache.set("a", "x")
    cache.set("b", "y", ttl_seconds=100)

    clock.now = 10.0

    assert cache.get("a") is None
    assert cache.get("b") == "y"
    assert len(cache) == 1


def test_has_does_not_touch_counters() -> None:
    cache: LRUCache[int] = LRUCache("test")
    cache.set("a", 1)

    assert cache.has("a")
    assert not cache.has("missing")
    assert cache.stats().hits == 0
    assert cache.stats().misses == 0


def test_invalidate_prefix_only_removes_matching_keys() -> None:
    cache: LRUCache[int] = LRUCache("test")
    cache.set("db:1:path", 1)
    cache.set("db:1:adjacency", 2)
    cache.set("db:2:path", 3)

    assert cache.invalidate_prefix("db:1:") == 2
    assert cache.invalidate("db:2:path")
    assert not cache.invalidate("db:2:path")
    assert len(cache) == 0


def test_clear_resets_statistics() -> None:
    cache: LRUCache[int] = LRUCache("test")
    cache.set("a", 1)
    cache.get("a")

    cache.clear()

    stats = cache.stats()
    assert (stats.size, stats.hits, stats.misses) == (0, 0, 0)


def test_max_size_must_be_positive() -> None:
    with pytest.raises(ValueError, match="max_size"):
        LRUCache("test", max_size=0)


def test_make_key_is_independent_of_parameter_order() -> None:
    assert make_key("path", {"b": 2, "a": 1}) == make_key("path", {"a": 1, "b": 2})
    assert make_key("databases") == "databases"


def test_registry_invalidates_one_graph() -> None:
    caches = CacheRegistry()
    caches.query.set(f"{graph_prefix('one')}adjacency", {})
    caches.query.set(f"{graph_prefix('two')}adjacency", {})
    caches.person.set("person:p1:view:1", "view")
    caches.person.set("person:p2:view:1", "view")

    assert caches.invalidate_graph("one") == 1
    assert caches.invalidate_person("p1") == 1
    assert caches.query.has(f"{graph_prefix('two')}adjacency")
    assert caches.person.has("person:p2:view:1")


def test_invalidate_person_drops_graph_queries_it_belongs_to() -> None:
    caches = CacheRegistry()
    caches.query.set(f"{graph_prefix('one')}integrity-summary", "summary")
    caches.query.set(f"{graph_prefix('two')}integrity-summary", "summary")
    caches.person.set("person:p1:view:1", "view")

    assert caches.invalidate_person("p1", graphs=["one"]) == 2
    assert not caches.query.has(f"{graph_prefix('one')}integrity-summary")
    assert caches.query.has(f"{graph_prefix('two')}integrity-summary")


def test_registry_from_config_uses_sizes() -> None:
    config = EngineConfig(
        query_cache=CacheSizing(max_size=3, ttl_seconds=1),
        person_cache=CacheSizing(max_size=4, ttl_seconds=2),
        list_cache=CacheSizing(max_size=5, ttl_seconds=3),
    )

    caches = CacheRegistry.from_config(config)

    assert [stats.max_size for stats in caches.stats()] == [3, 4, 5]
    assert caches.listing.ttl_seconds == 3
