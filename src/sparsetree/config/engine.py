"""Crawl and cache tuning for the graph engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .env import optional_env, optional_int_env

DEFAULT_SOURCE = "familysearch"
DEFAULT_MAX_GENERATIONS = 5
DEFAULT_PAYLOAD_MAX_AGE_DAYS = 30
DEFAULT_STALE_AFTER_DAYS = 30


@dataclass(frozen=True, slots=True)
class CacheSizing:
    max_size: int
    ttl_seconds: float


@dataclass(frozen=True, slots=True)
class EngineConfig:
    default_source: str = DEFAULT_SOURCE
    max_generations: int = DEFAULT_MAX_GENERATIONS
    payload_max_age: timedelta | None = timedelta(days=DEFAULT_PAYLOAD_MAX_AGE_DAYS)
    stale_after_days: int = DEFAULT_STALE_AFTER_DAYS
    query_cache: CacheSizing = CacheSizing(max_size=2000, ttl_seconds=5 * 60)
    person_cache: CacheSizing = CacheSizing(max_size=5000, ttl_seconds=10 * 60)
    list_cache: CacheSizing = CacheSizing(max_size=100, ttl_seconds=60)


def get_engine_config() -> EngineConfig:
    max_age_days = optional_int_env(
        "SPARSETREE_PAYLOAD_MAX_AGE_DAYS", DEFAULT_PAYLOAD_MAX_AGE_DAYS, minimum=0
    )
    return EngineConfig(
        default_source=optional_env("SPARSETREE_DEFAULT_SOURCE", DEFAULT_SOURCE),
        max_generations=optional_int_env(
            "SPARSETREE_MAX_GENERATIONS", DEFAULT_MAX_GENERATIONS, minimum=0
        ),
        # 0 disables the freshness window: any cached payload is reused.
        payload_max_age=timedelta(days=max_age_days) if max_age_days else None,
        stale_after_days=optional_int_env(
            "SPARSETREE_STALE_AFTER_DAYS", DEFAULT_STALE_AFTER_DAYS, minimum=1
        ),
    )
