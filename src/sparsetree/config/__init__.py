"""Application configuration helpers."""

from __future__ import annotations

from .engine import CacheSizing, EngineConfig, get_engine_config
from .env import optional_env, optional_int_env, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .familysearch import FamilySearchConfig, get_familysearch_config
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "CacheSizing",
    "ConfigurationError",
    "DatabaseConfig",
    "EngineConfig",
    "FamilySearchConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "get_database_config",
    "get_engine_config",
    "get_familysearch_config",
    "get_storage_config",
    "optional_env",
    "optional_int_env",
    "require_env_vars",
]
