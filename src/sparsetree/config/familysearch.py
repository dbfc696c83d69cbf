"""FamilySearch configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_FAMILYSEARCH_BASE_URL = "https://api.familysearch.org"


@dataclass(frozen=True, slots=True)
class FamilySearchConfig:
    access_token: str
    resilience: ResilienceConfig


def get_familysearch_config() -> FamilySearchConfig:
    values = require_env_vars(("FAMILYSEARCH_ACCESS_TOKEN",))
    access_token = values["FAMILYSEARCH_ACCESS_TOKEN"]
    base_url = optional_env("FAMILYSEARCH_BASE_URL", DEFAULT_FAMILYSEARCH_BASE_URL)

    resilience = ResilienceConfig(
        name="familysearch",
        base_url=base_url,
        ratelimit=RateLimit(max_calls=2, per_seconds=1.0),
        retry=RetryPolicy(total=4),
        default_headers={
            "Accept": "application/x-fs-v1+json",
            "Authorization": f"Bearer {access_token}",
        },
    )

    return FamilySearchConfig(access_token=access_token, resilience=resilience)
