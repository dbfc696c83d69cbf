"""FamilySearch provider adapter."""

from __future__ import annotations

from .client import FamilySearchAPIError, FamilySearchClient
from .fetcher import FamilySearchFetcher
from .translator import transform_payload

__all__ = [
    "FamilySearchAPIError",
    "FamilySearchClient",
    "FamilySearchFetcher",
    "transform_payload",
]
