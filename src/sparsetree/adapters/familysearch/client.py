"""FamilySearch API client."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.adapters.http_resilience import ResilientClient

if TYPE_CHECKING:
    from collections.abc import Callable

    from sparsetree.config.familysearch import FamilySearchConfig
    from sparsetree.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

PERSON_PATH = "/platform/tree/persons/{person_id}"

# Deleted and merged-away persons answer with these codes instead of a body.
_GONE_STATUSES = frozenset({404, 410})


class FamilySearchAPIError(RuntimeError):
    """Raised when the FamilySearch API returns an unexpected response."""


class FamilySearchClient:
    """Low-level HTTP client for the FamilySearch tree API."""

    def __init__(
        self,
        *,
        config: FamilySearchConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._resilience = config.resilience
        self._client_factory = client_factory or ResilientClient

    def fetch_person(self, person_id: str) -> dict[str, object]:
        """Return the raw JSON body for one tree person."""

        return asyncio.run(self._fetch_person_async(person_id))

    async def _fetch_person_async(self, person_id: str) -> dict[str, object]:
        async with self._client_factory(self._resilience) as client:
            return await self._perform_request(
                client=client,
                path=PERSON_PATH.format(person_id=person_id),
            )

    async def _perform_request(
        self,
        *,
        client: ResilientClient,
        path: str,
    ) -> dict[str, object]:
        if self._resilience.base_url is None:
            raise FamilySearchAPIError("Missing FamilySearch base_url in resilience configuration")
        response = await client.get(path)
        if response.status_code in _GONE_STATUSES:
            raise FamilySearchAPIError(
                f"FamilySearch has no person at {path} (HTTP {response.status_code})"
            )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, dict):
            raise FamilySearchAPIError("Unexpected FamilySearch response payload")
        log.debug("Fetched %s", path)
        return payload
