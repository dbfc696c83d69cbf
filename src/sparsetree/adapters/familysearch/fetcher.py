"""FamilySearch implementation of the person record fetcher port."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

import httpx

from sparsetree.domain.errors import UpstreamFetchError
from sparsetree.domain.model import RawPayload, Source

from .client import FamilySearchAPIError, FamilySearchClient

if TYPE_CHECKING:
    from collections.abc import Callable

    from sparsetree.config.familysearch import FamilySearchConfig

log = getLogger(__name__)


class PersonLookupClient(Protocol):
    def fetch_person(self, person_id: str) -> dict[str, object]: ...


class FamilySearchFetcher:
    """Fetch tree persons and wrap them as raw payload snapshots."""

    def __init__(
        self,
        *,
        config: FamilySearchConfig | None = None,
        client: PersonLookupClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if client is None:
            if config is None:
                raise ValueError("FamilySearchFetcher needs a config or a client")
            client = FamilySearchClient(config=config)
        self._client = client
        self._clock = clock or (lambda: datetime.now(UTC))

    def __call__(self, external_id: str, source: str) -> RawPayload:
        if source != Source.FAMILYSEARCH:
            raise UpstreamFetchError(
                f"FamilySearch cannot fetch {source} records",
                source=source,
                external_id=external_id,
            )
        try:
            body = self._client.fetch_person(external_id)
        except (httpx.HTTPError, FamilySearchAPIError) as exc:
            log.warning("FamilySearch fetch failed for %s: %s", external_id, exc)
            raise UpstreamFetchError(
                f"FamilySearch fetch failed for {external_id}: {exc}",
                source=source,
                external_id=external_id,
            ) from exc
        return RawPayload(
            source=Source.FAMILYSEARCH,
            external_id=external_id,
            payload=body,
            fetched_at=self._clock(),
        )
