from __future__ import annotations

import time
from collections.abc import Callable  # noqa: TC003
from dataclasses import replace

import httpx
import pytest

from sparsetree.adapters.familysearch import FamilySearchAPIError, FamilySearchClient
from sparsetree.adapters.http_resilience import ResilientClient
from sparsetree.config.familysearch import FamilySearchConfig
from sparsetree.config.http_resilience import RateLimit, ResilienceConfig


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        return ResilientClient(resilience, transport=httpx.MockTransport(async_handler))

    return factory


def test_fetch_person_returns_body(
    familysearch_config: FamilySearchConfig, person_body: dict[str, object]
) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=person_body)

    client = FamilySearchClient(
        config=familysearch_config, client_factory=_make_client_factory(handler)
    )

    assert client.fetch_person("KWQS-BBQ") == person_body
    assert len(requests) == 1
    assert requests[0].url.path == "/platform/tree/persons/KWQS-BBQ"
    assert requests[0].headers["Authorization"] == "Bearer test-token"


@pytest.mark.parametrize("status", [404, 410])
def test_fetch_person_reports_missing_person(
    familysearch_config: FamilySearchConfig, status: int
) -> None:
    client = FamilySearchClient(
        config=familysearch_config,
        client_factory=_make_client_factory(lambda _request: httpx.Response(status)),
    )

    with pytest.raises(FamilySearchAPIError, match=str(status)):
        client.fetch_person("GONE-123")


def test_fetch_person_raises_for_client_errors(familysearch_config: FamilySearchConfig) -> None:
    client = FamilySearchClient(
        config=familysearch_config,
        client_factory=_make_client_factory(lambda _request: httpx.Response(401)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        client.fetch_person("KWQS-BBQ")


def test_fetch_person_rejects_non_object_body(familysearch_config: FamilySearchConfig) -> None:
    client = FamilySearchClient(
        config=familysearch_config,
        client_factory=_make_client_factory(lambda _request: httpx.Response(200, json=[1, 2])),
    )

    with pytest.raises(FamilySearchAPIError, match="Unexpected"):
        client.fetch_person("KWQS-BBQ")


def test_consecutive_fetches_respect_rate_limit(
    familysearch_config: FamilySearchConfig, person_body: dict[str, object]
) -> None:
    resilience = replace(
        familysearch_config.resilience,
        name="familysearch-throttled",
        ratelimit=RateLimit(max_calls=1, per_seconds=0.2),
    )
    client = FamilySearchClient(
        config=replace(familysearch_config, resilience=resilience),
        client_factory=_make_client_factory(lambda _request: httpx.Response(200, json=person_body)),
    )

    started = time.monotonic()
    for _ in range(3):
        client.fetch_person("KWQS-BBQ")

    # One token per 0.2s: the second and third fetch each wait for a refill.
    assert time.monotonic() - started >= 0.3


def test_fetch_person_requires_base_url() -> None:
    config = FamilySearchConfig(
        access_token="test-token",  # noqa: S106
        resilience=ResilienceConfig(name="familysearch-test"),
    )
    client = FamilySearchClient(
        config=config,
        client_factory=_make_client_factory(lambda _request: httpx.Response(200, json={})),
    )

    with pytest.raises(FamilySearchAPIError, match="base_url"):
        client.fetch_person("KWQS-BBQ")
