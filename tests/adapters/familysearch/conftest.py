"""Shared fixtures for FamilySearch adapter tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from sparsetree.config.familysearch import FamilySearchConfig
from sparsetree.config.http_resilience import ResilienceConfig, RetryPolicy
from sparsetree.domain.model import RawPayload, Source

FamilySearchPayload = dict[str, object]
FIXTURES = Path("tests/data/familysearch")


def _load_fixture(name: str) -> FamilySearchPayload:
    return json.loads((FIXTURES / name).read_text())


@pytest.fixture
def person_body() -> FamilySearchPayload:
    return _load_fixture("person_with_family.json")


@pytest.fixture
def person_record(person_body: FamilySearchPayload) -> RawPayload:
    return RawPayload(
        source=Source.FAMILYSEARCH,
        external_id="KWQS-BBQ",
        payload=person_body,
        fetched_at=datetime(2025, 6, 1, tzinfo=UTC),
    )


@pytest.fixture
def familysearch_config() -> FamilySearchConfig:
    resilience = ResilienceConfig(
        name="familysearch-test",
        base_url="https://api.familysearch.test",
        retry=RetryPolicy(total=0),
        default_headers={"Authorization": "Bearer test-token"},
    )
    return FamilySearchConfig(access_token="test-token", resilience=resilience)  # noqa: S106
