from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from sparsetree.adapters.familysearch import transform_payload
from sparsetree.config.engine import EngineConfig
from sparsetree.domain.errors import ConflictError, InvalidInputError
from sparsetree.domain.indexer import Indexer, IndexRequest, JobManager
from sparsetree.domain.model import CacheMode, CrawlDirection, EntityType, JobKind, JobStatus
from sparsetree.domain.overrides import OverrideResolver
from sparsetree.domain.ports.progress import CollectingProgressSink, ProgressPhase
from tests.helpers.family import FAMILYSEARCH, FakeFetcher, family_payloads

if TYPE_CHECKING:
    from collections.abc import Callable

    from sparsetree.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from sparsetree.domain.cache import CacheRegistry
    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.model import RawPayload, TransformedRecord

NOW = datetime(2025, 6, 1, tzinfo=UTC)

# C is the child of A and B, who are both children of R.
PARENTS = {"C": ["A", "B"], "A": ["R"], "B": ["R"]}
BIRTH_YEARS = {"R": 1840, "A": 1870, "B": 1875, "C": 1900}


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher(family_payloads(PARENTS, birth_years=BIRTH_YEARS), fetched_at=NOW)


@pytest.fixture
def progress() -> CollectingProgressSink:
    return CollectingProgressSink()


@pytest.fixture
def indexer(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    identity: IdentityResolver,
    caches: CacheRegistry,
    fetcher: FakeFetcher,
    progress: CollectingProgressSink,
) -> Indexer:
    return Indexer(
        sqlite_unit_of_work,
        identity,
        fetcher,
        transform_payload,
        jobs=JobManager(),
        caches=caches,
        progress=progress,
        config=EngineConfig(max_generations=5),
        clock=lambda: NOW,
    )


def _count_edges(uow_factory: Callable[[], SqlAlchemyUnitOfWork]) -> int:
    with uow_factory() as uow:
        return uow.repositories.parent_edges.count()


def test_descendant_crawl_visits_shared_child_once(
    indexer: Indexer,
    fetcher: FakeFetcher,
    identity: IdentityResolver,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    result = indexer.run(
        IndexRequest(
            root_external_id="R", max_generations=2, direction=CrawlDirection.DESCENDANTS
        )
    )

    assert result.status is JobStatus.COMPLETED
    assert fetcher.count("C") == 1
    assert (result.fetched, result.cached, result.skipped, result.errored) == (4, 0, 1, 0)
    assert result.persons == 4
    assert result.deepest_generation == 2
    assert result.db_id == identity.resolve("R", FAMILYSEARCH)
    assert _count_edges(sqlite_unit_of_work) == 4
    with sqlite_unit_of_work() as uow:
        info = uow.repositories.databases.get_info(result.db_id or "")
    assert info is not None
    assert info.person_count == 4
    assert info.max_generations == 2


def test_ancestor_crawl_records_parent_roles_and_generations(
    indexer: Indexer,
    identity: IdentityResolver,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    result = indexer.run(IndexRequest(root_external_id="C", max_generations=1))

    assert result.status is JobStatus.COMPLETED
    assert result.persons == 3
    c_id = identity.require_id("C")
    r_id = identity.require_id("R")
    with sqlite_unit_of_work() as uow:
        repos = uow.repositories
        roles = {edge.parent_id: edge.role for edge in repos.parent_edges.parents_of(c_id)}
        members = {member.person_id: member for member in repos.databases.members(c_id)}
    assert sorted(str(role) for role in roles.values()) == ["father", "mother"]
    assert members[c_id].is_root
    assert members[c_id].generation == 0
    # R is known only as A's and B's parent; it was not expanded.
    assert members[r_id].generation == 2
    assert members[r_id].is_frontier
    assert not members[identity.require_id("A")].is_frontier


def test_rerun_is_idempotent(
    indexer: Indexer,
    fetcher: FakeFetcher,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    request = IndexRequest(root_external_id="C", cache_mode=CacheMode.FORCE_NETWORK)
    first = indexer.run(request)
    edges = _count_edges(sqlite_unit_of_work)

    second = indexer.run(request)

    assert first.job_id != second.job_id
    assert second.fetched == first.fetched == 4
    assert second.persons == first.persons
    assert _count_edges(sqlite_unit_of_work) == edges == 4
    assert fetcher.count("C") == 2
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.persons.count() == 4
        assert len(uow.repositories.claims.for_person(first.db_id or "")) == 0
        assert len(uow.repositories.vital_events.for_person(first.db_id or "")) == 1


def test_prefer_cache_reuses_fresh_payloads(indexer: Indexer, fetcher: FakeFetcher) -> None:
    indexer.run(IndexRequest(root_external_id="C"))
    calls = len(fetcher.calls)

    result = indexer.run(IndexRequest(root_external_id="C", cache_mode=CacheMode.PREFER_CACHE))

    assert len(fetcher.calls) == calls
    assert (result.fetched, result.cached) == (0, 4)


def test_prefer_cache_refetches_expired_payloads(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    identity: IdentityResolver,
) -> None:
    old = FakeFetcher(family_payloads(PARENTS), fetched_at=NOW - timedelta(days=90))
    indexer = Indexer(
        sqlite_unit_of_work,
        identity,
        old,
        transform_payload,
        config=EngineConfig(payload_max_age=timedelta(days=30)),
        clock=lambda: NOW,
    )
    indexer.run(IndexRequest(root_external_id="C"))

    result = indexer.run(IndexRequest(root_external_id="C"))

    assert (result.fetched, result.cached) == (4, 0)
    assert old.count("C") == 2


def test_cache_only_never_calls_the_provider(indexer: Indexer, fetcher: FakeFetcher) -> None:
    result = indexer.run(IndexRequest(root_external_id="C", cache_mode=CacheMode.CACHE_ONLY))

    assert fetcher.calls == []
    assert result.status is JobStatus.COMPLETED
    assert (result.fetched, result.cached, result.skipped, result.persons) == (0, 0, 1, 0)


def test_prefer_complete_refetches_records_missing_a_parent(
    indexer: Indexer, fetcher: FakeFetcher
) -> None:
    indexer.run(IndexRequest(root_external_id="C"))
    fetcher.calls.clear()

    result = indexer.run(IndexRequest(root_external_id="C", cache_mode=CacheMode.PREFER_COMPLETE))

    # C names both parents; A and B name one and R none.
    assert sorted(fetcher.calls) == ["A", "B", "R"]
    assert (result.fetched, result.cached) == (3, 1)


def test_recrawl_keeps_local_overrides(
    indexer: Indexer,
    identity: IdentityResolver,
    caches: CacheRegistry,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    indexer.run(IndexRequest(root_external_id="C"))
    a_id = identity.require_id("A")
    with sqlite_unit_of_work() as uow:
        (birth,) = uow.repositories.vital_events.for_person(a_id)
    overrides = OverrideResolver(sqlite_unit_of_work, caches=caches)
    overrides.set_override(EntityType.PERSON, a_id, "display_name", "Axel the Elder")
    overrides.set_override(
        EntityType.VITAL_EVENT,
        birth.event_id,
        "birth_date",
        "12 May 1871",
        original_value=birth.date_original,
    )

    result = indexer.run(IndexRequest(root_external_id="C", cache_mode=CacheMode.FORCE_NETWORK))

    assert result.fetched == 4
    with sqlite_unit_of_work() as uow:
        (refreshed,) = uow.repositories.vital_events.for_person(a_id)
        stored = uow.repositories.persons.get(a_id)
    assert refreshed.event_id == birth.event_id
    assert refreshed.date_year == 1870
    assert stored is not None
    assert stored.display_name != "Axel the Elder"
    assert overrides.get_all_overrides_for_person(a_id).total == 2
    date_override = overrides.get_override(EntityType.VITAL_EVENT, birth.event_id, "birth_date")
    assert date_override is not None
    assert date_override.override_value == "12 May 1871"
    view = overrides.get_effective_person(a_id)
    assert view.display_name == "Axel the Elder"
    assert view.birth is not None
    assert view.birth.year == 1871


def test_cancellation_stops_at_next_person(
    indexer: Indexer,
    fetcher: FakeFetcher,
    progress: CollectingProgressSink,
    identity: IdentityResolver,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    def cancel_on_a(external_id: str) -> None:
        if external_id == "A":
            indexer.jobs.cancel()

    fetcher.before_fetch = cancel_on_a

    result = indexer.run(IndexRequest(root_external_id="C"))

    assert result.status is JobStatus.CANCELLED
    assert fetcher.calls == ["C", "A"]
    assert result.fetched == 2
    assert progress.events[-1].phase is ProgressPhase.CANCELLED
    assert indexer.jobs.status().status is JobStatus.CANCELLED
    # Everything written before the cancel point stays in the store.
    c_id = identity.require_id("C")
    a_id = identity.require_id("A")
    with sqlite_unit_of_work() as uow:
        repos = uow.repositories
        members = {member.person_id: member for member in repos.databases.members(c_id)}
        c_parents = {edge.parent_id for edge in repos.parent_edges.parents_of(c_id)}
        a_parents = [edge.parent_id for edge in repos.parent_edges.parents_of(a_id)]
        assert repos.payloads.latest(FAMILYSEARCH, "A") is not None
    assert a_id in c_parents
    assert a_parents == [identity.require_id("R")]
    assert not members[c_id].is_frontier
    assert not members[a_id].is_frontier
    assert members[identity.require_id("B")].is_frontier


def test_failed_fetch_is_counted_and_crawl_continues(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    identity: IdentityResolver,
) -> None:
    flaky = FakeFetcher(family_payloads(PARENTS), failures={"B"})
    indexer = Indexer(sqlite_unit_of_work, identity, flaky, transform_payload)

    result = indexer.run(IndexRequest(root_external_id="C"))

    assert result.status is JobStatus.COMPLETED
    assert (result.fetched, result.errored) == (3, 1)
    assert len(result.errors) == 1
    assert result.errors[0].startswith("B: ")


def test_unparseable_payload_is_counted_as_error(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    identity: IdentityResolver,
) -> None:
    payloads = family_payloads(PARENTS)
    payloads["A"] = {"persons": []}
    indexer = Indexer(sqlite_unit_of_work, identity, FakeFetcher(payloads), transform_payload)

    result = indexer.run(IndexRequest(root_external_id="C"))

    assert result.errored == 1
    assert result.status is JobStatus.COMPLETED


def test_transformer_crash_fails_only_that_person(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    identity: IdentityResolver,
) -> None:
    def fragile_transform(payload: RawPayload) -> TransformedRecord:
        if payload.external_id == "A":
            raise KeyError("gender")
        return transform_payload(payload)

    indexer = Indexer(
        sqlite_unit_of_work, identity, FakeFetcher(family_payloads(PARENTS)), fragile_transform
    )

    result = indexer.run(IndexRequest(root_external_id="C"))

    assert result.status is JobStatus.COMPLETED
    assert (result.fetched, result.errored) == (3, 1)
    assert result.errors[0].startswith("A: ")
    assert "KeyError" in result.errors[0]


def test_ignored_ids_are_not_followed(indexer: Indexer, fetcher: FakeFetcher) -> None:
    result = indexer.run(IndexRequest(root_external_id="C", ignore_ids=frozenset({"B"})))

    assert "B" not in fetcher.calls
    assert result.persons == 3


def test_oldest_year_stops_expansion(
    indexer: Indexer,
    identity: IdentityResolver,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    result = indexer.run(IndexRequest(root_external_id="C", oldest_year=1850))

    assert result.persons == 3
    assert result.skipped >= 1
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.payloads.latest(FAMILYSEARCH, "R") is None
        person = uow.repositories.persons.get(identity.require_id("R"))
    assert person is not None
    assert person.display_name is None


def test_progress_events_bracket_the_crawl(
    indexer: Indexer, progress: CollectingProgressSink
) -> None:
    result = indexer.run(IndexRequest(root_external_id="C"))

    phases = [event.phase for event in progress.events]
    assert phases[0] is ProgressPhase.STARTED
    assert phases[-1] is ProgressPhase.COMPLETED
    assert phases.count(ProgressPhase.PROGRESS) == 4
    assert all(event.job_id == result.job_id for event in progress.events)
    fetched = [event.fetched for event in progress.events]
    assert fetched == sorted(fetched)


def test_running_job_blocks_a_second_crawl(indexer: Indexer) -> None:
    indexer.jobs.begin(JobKind.DISCOVERY, "graph")

    with pytest.raises(ConflictError):
        indexer.run(IndexRequest(root_external_id="C"))


def test_invalid_requests_are_rejected(indexer: Indexer) -> None:
    with pytest.raises(InvalidInputError):
        indexer.run(IndexRequest(root_external_id="  "))
    with pytest.raises(InvalidInputError):
        indexer.run(IndexRequest(root_external_id="C", max_generations=-1))
    assert not indexer.jobs.is_running()


def test_start_indexing_runs_in_background(indexer: Indexer) -> None:
    handle = indexer.start_indexing(IndexRequest(root_external_id="C"))

    result = handle.wait(timeout=30)

    assert handle.done
    assert result is not None
    assert result.status is JobStatus.COMPLETED
    assert handle.status() is JobStatus.COMPLETED
    assert result.job_id == handle.job_id
    assert not handle.cancel()
