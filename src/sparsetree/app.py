"""Application orchestration entry points.

:class:`GraphEngine` wires the store, caches and domain services together. Its public
methods are the component boundary: each returns an :class:`OperationResult` and turns
engine errors into a status instead of raising.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.adapters.familysearch import FamilySearchFetcher, transform_payload
from sparsetree.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, is_started, startup
from sparsetree.config.engine import EngineConfig, get_engine_config
from sparsetree.config.familysearch import get_familysearch_config
from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.discovery import LinkDiscovery
from sparsetree.domain.errors import (
    ConflictError,
    GraphEngineError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    UpstreamFetchError,
)
from sparsetree.domain.graph import GraphQueryService, PathMethod
from sparsetree.domain.identity import IdentityResolver
from sparsetree.domain.indexer import Indexer, JobManager
from sparsetree.domain.indexer.writer import DATABASE_LISTING_KEY
from sparsetree.domain.integrity import IntegrityAuditor
from sparsetree.domain.model import EntityType, Source
from sparsetree.domain.overrides import OverrideResolver
from sparsetree.domain.ports.progress import ProgressPhase

if TYPE_CHECKING:
    from sparsetree.domain.discovery import DiscoveryEvent
    from sparsetree.domain.errors import IntegrityViolation
    from sparsetree.domain.graph import PathResult, Relative, TreeNode
    from sparsetree.domain.indexer import IndexRequest, IndexResult, JobHandle, JobSnapshot
    from sparsetree.domain.integrity import CoverageGap, IntegritySummary, ParentLinkageGap
    from sparsetree.domain.model import (
        CrawlDirection,
        DatabaseInfo,
        LocalOverride,
        Person,
        RawPayload,
        TransformedRecord,
    )
    from sparsetree.domain.overrides import PersonView
    from sparsetree.domain.ports.audit import PayloadAgeRow
    from sparsetree.domain.ports.fetching import PayloadTransformer, PersonRecordFetcher
    from sparsetree.domain.ports.progress import ProgressSink
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)


class OperationStatus(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid_input"
    UPSTREAM_ERROR = "upstream_error"
    STORAGE_ERROR = "storage_error"


_STATUS_BY_ERROR: tuple[tuple[type[GraphEngineError], OperationStatus], ...] = (
    (NotFoundError, OperationStatus.NOT_FOUND),
    (ConflictError, OperationStatus.CONFLICT),
    (InvalidInputError, OperationStatus.INVALID_INPUT),
    (UpstreamFetchError, OperationStatus.UPSTREAM_ERROR),
    (StorageError, OperationStatus.STORAGE_ERROR),
)


@dataclass(frozen=True, slots=True)
class OperationResult[T]:
    status: OperationStatus
    message: str = ""
    value: T | None = None

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.OK


def _status_for(exc: GraphEngineError) -> OperationStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return OperationStatus.STORAGE_ERROR


def _guard[T](operation: str, action: Callable[[], T], message: str = "") -> OperationResult[T]:
    try:
        value = action()
    except GraphEngineError as exc:
        status = _status_for(exc)
        if status is OperationStatus.STORAGE_ERROR:
            log.exception("%s failed", operation)
        else:
            log.info("%s rejected (%s): %s", operation, status, exc)
        return OperationResult(status=status, message=str(exc))
    except Exception as exc:  # noqa: BLE001
        log.exception("%s failed unexpectedly", operation)
        return OperationResult(
            status=OperationStatus.STORAGE_ERROR, message=f"Unexpected error: {exc!r}"
        )
    return OperationResult(status=OperationStatus.OK, message=message, value=value)


class ProviderRouter:
    """Dispatch fetches to the fetcher registered for the requested source."""

    def __init__(self, fetchers: Mapping[str, PersonRecordFetcher]) -> None:
        self._fetchers = dict(fetchers)

    def __call__(self, external_id: str, source: str) -> RawPayload:
        fetcher = self._fetchers.get(source)
        if fetcher is None:
            raise UpstreamFetchError(
                f"No fetcher configured for {source}", source=source, external_id=external_id
            )
        return fetcher(external_id, source)


class TransformerRouter:
    """Dispatch parsing to the transformer registered for the payload's source."""

    def __init__(self, transformers: Mapping[str, PayloadTransformer]) -> None:
        self._transformers = dict(transformers)

    def __call__(self, payload: RawPayload) -> TransformedRecord:
        transformer = self._transformers.get(payload.source)
        if transformer is None:
            raise ValueError(f"No transformer configured for {payload.source} payloads")
        return transformer(payload)


class _DeferredFetcher:
    """Build the real fetcher on first use so read-only commands need no credentials."""

    def __init__(self, factory: Callable[[], PersonRecordFetcher]) -> None:
        self._factory = factory
        self._fetcher: PersonRecordFetcher | None = None

    def __call__(self, external_id: str, source: str) -> RawPayload:
        if self._fetcher is None:
            self._fetcher = self._factory()
        return self._fetcher(external_id, source)


def _default_familysearch_fetcher() -> PersonRecordFetcher:
    return FamilySearchFetcher(config=get_familysearch_config())


class GraphEngine:
    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory | None = None,
        fetchers: Mapping[str, PersonRecordFetcher] | None = None,
        transformers: Mapping[str, PayloadTransformer] | None = None,
        config: EngineConfig | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        if unit_of_work_factory is None:
            if not is_started():
                startup()
            unit_of_work_factory = SqlAlchemyUnitOfWork
        self.config = config or get_engine_config()
        self._uow_factory = unit_of_work_factory
        self.caches = CacheRegistry.from_config(self.config)
        fetchers = fetchers or {
            Source.FAMILYSEARCH: _DeferredFetcher(_default_familysearch_fetcher)
        }
        transformers = transformers or {Source.FAMILYSEARCH: transform_payload}

        self.jobs = JobManager()
        self.identity = IdentityResolver(
            unit_of_work_factory, caches=self.caches, default_source=self.config.default_source
        )
        self.overrides = OverrideResolver(unit_of_work_factory, caches=self.caches)
        self.graph = GraphQueryService(unit_of_work_factory, self.identity, caches=self.caches)
        self.indexer = Indexer(
            unit_of_work_factory,
            self.identity,
            ProviderRouter(fetchers),
            TransformerRouter(transformers),
            jobs=self.jobs,
            caches=self.caches,
            progress=progress,
            config=self.config,
        )
        self.integrity = IntegrityAuditor(
            unit_of_work_factory,
            caches=self.caches,
            stale_after_days=self.config.stale_after_days,
        )
        self.discovery = LinkDiscovery(
            self.identity,
            self.indexer.writer,
            self.integrity,
            self.jobs,
            fetchers=fetchers,
            transformers=transformers,
        )

    # Indexing --------------------------------------------------------------------

    def index(self, request: IndexRequest) -> OperationResult[IndexResult]:
        """Crawl synchronously; the result carries the terminal job summary."""

        log.info(
            "Starting index of %s: max_generations=%s, cache_mode=%s, direction=%s",
            request.root_external_id,
            request.max_generations,
            request.cache_mode,
            request.direction,
        )
        result = _guard("Indexing", lambda: self.indexer.run(request))
        if result.value is not None:
            log.info("Finished index job %s: %s", result.value.job_id, result.value.message)
            return OperationResult(
                status=result.status, message=result.value.message, value=result.value
            )
        return result

    def start_indexing(self, request: IndexRequest) -> OperationResult[JobHandle]:
        return _guard(
            "Start indexing",
            lambda: self.indexer.start_indexing(request),
            f"Indexing {request.root_external_id} started",
        )

    def cancel_job(self, job_id: str | None = None) -> OperationResult[bool]:
        result = _guard("Cancel", lambda: self.jobs.cancel(job_id))
        if result.ok and not result.value:
            return OperationResult(
                status=OperationStatus.OK, message="No running job to cancel", value=False
            )
        return result

    def job_status(self, job_id: str | None = None) -> OperationResult[JobSnapshot]:
        if job_id is None:
            return _guard("Job status", self.jobs.status)
        return _guard("Job status", lambda: self.jobs.get(job_id))

    def list_databases(self) -> OperationResult[list[DatabaseInfo]]:
        def load() -> list[DatabaseInfo]:
            cached = self.caches.listing.get(DATABASE_LISTING_KEY)
            if isinstance(cached, list):
                return list(cached)
            with self._uow_factory() as uow:
                infos = uow.repositories.databases.list_info()
            self.caches.listing.set(DATABASE_LISTING_KEY, list(infos))
            return infos

        return _guard("List databases", load)

    # Graph queries ---------------------------------------------------------------

    def find_path(
        self,
        db_id: str,
        source: str,
        target: str,
        method: PathMethod | str = PathMethod.SHORTEST,
    ) -> OperationResult[PathResult]:
        result = _guard("Find path", lambda: self.graph.find_path(db_id, source, target, method))
        if result.value is not None and not result.value.found:
            return OperationResult(
                status=OperationStatus.OK,
                message=f"No {result.value.method} path from {source} to {target}",
                value=result.value,
            )
        return result

    def ancestors(
        self, db_id: str, person: str, *, max_depth: int | None = None
    ) -> OperationResult[list[Relative]]:
        return _guard("Ancestors", lambda: self.graph.ancestors(db_id, person, max_depth=max_depth))

    def descendants(
        self, db_id: str, person: str, *, max_depth: int | None = None
    ) -> OperationResult[list[Relative]]:
        return _guard(
            "Descendants", lambda: self.graph.descendants(db_id, person, max_depth=max_depth)
        )

    def tree(
        self,
        db_id: str,
        person: str,
        *,
        direction: CrawlDirection | None = None,
        max_depth: int = 4,
    ) -> OperationResult[TreeNode]:
        if direction is None:
            return _guard("Tree", lambda: self.graph.tree(db_id, person, max_depth=max_depth))
        return _guard(
            "Tree",
            lambda: self.graph.tree(db_id, person, direction=direction, max_depth=max_depth),
        )

    def search(self, query: str, *, limit: int = 50) -> OperationResult[list[Person]]:
        def run() -> list[Person]:
            text = query.strip()
            if not text:
                raise InvalidInputError("Search needs a query")
            with self._uow_factory() as uow:
                return uow.repositories.persons.search(text, limit=limit)

        return _guard("Search", run)

    # People and overrides --------------------------------------------------------

    def get_person(self, identifier: str) -> OperationResult[PersonView]:
        return _guard(
            "Get person",
            lambda: self.overrides.get_effective_person(self.identity.require_id(identifier)),
        )

    def set_override(
        self,
        entity_type: EntityType,
        entity_id: str,
        field_name: str,
        value: str | None,
        *,
        reason: str | None = None,
    ) -> OperationResult[LocalOverride]:
        return _guard(
            "Set override",
            lambda: self.overrides.set_override(
                entity_type, entity_id, field_name, value, reason=reason
            ),
        )

    def rename_person(
        self, identifier: str, display_name: str, *, reason: str | None = None
    ) -> OperationResult[LocalOverride]:
        def run() -> LocalOverride:
            person_id = self.identity.require_id(identifier)
            return self.overrides.set_override(
                EntityType.PERSON, person_id, "display_name", display_name, reason=reason
            )

        return _guard("Rename person", run)

    def mark_no_known_parents(
        self, identifier: str, value: bool = True
    ) -> OperationResult[None]:
        return _guard(
            "Mark no known parents",
            lambda: self.overrides.mark_no_known_parents(
                self.identity.require_id(identifier), value
            ),
        )

    def link_external_id(
        self, identifier: str, source: str, external_id: str, *, url: str | None = None
    ) -> OperationResult[None]:
        return _guard(
            "Link external id",
            lambda: self.identity.register_external_id(
                self.identity.require_id(identifier), source, external_id, url=url
            ),
        )

    # Integrity -------------------------------------------------------------------

    def integrity_summary(self, db_id: str) -> OperationResult[IntegritySummary]:
        return _guard("Integrity summary", lambda: self.integrity.summary(db_id))

    def coverage_gaps(self, db_id: str) -> OperationResult[list[CoverageGap]]:
        return _guard("Coverage gaps", lambda: self.integrity.coverage_gaps(db_id))

    def parent_linkage_gaps(
        self, db_id: str, provider: str | None = None
    ) -> OperationResult[list[ParentLinkageGap]]:
        return _guard(
            "Parent linkage gaps", lambda: self.integrity.parent_linkage_gaps(db_id, provider)
        )

    def orphaned_edges(self, db_id: str | None = None) -> OperationResult[list[IntegrityViolation]]:
        return _guard("Orphaned edges", lambda: self.integrity.orphaned_edges(db_id))

    def stale_payloads(
        self, *, source: str | None = None, older_than_days: int | None = None
    ) -> OperationResult[list[PayloadAgeRow]]:
        return _guard(
            "Stale payloads",
            lambda: self.integrity.stale_payloads(source=source, older_than_days=older_than_days),
        )

    def discover_missing_links(
        self,
        db_id: str,
        provider: str,
        on_event: Callable[[DiscoveryEvent], None] | None = None,
    ) -> OperationResult[DiscoveryEvent]:
        """Run bulk link discovery to completion and return its terminal event."""

        def run() -> DiscoveryEvent | None:
            last: DiscoveryEvent | None = None
            for event in self.discovery.discover_all_missing_links(db_id, provider):
                if on_event is not None:
                    on_event(event)
                last = event
            return last

        result = _guard("Link discovery", run)
        last = result.value
        if last is None:
            return result
        if last.type is ProgressPhase.FAILED:
            return OperationResult(
                status=OperationStatus.STORAGE_ERROR, message=last.message, value=last
            )
        return OperationResult(status=OperationStatus.OK, message=last.message, value=last)
