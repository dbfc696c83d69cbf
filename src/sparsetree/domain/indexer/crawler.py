"""Generation-bounded breadth-first crawl from a root person."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.config.engine import EngineConfig
from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.errors import InvalidInputError, StorageError, UpstreamFetchError
from sparsetree.domain.model import CacheMode, CrawlDirection, EventType, JobKind, JobStatus
from sparsetree.domain.ports.progress import NullProgressSink, ProgressEvent, ProgressPhase

from .jobs import JobManager
from .writer import GraphWriter, parse_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.model import RawPayload, TransformedRecord
    from sparsetree.domain.ports.fetching import PayloadTransformer, PersonRecordFetcher
    from sparsetree.domain.ports.progress import ProgressSink
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

    from .jobs import Job

log = getLogger(__name__)

_TERMINAL_PHASES: dict[JobStatus, ProgressPhase] = {
    JobStatus.COMPLETED: ProgressPhase.COMPLETED,
    JobStatus.CANCELLED: ProgressPhase.CANCELLED,
    JobStatus.FAILED: ProgressPhase.FAILED,
}


@dataclass(slots=True, frozen=True, kw_only=True)
class IndexRequest:
    root_external_id: str
    max_generations: int | None = None
    cache_mode: CacheMode = CacheMode.PREFER_CACHE
    ignore_ids: frozenset[str] = frozenset()
    source: str | None = None
    direction: CrawlDirection = CrawlDirection.ANCESTORS
    # People born before this year stay frontier members: their fetched record is not
    # persisted and their relatives are not followed.
    oldest_year: int | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class IndexResult:
    job_id: str
    status: JobStatus
    db_id: str | None
    fetched: int
    cached: int
    skipped: int
    errored: int
    persons: int
    deepest_generation: int
    errors: tuple[str, ...] = ()
    message: str = ""


@dataclass(slots=True)
class _Progress:
    fetched: int = 0
    cached: int = 0
    skipped: int = 0
    errored: int = 0
    persons: int = 0
    deepest_generation: int = 0
    errors: list[str] = field(default_factory=list)
    db_id: str | None = None

    @property
    def processed(self) -> int:
        return self.fetched + self.cached + self.skipped + self.errored


@dataclass(slots=True, frozen=True)
class _Visit:
    external_id: str
    person_id: str
    generation: int


class JobHandle:
    """Caller-side view of an indexing job running on a background thread."""

    def __init__(self, job: Job, jobs: JobManager, thread: threading.Thread) -> None:
        self._job = job
        self._jobs = jobs
        self._thread = thread

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def done(self) -> bool:
        return not self._thread.is_alive()

    def status(self) -> JobStatus:
        return self._jobs.get(self.job_id).status

    def cancel(self) -> bool:
        return self._jobs.cancel(self.job_id)

    def wait(self, timeout: float | None = None) -> IndexResult | None:
        """Block until the job ends (or ``timeout`` passes) and return its result."""

        self._thread.join(timeout)
        result = self._job.result
        return result if isinstance(result, IndexResult) else None


class Indexer:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        identity: IdentityResolver,
        fetcher: PersonRecordFetcher,
        transformer: PayloadTransformer,
        *,
        jobs: JobManager | None = None,
        caches: CacheRegistry | None = None,
        progress: ProgressSink | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._identity = identity
        self._fetcher = fetcher
        self._transform = transformer
        self.jobs = jobs or JobManager()
        self._progress = progress or NullProgressSink()
        self._config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.writer = GraphWriter(unit_of_work_factory, identity, caches=caches or CacheRegistry())

    def run(self, request: IndexRequest) -> IndexResult:
        """Crawl on the calling thread and return the terminal summary."""

        request = self._validated(request)
        job = self.jobs.begin(JobKind.INDEX, request.root_external_id)
        return self._execute(job, request)

    def start_indexing(self, request: IndexRequest) -> JobHandle:
        """Start a crawl on a background thread.

        Raises :class:`~sparsetree.domain.errors.ConflictError` right away when another job
        is running.
        """

        request = self._validated(request)
        job = self.jobs.begin(JobKind.INDEX, request.root_external_id)
        thread = threading.Thread(
            target=self._execute,
            args=(job, request),
            name=f"index-{job.job_id}",
            daemon=True,
        )
        thread.start()
        return JobHandle(job, self.jobs, thread)

    def _validated(self, request: IndexRequest) -> IndexRequest:
        root = (request.root_external_id or "").strip()
        if not root:
            raise InvalidInputError("An indexing job needs a root external id")
        max_generations = request.max_generations
        if max_generations is None:
            max_generations = self._config.max_generations
        if max_generations < 0:
            raise InvalidInputError(f"max_generations must not be negative: {max_generations}")
        try:
            cache_mode = CacheMode(request.cache_mode)
            direction = CrawlDirection(request.direction)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc
        return replace(
            request,
            root_external_id=root,
            max_generations=max_generations,
            cache_mode=cache_mode,
            direction=direction,
            source=request.source or self._config.default_source,
            ignore_ids=frozenset(request.ignore_ids),
        )

    def _execute(self, job: Job, request: IndexRequest) -> IndexResult:
        progress = _Progress()
        status = JobStatus.FAILED
        message = "Indexing stopped by an unexpected error"
        try:
            status = self._crawl(job, request, progress)
            message = (
                f"Indexed {progress.persons} people: fetched {progress.fetched}, "
                f"cached {progress.cached}, skipped {progress.skipped}, "
                f"errored {progress.errored}"
            )
        except StorageError as exc:
            log.exception("Indexing job %s failed", job.job_id)
            message = str(exc)
        finally:
            result = IndexResult(
                job_id=job.job_id,
                status=status,
                db_id=progress.db_id,
                fetched=progress.fetched,
                cached=progress.cached,
                skipped=progress.skipped,
                errored=progress.errored,
                persons=progress.persons,
                deepest_generation=progress.deepest_generation,
                errors=tuple(progress.errors),
                message=message,
            )
            self.jobs.finish(job.job_id, status, message=message, result=result)
            self._emit(
                job,
                _TERMINAL_PHASES[status],
                progress,
                total=progress.processed,
                message=message,
            )
        return result

    def _crawl(self, job: Job, request: IndexRequest, progress: _Progress) -> JobStatus:
        source = request.source or self._config.default_source
        max_generations = request.max_generations or 0
        root_id = self._identity.ensure_person(request.root_external_id, source)
        progress.db_id = root_id
        visited = {root_id}
        queue: deque[_Visit] = deque([_Visit(request.root_external_id, root_id, 0)])
        self._emit(job, ProgressPhase.STARTED, progress, total=1, current=request.root_external_id)

        status = JobStatus.COMPLETED
        while queue:
            if job.cancel_requested:
                log.info("Job %s cancelled with %d people queued", job.job_id, len(queue))
                status = JobStatus.CANCELLED
                break
            visit = queue.popleft()
            for discovered in self._visit(request, source, root_id, visit, progress):
                if discovered.person_id in visited:
                    progress.skipped += 1
                elif discovered.generation <= max_generations:
                    visited.add(discovered.person_id)
                    queue.append(discovered)
            self._emit(
                job,
                ProgressPhase.PROGRESS,
                progress,
                total=progress.processed + len(queue),
                current=visit.external_id,
                generation=visit.generation,
            )

        self.writer.finalize(
            db_id=root_id, root_id=root_id, source=source, max_generations=max_generations
        )
        return status

    def _visit(
        self,
        request: IndexRequest,
        source: str,
        db_id: str,
        visit: _Visit,
        progress: _Progress,
    ) -> list[_Visit]:
        """Fetch, filter and persist one person; return the relatives it names."""

        if visit.external_id in request.ignore_ids:
            log.debug("Ignoring %s:%s", source, visit.external_id)
            progress.skipped += 1
            return []
        try:
            loaded = self._load(source, visit.external_id, request.cache_mode)
            if loaded is None:
                log.debug("Cache-only miss for %s:%s", source, visit.external_id)
                progress.skipped += 1
                return []
            payload, from_network = loaded
            record = parse_payload(self._transform, payload)
        except (UpstreamFetchError, ValueError) as exc:
            progress.errored += 1
            progress.errors.append(f"{visit.external_id}: {exc}")
            log.warning("Could not index %s:%s: %s", source, visit.external_id, exc)
            return []

        if _born_before(record, request.oldest_year):
            log.info("Skipping %s, born before %s", visit.external_id, request.oldest_year)
            progress.skipped += 1
            return []

        relatives = self.writer.link_relatives(
            record,
            source,
            parents=request.direction is not CrawlDirection.DESCENDANTS,
            children=request.direction is not CrawlDirection.ANCESTORS,
            ignore_ids=request.ignore_ids,
        )
        self.writer.persist_record(
            db_id=db_id,
            person_id=visit.person_id,
            record=record,
            source=source,
            generation=visit.generation,
            relatives=relatives,
            payload=payload if from_network else None,
            is_root=visit.generation == 0,
        )
        if from_network:
            progress.fetched += 1
        else:
            progress.cached += 1
        progress.persons += 1
        progress.deepest_generation = max(progress.deepest_generation, visit.generation)
        return [
            _Visit(relative.ref.external_id, relative.person_id, visit.generation + 1)
            for relative in relatives
        ]

    def _load(
        self, source: str, external_id: str, mode: CacheMode
    ) -> tuple[RawPayload, bool] | None:
        """Return ``(payload, from_network)``, or ``None`` on a cache-only miss."""

        cached: RawPayload | None = None
        if mode is not CacheMode.FORCE_NETWORK:
            with self._uow_factory() as uow:
                cached = uow.repositories.payloads.latest(source, external_id)
        if mode is CacheMode.CACHE_ONLY:
            return (cached, False) if cached is not None else None
        if cached is not None and self._reusable(cached, mode):
            return cached, False
        return self._fetcher(external_id, source), True

    def _reusable(self, cached: RawPayload, mode: CacheMode) -> bool:
        if mode is CacheMode.PREFER_COMPLETE:
            try:
                record = parse_payload(self._transform, cached)
            except UpstreamFetchError:
                return False
            return len(record.parents) >= 2
        max_age = self._config.payload_max_age
        return max_age is None or cached.fetched_at >= self._clock() - max_age

    def _emit(
        self,
        job: Job,
        phase: ProgressPhase,
        progress: _Progress,
        *,
        total: int,
        current: str | None = None,
        generation: int | None = None,
        message: str | None = None,
    ) -> None:
        event = ProgressEvent(
            job_id=job.job_id,
            phase=phase,
            fetched=progress.processed,
            total_estimate=total,
            current=current,
            generation=generation,
            message=message,
        )
        self.jobs.record_progress(job.job_id, event)
        self._progress(event)


def _born_before(record: TransformedRecord, oldest_year: int | None) -> bool:
    if oldest_year is None:
        return False
    birth = record.vital(EventType.BIRTH)
    return birth is not None and birth.year is not None and birth.year < oldest_year
