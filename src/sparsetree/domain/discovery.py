"""Bulk repair of parent-linkage gaps against one provider.

:meth:`LinkDiscovery.discover_all_missing_links` is a generator: it yields progress
events while it works and can be stopped either through the shared
:class:`~sparsetree.domain.indexer.JobManager` or by closing the generator.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.errors import (
    ConflictError,
    InvalidInputError,
    StorageError,
    UpstreamFetchError,
)
from sparsetree.domain.indexer import parse_payload
from sparsetree.domain.integrity import GapKind
from sparsetree.domain.model import JobKind, JobStatus, ParentRole
from sparsetree.domain.ports.progress import ProgressPhase

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.indexer import GraphWriter, JobManager
    from sparsetree.domain.integrity import IntegrityAuditor, ParentLinkageGap
    from sparsetree.domain.model import RawPayload, RelativeRef, TransformedRecord
    from sparsetree.domain.ports.fetching import PayloadTransformer, PersonRecordFetcher

log = getLogger(__name__)

MATCHED_CONFIDENCE = 1.0
UNMATCHED_CONFIDENCE = 0.7


def _fold(name: str) -> str:
    decomposed = unicodedata.normalize("NFD", name.strip().lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(stripped.split())


def names_match(local_name: str | None, provider_name: str | None) -> bool:
    """Loose comparison: accent-insensitive containment or a shared surname."""

    a = _fold(local_name or "")
    b = _fold(provider_name or "")
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    a_last = a.rsplit(" ", 1)[-1]
    return a_last == b.rsplit(" ", 1)[-1] and len(a_last) > 2


@dataclass(slots=True, frozen=True, kw_only=True)
class DiscoveryEvent:
    type: ProgressPhase
    operation_id: str
    provider: str
    current: int
    total: int
    discovered: int
    skipped: int
    errors: int
    message: str
    current_person: str | None = None


@dataclass(slots=True)
class _Tally:
    current: int = 0
    total: int = 0
    discovered: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass(slots=True)
class _ChildGaps:
    child_id: str
    child_name: str | None
    missing_parents: bool = False
    unlinked: list[ParentLinkageGap] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class _ChildOutcome:
    discovered: int
    skipped: int


class LinkDiscovery:
    def __init__(
        self,
        identity: IdentityResolver,
        writer: GraphWriter,
        auditor: IntegrityAuditor,
        jobs: JobManager,
        *,
        fetchers: Mapping[str, PersonRecordFetcher],
        transformers: Mapping[str, PayloadTransformer],
    ) -> None:
        self._identity = identity
        self._writer = writer
        self._auditor = auditor
        self._jobs = jobs
        self._fetchers = fetchers
        self._transformers = transformers

    def discover_all_missing_links(self, db_id: str, provider: str) -> Iterator[DiscoveryEvent]:
        """Try to close every parent-linkage gap of ``db_id`` using ``provider``.

        Gaps are grouped by child since one provider record names both parents. Raises
        :class:`~sparsetree.domain.errors.ConflictError` on the first ``next()`` when
        another job is running.
        """

        if provider not in self._fetchers or provider not in self._transformers:
            raise InvalidInputError(f"No fetcher configured for provider {provider}")
        job = self._jobs.begin(JobKind.DISCOVERY, db_id)
        tally = _Tally()
        finished = False

        def event(phase: ProgressPhase, message: str, person: str | None = None) -> DiscoveryEvent:
            return DiscoveryEvent(
                type=phase,
                operation_id=job.job_id,
                provider=provider,
                current=tally.current,
                total=tally.total,
                discovered=tally.discovered,
                skipped=tally.skipped,
                errors=tally.errors,
                message=message,
                current_person=person,
            )

        def finish(status: JobStatus, message: str) -> None:
            nonlocal finished
            self._jobs.finish(job.job_id, status, message=message)
            finished = True

        try:
            yield event(ProgressPhase.STARTED, "Analyzing parent linkage gaps...")
            children = _group_by_child(self._auditor.parent_linkage_gaps(db_id, provider))
            tally.total = len(children)
            log.info("Found %d children with %s linkage gaps in %s", tally.total, provider, db_id)

            for child in children:
                if job.cancel_requested:
                    message = (
                        f"Cancelled after processing {tally.current} of {tally.total} persons."
                    )
                    finish(JobStatus.CANCELLED, message)
                    yield event(ProgressPhase.CANCELLED, message)
                    return
                tally.current += 1
                name = child.child_name or child.child_id
                yield event(
                    ProgressPhase.PROGRESS,
                    f"Discovering parents for {name} ({tally.current}/{tally.total})",
                    person=name,
                )
                try:
                    outcome = self._discover_for_child(db_id, provider, child)
                except (UpstreamFetchError, ValueError) as exc:
                    tally.errors += 1
                    log.warning("Error discovering parents for %s: %s", name, exc)
                    continue
                tally.discovered += outcome.discovered
                tally.skipped += outcome.skipped

            message = (
                f"Discovery complete. {tally.discovered} parent links discovered, "
                f"{tally.skipped} skipped, {tally.errors} errors."
                if tally.total
                else "No parent linkage gaps found."
            )
            tally.current = tally.total
            finish(JobStatus.COMPLETED, message)
            yield event(ProgressPhase.COMPLETED, message)
        except GeneratorExit:
            if not finished:
                finish(JobStatus.CANCELLED, "Discovery stream closed by consumer")
            raise
        except StorageError as exc:
            log.exception("Discovery job %s failed", job.job_id)
            if not finished:
                finish(JobStatus.FAILED, str(exc))
                yield event(ProgressPhase.FAILED, str(exc))
        finally:
            if not finished:
                finish(JobStatus.FAILED, "Discovery stopped by an unexpected error")

    def _discover_for_child(self, db_id: str, provider: str, child: _ChildGaps) -> _ChildOutcome:
        external_ids = self._identity.get_external_ids(child.child_id)
        external_id = external_ids.get(provider)
        if external_id is None:
            log.debug("%s has no %s identity, skipping", child.child_id, provider)
            return _ChildOutcome(discovered=0, skipped=1 + len(child.unlinked))

        payload = self._fetchers[provider](external_id, provider)
        record = parse_payload(self._transformers[provider], payload)
        if child.missing_parents:
            return self._attach_parents(db_id, provider, child, record, payload)
        return self._link_parents(provider, child, record)

    def _attach_parents(
        self,
        db_id: str,
        provider: str,
        child: _ChildGaps,
        record: TransformedRecord,
        payload: RawPayload,
    ) -> _ChildOutcome:
        """Store the parents the provider names for a child that has none yet."""

        if not record.parents:
            log.debug("%s lists no parents for %s", provider, child.child_id)
            return _ChildOutcome(discovered=0, skipped=1)
        relatives = self._writer.link_relatives(record, provider)
        self._writer.persist_record(
            db_id=db_id,
            person_id=child.child_id,
            record=record,
            source=provider,
            generation=self._writer.generation_of(db_id, child.child_id) or 0,
            relatives=relatives,
            payload=payload,
        )
        log.info("Attached %d parents to %s from %s", len(relatives), child.child_id, provider)
        return _ChildOutcome(discovered=len(relatives), skipped=0)

    def _link_parents(
        self, provider: str, child: _ChildGaps, record: TransformedRecord
    ) -> _ChildOutcome:
        """Attach the provider's parent ids to stored parents matched by role and name."""

        discovered = 0
        skipped = 0
        for gap in child.unlinked:
            ref = _match_parent(gap, record.parents)
            if ref is None or gap.parent_id is None:
                skipped += 1
                continue
            matched = names_match(gap.parent_name, ref.name)
            confidence = MATCHED_CONFIDENCE if matched else UNMATCHED_CONFIDENCE
            try:
                self._identity.register_external_id(
                    gap.parent_id, provider, ref.external_id, confidence=confidence
                )
            except ConflictError as exc:
                log.warning("Not linking %s: %s", gap.parent_id, exc)
                skipped += 1
                continue
            discovered += 1
        return _ChildOutcome(discovered=discovered, skipped=skipped)


def _match_parent(gap: ParentLinkageGap, refs: tuple[RelativeRef, ...]) -> RelativeRef | None:
    if gap.parent_role in (ParentRole.FATHER, ParentRole.MOTHER):
        return next((ref for ref in refs if ref.role is gap.parent_role), None)
    return next((ref for ref in refs if names_match(gap.parent_name, ref.name)), None)


def _group_by_child(gaps: list[ParentLinkageGap]) -> list[_ChildGaps]:
    grouped: dict[str, _ChildGaps] = {}
    for gap in gaps:
        child = grouped.setdefault(gap.child_id, _ChildGaps(gap.child_id, gap.child_name))
        if gap.kind is GapKind.MISSING_PARENTS:
            child.missing_parents = True
        else:
            child.unlinked.append(gap)
    return list(grouped.values())
