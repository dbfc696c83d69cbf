"""Read-only audits of a stored graph."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.config.engine import DEFAULT_STALE_AFTER_DAYS
from sparsetree.domain.cache import CacheRegistry, graph_prefix
from sparsetree.domain.errors import (
    IntegrityViolation,
    InvalidInputError,
    NotFoundError,
    ViolationKind,
)
from sparsetree.domain.model import AUDITED_SOURCES

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sparsetree.domain.model import ParentRole
    from sparsetree.domain.ports.audit import PayloadAgeRow
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)


class GapKind(StrEnum):
    MISSING_PARENTS = "missing_parents"
    MISSING_PROVIDER_LINK = "missing_provider_link"


@dataclass(slots=True, frozen=True, kw_only=True)
class IntegritySummary:
    db_id: str
    persons: int
    persons_with_parents: int
    frontier: int
    overrides: int
    coverage: dict[str, int]

    @property
    def linked_parent_ratio(self) -> float:
        return self.persons_with_parents / self.persons if self.persons else 0.0


@dataclass(slots=True, frozen=True, kw_only=True)
class CoverageGap:
    person_id: str
    display_name: str | None
    missing: tuple[str, ...]
    present: tuple[str, ...]


@dataclass(slots=True, frozen=True, kw_only=True)
class ParentLinkageGap:
    kind: GapKind
    child_id: str
    child_name: str | None
    provider: str | None = None
    parent_id: str | None = None
    parent_name: str | None = None
    parent_role: ParentRole | None = None


class IntegrityAuditor:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        caches: CacheRegistry | None = None,
        stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._caches = caches or CacheRegistry()
        self._stale_after_days = stale_after_days
        self._clock = clock or (lambda: datetime.now(UTC))

    def summary(self, db_id: str) -> IntegritySummary:
        key = f"{graph_prefix(db_id)}integrity-summary"
        cached = self._caches.query.get(key)
        if isinstance(cached, IntegritySummary):
            return cached
        with self._uow_factory() as uow:
            repos = uow.repositories
            counts = repos.audit.counts(db_id)
            if counts.persons == 0 and repos.databases.get_info(db_id) is None:
                raise NotFoundError(f"Unknown database: {db_id}")
        summary = IntegritySummary(
            db_id=db_id,
            persons=counts.persons,
            persons_with_parents=counts.persons_with_parents,
            frontier=counts.frontier,
            overrides=counts.overrides,
            coverage=dict(counts.coverage),
        )
        self._caches.query.set(key, summary)
        return summary

    def coverage_gaps(
        self, db_id: str, providers: Sequence[str] = AUDITED_SOURCES
    ) -> list[CoverageGap]:
        """Members lacking an external identity for at least one of ``providers``."""

        wanted = tuple(str(provider) for provider in providers)
        if not wanted:
            raise InvalidInputError("Coverage audit needs at least one provider")
        with self._uow_factory() as uow:
            rows = uow.repositories.audit.coverage(db_id)
        gaps: list[CoverageGap] = []
        for row in rows:
            missing = tuple(provider for provider in wanted if provider not in row.sources)
            if missing:
                gaps.append(
                    CoverageGap(
                        person_id=row.person_id,
                        display_name=row.display_name,
                        missing=missing,
                        present=tuple(sorted(row.sources)),
                    )
                )
        return gaps

    def parent_linkage_gaps(
        self, db_id: str, provider: str | None = None
    ) -> list[ParentLinkageGap]:
        """Expanded members without parent edges, and parents lacking the child's provider link.

        Frontier members and people flagged as having no known parents are not expected to
        have parent edges. With ``provider`` set, only gaps that provider could fill are
        reported.
        """

        sources = (provider,) if provider else tuple(str(source) for source in AUDITED_SOURCES)
        with self._uow_factory() as uow:
            repos = uow.repositories
            parentless = repos.audit.parentless_members(db_id)
            unlinked = repos.audit.unlinked_parents(db_id, sources)
        gaps = [
            ParentLinkageGap(
                kind=GapKind.MISSING_PARENTS,
                child_id=row.person_id,
                child_name=row.display_name,
                provider=provider,
            )
            for row in parentless
            if provider is None or provider in row.sources
        ]
        gaps.extend(
            ParentLinkageGap(
                kind=GapKind.MISSING_PROVIDER_LINK,
                child_id=row.child_id,
                child_name=row.child_name,
                provider=row.source,
                parent_id=row.parent_id,
                parent_name=row.parent_name,
                parent_role=row.parent_role,
            )
            for row in unlinked
        )
        return gaps

    def orphaned_edges(self, db_id: str | None = None) -> list[IntegrityViolation]:
        with self._uow_factory() as uow:
            rows = uow.repositories.audit.dangling_edges(db_id)
        violations: list[IntegrityViolation] = []
        for row in rows:
            missing = [
                person_id
                for person_id, present in (
                    (row.child_id, row.child_exists),
                    (row.parent_id, row.parent_exists),
                )
                if not present
            ]
            message = (
                f"Parent edge {row.child_id} -> {row.parent_id} references "
                f"missing person(s): {', '.join(missing)}"
            )
            log.warning("%s", message)
            violations.append(
                IntegrityViolation(
                    kind=ViolationKind.ORPHANED_EDGE,
                    message=message,
                    entity_ids=(row.child_id, row.parent_id),
                )
            )
        return violations

    def stale_payloads(
        self,
        *,
        source: str | None = None,
        older_than_days: int | None = None,
        db_id: str | None = None,
    ) -> list[PayloadAgeRow]:
        """Records whose newest snapshot is older than the threshold; re-fetch candidates."""

        days = self._stale_after_days if older_than_days is None else older_than_days
        if days < 0:
            raise InvalidInputError(f"older_than_days must not be negative: {days}")
        cutoff = self._clock() - timedelta(days=days)
        with self._uow_factory() as uow:
            return uow.repositories.audit.payload_ages(
                fetched_before=cutoff, db_id=db_id, source=source
            )
