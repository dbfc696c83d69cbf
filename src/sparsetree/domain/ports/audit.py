"""Read-only audit queries over the persisted graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sparsetree.domain.model import ParentRole


@dataclass(slots=True, frozen=True, kw_only=True)
class GraphCounts:
    persons: int
    persons_with_parents: int
    frontier: int
    overrides: int
    coverage: dict[str, int]


@dataclass(slots=True, frozen=True, kw_only=True)
class CoverageRow:
    person_id: str
    display_name: str | None
    sources: frozenset[str]


@dataclass(slots=True, frozen=True, kw_only=True)
class ParentlessRow:
    person_id: str
    display_name: str | None
    sources: frozenset[str]


@dataclass(slots=True, frozen=True, kw_only=True)
class UnlinkedParentRow:
    child_id: str
    child_name: str | None
    parent_id: str
    parent_name: str | None
    parent_role: ParentRole
    source: str


@dataclass(slots=True, frozen=True, kw_only=True)
class DanglingEdgeRow:
    child_id: str
    parent_id: str
    child_exists: bool
    parent_exists: bool


@dataclass(slots=True, frozen=True, kw_only=True)
class PayloadAgeRow:
    person_id: str | None
    display_name: str | None
    source: str
    external_id: str
    fetched_at: datetime


@runtime_checkable
class AuditRepository(Protocol):
    def counts(self, db_id: str) -> GraphCounts: ...

    def coverage(self, db_id: str) -> list[CoverageRow]: ...

    def parentless_members(self, db_id: str) -> list[ParentlessRow]: ...

    def unlinked_parents(self, db_id: str, sources: Sequence[str]) -> list[UnlinkedParentRow]: ...

    def dangling_edges(self, db_id: str | None = None) -> list[DanglingEdgeRow]: ...

    def payload_ages(
        self, *, fetched_before: datetime, db_id: str | None = None, source: str | None = None
    ) -> list[PayloadAgeRow]: ...
