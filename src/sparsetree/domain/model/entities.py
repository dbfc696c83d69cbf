"""Persistent records of the genealogy graph.

Rows are immutable snapshots; repositories hand out fresh instances on every read and
accept them for upserts. Mutation happens in the store, never on these objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .enums import EntityType, EventType, Gender, ParentRole

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


@dataclass(slots=True, frozen=True, kw_only=True)
class PersonAttributes:
    """Provider-independent person fields used when creating or refreshing a Person."""

    display_name: str | None = None
    birth_name: str | None = None
    gender: Gender = Gender.UNKNOWN
    living: bool = False
    bio: str | None = None
    lifespan: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class Person:
    person_id: str
    display_name: str | None = None
    birth_name: str | None = None
    gender: Gender = Gender.UNKNOWN
    living: bool = False
    bio: str | None = None
    # Provider display lifespan, used when no vital event carries a year.
    lifespan: str | None = None
    no_known_parents: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class ExternalIdentity:
    source: str
    external_id: str
    person_id: str
    url: str | None = None
    confidence: float = 1.0
    last_seen_at: datetime | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class VitalEvent:
    event_id: str
    person_id: str
    event_type: EventType
    source: str
    date_original: str | None = None
    date_formal: str | None = None
    date_year: int | None = None
    place: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class Claim:
    claim_id: str
    person_id: str
    predicate: str
    value: str
    source: str


@dataclass(slots=True, frozen=True, kw_only=True)
class ParentEdge:
    child_id: str
    parent_id: str
    role: ParentRole = ParentRole.PARENT
    source: str | None = None
    confidence: float = 1.0


@dataclass(slots=True, frozen=True, kw_only=True)
class LocalOverride:
    entity_type: EntityType
    entity_id: str
    field_name: str
    override_value: str | None
    original_value: str | None = None
    reason: str | None = None
    source: str = "local"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class RawPayload:
    """Snapshot of one provider response; superseded by newer fetches, never edited."""

    source: str
    external_id: str
    payload: Mapping[str, object]
    fetched_at: datetime
    payload_id: int | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class DatabaseMembership:
    db_id: str
    person_id: str
    generation: int
    is_root: bool = False
    is_frontier: bool = False


@dataclass(slots=True, frozen=True, kw_only=True)
class DatabaseInfo:
    db_id: str
    root_id: str
    root_name: str | None
    source: str
    max_generations: int
    person_count: int
    updated_at: datetime | None = None


# Normalized provider output -----------------------------------------------------


@dataclass(slots=True, frozen=True, kw_only=True)
class VitalFact:
    event_type: EventType
    date_original: str | None = None
    date_formal: str | None = None
    year: int | None = None
    place: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class ClaimFact:
    predicate: str
    value: str


@dataclass(slots=True, frozen=True, kw_only=True)
class RelativeRef:
    external_id: str
    role: ParentRole = ParentRole.PARENT
    name: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class TransformedRecord:
    """Result of parsing one provider payload."""

    external_id: str
    person: PersonAttributes
    vitals: tuple[VitalFact, ...] = ()
    claims: tuple[ClaimFact, ...] = ()
    parents: tuple[RelativeRef, ...] = ()
    children: tuple[RelativeRef, ...] = ()
    url: str | None = None
    extra: Mapping[str, object] = field(default_factory=dict)

    @property
    def parent_ids(self) -> tuple[str, ...]:
        return tuple(ref.external_id for ref in self.parents)

    @property
    def child_ids(self) -> tuple[str, ...]:
        return tuple(ref.external_id for ref in self.children)

    def vital(self, event_type: EventType) -> VitalFact | None:
        return next((fact for fact in self.vitals if fact.event_type is event_type), None)
