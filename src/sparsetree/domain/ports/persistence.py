"""Ports for persisting the genealogy graph."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from sparsetree.domain.model import (
        Claim,
        DatabaseInfo,
        DatabaseMembership,
        EntityType,
        EventType,
        ExternalIdentity,
        LocalOverride,
        ParentEdge,
        Person,
        PersonAttributes,
        RawPayload,
        VitalEvent,
    )


@runtime_checkable
class PersonRepository(Protocol):
    def get(self, person_id: str) -> Person | None: ...

    def create(self, person_id: str, attributes: PersonAttributes) -> None: ...

    def update(self, person_id: str, attributes: PersonAttributes) -> None: ...

    def set_no_known_parents(self, person_id: str, value: bool) -> bool: ...

    def delete(self, person_id: str) -> bool: ...

    def count(self) -> int: ...

    def index_text(self, person_id: str) -> None: ...

    def search(self, query: str, *, limit: int = 50) -> list[Person]: ...


@runtime_checkable
class ExternalIdentityRepository(Protocol):
    def resolve(self, source: str, external_id: str) -> str | None: ...

    def for_person(self, person_id: str) -> list[ExternalIdentity]: ...

    def resolve_many(self, source: str, external_ids: Sequence[str]) -> dict[str, str]: ...

    def insert_if_absent(self, identity: ExternalIdentity) -> bool:
        """Insert unless ``(source, external_id)`` is taken; report whether a row was added."""
        ...

    def replace_for_person(self, identity: ExternalIdentity) -> None: ...

    def remove(self, person_id: str, source: str) -> bool: ...

    def touch(self, source: str, external_id: str, seen_at: datetime) -> None: ...

    def count(self) -> int: ...


@runtime_checkable
class VitalEventRepository(Protocol):
    def get(self, event_id: str) -> VitalEvent | None: ...

    def for_person(self, person_id: str) -> list[VitalEvent]: ...

    def find(self, person_id: str, event_type: EventType, source: str) -> VitalEvent | None: ...

    def upsert(self, event: VitalEvent) -> str:
        """Insert or refresh the event keyed by person, type and source; return its id."""
        ...


@runtime_checkable
class ClaimRepository(Protocol):
    def get(self, claim_id: str) -> Claim | None: ...

    def for_person(self, person_id: str) -> list[Claim]: ...

    def add_if_absent(self, claim: Claim) -> str: ...

    def update_value(self, claim_id: str, value: str) -> bool: ...

    def delete(self, claim_id: str) -> bool: ...


@runtime_checkable
class ParentEdgeRepository(Protocol):
    def upsert(self, edge: ParentEdge) -> bool:
        """Insert or refresh an edge; return ``True`` when the edge is new."""
        ...

    def parents_of(self, child_id: str) -> list[ParentEdge]: ...

    def children_of(self, parent_id: str) -> list[ParentEdge]: ...

    def for_graph(self, db_id: str) -> list[ParentEdge]: ...

    def count(self) -> int: ...


@runtime_checkable
class OverrideRepository(Protocol):
    def get(
        self, entity_type: EntityType, entity_id: str, field_name: str
    ) -> LocalOverride | None: ...

    def upsert(self, override: LocalOverride) -> LocalOverride: ...

    def delete(self, entity_type: EntityType, entity_id: str, field_name: str) -> bool: ...

    def delete_for_entity(self, entity_type: EntityType, entity_id: str) -> int: ...

    def for_entities(
        self, entity_type: EntityType, entity_ids: Iterable[str]
    ) -> list[LocalOverride]: ...

    def page(self, *, limit: int = 100, offset: int = 0) -> list[LocalOverride]: ...

    def count(self, *, db_id: str | None = None) -> int: ...


@runtime_checkable
class RawPayloadRepository(Protocol):
    def add(self, payload: RawPayload) -> int: ...

    def latest(self, source: str, external_id: str) -> RawPayload | None: ...


@runtime_checkable
class GraphDatabaseRepository(Protocol):
    def add_member(self, membership: DatabaseMembership) -> None: ...

    def members(self, db_id: str) -> list[DatabaseMembership]: ...

    def graphs_of(self, person_id: str) -> list[str]: ...

    def upsert_info(self, info: DatabaseInfo) -> None: ...

    def get_info(self, db_id: str) -> DatabaseInfo | None: ...

    def list_info(self) -> list[DatabaseInfo]: ...
