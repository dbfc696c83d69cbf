"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, exists, func, or_, select, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import aliased

from sparsetree.adapters.sqlalchemy.mappings import (
    PERSON_FTS_TABLE,
    claim_table,
    database_info_table,
    database_membership_table,
    external_identity_table,
    local_override_table,
    parent_edge_table,
    person_table,
    raw_payload_table,
    vital_event_table,
)
from sparsetree.domain.model import (
    Claim,
    DatabaseInfo,
    DatabaseMembership,
    EntityType,
    EventType,
    ExternalIdentity,
    Gender,
    LocalOverride,
    ParentEdge,
    ParentRole,
    Person,
    RawPayload,
    VitalEvent,
)
from sparsetree.domain.ports.audit import (
    CoverageRow,
    DanglingEdgeRow,
    GraphCounts,
    ParentlessRow,
    PayloadAgeRow,
    UnlinkedParentRow,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy import Row, Select
    from sqlalchemy.orm import Session

    from sparsetree.domain.model import PersonAttributes


def _now() -> datetime:
    return datetime.now(UTC)


def _member_ids(db_id: str) -> Select[tuple[str]]:
    return select(database_membership_table.c.person_id).where(
        database_membership_table.c.db_id == db_id
    )


class SqlAlchemyPersonRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, person_id: str) -> Person | None:
        row = self.session.execute(
            select(person_table).where(person_table.c.person_id == person_id)
        ).one_or_none()
        return _person_from_row(row) if row is not None else None

    def create(self, person_id: str, attributes: PersonAttributes) -> None:
        now = _now()
        self.session.execute(
            person_table.insert().values(
                person_id=person_id,
                display_name=attributes.display_name,
                birth_name=attributes.birth_name,
                gender=attributes.gender,
                living=attributes.living,
                bio=attributes.bio,
                lifespan=attributes.lifespan,
                created_at=now,
                updated_at=now,
            )
        )

    def update(self, person_id: str, attributes: PersonAttributes) -> None:
        values: dict[str, Any] = {"living": attributes.living, "updated_at": _now()}
        if attributes.display_name is not None:
            values["display_name"] = attributes.display_name
        if attributes.birth_name is not None:
            values["birth_name"] = attributes.birth_name
        if attributes.bio is not None:
            values["bio"] = attributes.bio
        if attributes.lifespan is not None:
            values["lifespan"] = attributes.lifespan
        if attributes.gender is not Gender.UNKNOWN:
            values["gender"] = attributes.gender
        self.session.execute(
            update(person_table).where(person_table.c.person_id == person_id).values(**values)
        )

    def set_no_known_parents(self, person_id: str, value: bool) -> bool:
        result = self.session.execute(
            update(person_table)
            .where(person_table.c.person_id == person_id)
            .values(no_known_parents=value, updated_at=_now())
        )
        return bool(result.rowcount)

    def delete(self, person_id: str) -> bool:
        result = self.session.execute(
            delete(person_table).where(person_table.c.person_id == person_id)
        )
        return bool(result.rowcount)

    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(person_table)).scalar_one()

    def index_text(self, person_id: str) -> None:
        person = self.get(person_id)
        if person is None:
            return
        claims = self.session.execute(
            select(claim_table.c.value_text).where(claim_table.c.person_id == person_id)
        ).scalars()
        self.session.execute(
            text(f"DELETE FROM {PERSON_FTS_TABLE} WHERE person_id = :person_id"),
            {"person_id": person_id},
        )
        self.session.execute(
            text(
                f"INSERT INTO {PERSON_FTS_TABLE} "
                "(person_id, display_name, birth_name, bio, claims) "
                "VALUES (:person_id, :display_name, :birth_name, :bio, :claims)"
            ),
            {
                "person_id": person_id,
                "display_name": person.display_name or "",
                "birth_name": person.birth_name or "",
                "bio": person.bio or "",
                "claims": " ".join(claims),
            },
        )

    def search(self, query: str, *, limit: int = 50) -> list[Person]:
        match = _fts_match_expression(query)
        if not match:
            return []
        person_ids = self.session.execute(
            text(
                f"SELECT person_id FROM {PERSON_FTS_TABLE} "
                f"WHERE {PERSON_FTS_TABLE} MATCH :match ORDER BY rank LIMIT :limit"
            ),
            {"match": match, "limit": limit},
        ).scalars()
        people: list[Person] = []
        for person_id in person_ids:
            person = self.get(person_id)
            if person is not None:
                people.append(person)
        return people


def _fts_match_expression(query: str) -> str:
    # Quote every token so user input never reaches the FTS5 query grammar.
    tokens = [token.replace('"', "") for token in query.split()]
    return " ".join(f'"{token}"*' for token in tokens if token)


def _person_from_row(row: Row[Any]) -> Person:
    return Person(
        person_id=row.person_id,
        display_name=row.display_name,
        birth_name=row.birth_name,
        gender=Gender(row.gender),
        living=bool(row.living),
        bio=row.bio,
        lifespan=row.lifespan,
        no_known_parents=bool(row.no_known_parents),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyExternalIdentityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def resolve(self, source: str, external_id: str) -> str | None:
        stmt = (
            select(external_identity_table.c.person_id)
            .where(external_identity_table.c.source == source)
            .where(external_identity_table.c.external_id == external_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def resolve_many(self, source: str, external_ids: Sequence[str]) -> dict[str, str]:
        if not external_ids:
            return {}
        stmt = (
            select(external_identity_table.c.external_id, external_identity_table.c.person_id)
            .where(external_identity_table.c.source == source)
            .where(external_identity_table.c.external_id.in_(list(external_ids)))
        )
        return {external_id: person_id for external_id, person_id in self.session.execute(stmt)}

    def for_person(self, person_id: str) -> list[ExternalIdentity]:
        stmt = (
            select(external_identity_table)
            .where(external_identity_table.c.person_id == person_id)
            .order_by(external_identity_table.c.identity_id)
        )
        return [
            ExternalIdentity(
                source=row.source,
                external_id=row.external_id,
                person_id=row.person_id,
                url=row.url,
                confidence=row.confidence,
                last_seen_at=row.last_seen_at,
            )
            for row in self.session.execute(stmt)
        ]

    def insert_if_absent(self, identity: ExternalIdentity) -> bool:
        stmt = (
            sqlite_insert(external_identity_table)
            .values(
                person_id=identity.person_id,
                source=identity.source,
                external_id=identity.external_id,
                url=identity.url,
                confidence=identity.confidence,
                last_seen_at=identity.last_seen_at or _now(),
            )
            .on_conflict_do_nothing()
        )
        return self.session.execute(stmt).rowcount == 1

    def replace_for_person(self, identity: ExternalIdentity) -> None:
        self.session.execute(
            delete(external_identity_table).where(
                external_identity_table.c.source == identity.source,
                or_(
                    external_identity_table.c.person_id == identity.person_id,
                    external_identity_table.c.external_id == identity.external_id,
                ),
            )
        )
        self.insert_if_absent(identity)

    def remove(self, person_id: str, source: str) -> bool:
        result = self.session.execute(
            delete(external_identity_table)
            .where(external_identity_table.c.person_id == person_id)
            .where(external_identity_table.c.source == source)
        )
        return bool(result.rowcount)

    def touch(self, source: str, external_id: str, seen_at: datetime) -> None:
        self.session.execute(
            update(external_identity_table)
            .where(external_identity_table.c.source == source)
            .where(external_identity_table.c.external_id == external_id)
            .values(last_seen_at=seen_at)
        )

    def count(self) -> int:
        return self.session.execute(
            select(func.count()).select_from(external_identity_table)
        ).scalar_one()


class SqlAlchemyVitalEventRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, event_id: str) -> VitalEvent | None:
        row = self.session.execute(
            select(vital_event_table).where(vital_event_table.c.event_id == event_id)
        ).one_or_none()
        return _vital_event_from_row(row) if row is not None else None

    def for_person(self, person_id: str) -> list[VitalEvent]:
        stmt = (
            select(vital_event_table)
            .where(vital_event_table.c.person_id == person_id)
            .order_by(vital_event_table.c.event_type, vital_event_table.c.source)
        )
        return [_vital_event_from_row(row) for row in self.session.execute(stmt)]

    def find(self, person_id: str, event_type: EventType, source: str) -> VitalEvent | None:
        row = self.session.execute(
            select(vital_event_table)
            .where(vital_event_table.c.person_id == person_id)
            .where(vital_event_table.c.event_type == event_type)
            .where(vital_event_table.c.source == source)
        ).one_or_none()
        return _vital_event_from_row(row) if row is not None else None

    def upsert(self, event: VitalEvent) -> str:
        stmt = sqlite_insert(vital_event_table).values(
            event_id=event.event_id,
            person_id=event.person_id,
            event_type=event.event_type,
            date_original=event.date_original,
            date_formal=event.date_formal,
            date_year=event.date_year,
            place=event.place,
            source=event.source,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["person_id", "event_type", "source"],
            set_={
                "date_original": stmt.excluded.date_original,
                "date_formal": stmt.excluded.date_formal,
                "date_year": stmt.excluded.date_year,
                "place": stmt.excluded.place,
            },
        )
        self.session.execute(stmt)
        stored = self.find(event.person_id, event.event_type, event.source)
        if stored is None:
            raise RuntimeError(f"Vital event upsert for {event.person_id} did not persist")
        return stored.event_id


def _vital_event_from_row(row: Row[Any]) -> VitalEvent:
    return VitalEvent(
        event_id=row.event_id,
        person_id=row.person_id,
        event_type=EventType(row.event_type),
        source=row.source,
        date_original=row.date_original,
        date_formal=row.date_formal,
        date_year=row.date_year,
        place=row.place,
    )


class SqlAlchemyClaimRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, claim_id: str) -> Claim | None:
        row = self.session.execute(
            select(claim_table).where(claim_table.c.claim_id == claim_id)
        ).one_or_none()
        return _claim_from_row(row) if row is not None else None

    def for_person(self, person_id: str) -> list[Claim]:
        stmt = (
            select(claim_table)
            .where(claim_table.c.person_id == person_id)
            .order_by(claim_table.c.predicate, claim_table.c.created_at, claim_table.c.claim_id)
        )
        return [_claim_from_row(row) for row in self.session.execute(stmt)]

    def add_if_absent(self, claim: Claim) -> str:
        self.session.execute(
            sqlite_insert(claim_table)
            .values(
                claim_id=claim.claim_id,
                person_id=claim.person_id,
                predicate=claim.predicate,
                value_text=claim.value,
                source=claim.source,
                created_at=_now(),
            )
            .on_conflict_do_nothing(
                index_elements=["person_id", "predicate", "value_text", "source"]
            )
        )
        return self.session.execute(
            select(claim_table.c.claim_id)
            .where(claim_table.c.person_id == claim.person_id)
            .where(claim_table.c.predicate == claim.predicate)
            .where(claim_table.c.value_text == claim.value)
            .where(claim_table.c.source == claim.source)
        ).scalar_one()

    def update_value(self, claim_id: str, value: str) -> bool:
        result = self.session.execute(
            update(claim_table).where(claim_table.c.claim_id == claim_id).values(value_text=value)
        )
        return bool(result.rowcount)

    def delete(self, claim_id: str) -> bool:
        result = self.session.execute(delete(claim_table).where(claim_table.c.claim_id == claim_id))
        return bool(result.rowcount)


def _claim_from_row(row: Row[Any]) -> Claim:
    return Claim(
        claim_id=row.claim_id,
        person_id=row.person_id,
        predicate=row.predicate,
        value=row.value_text,
        source=row.source,
    )


class SqlAlchemyParentEdgeRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, edge: ParentEdge) -> bool:
        inserted = self.session.execute(
            sqlite_insert(parent_edge_table)
            .values(
                child_id=edge.child_id,
                parent_id=edge.parent_id,
                parent_role=edge.role,
                source=edge.source,
                confidence=edge.confidence,
            )
            .on_conflict_do_nothing(index_elements=["child_id", "parent_id"])
        )
        if inserted.rowcount == 1:
            return True
        self.session.execute(
            update(parent_edge_table)
            .where(parent_edge_table.c.child_id == edge.child_id)
            .where(parent_edge_table.c.parent_id == edge.parent_id)
            .values(parent_role=edge.role, source=edge.source, confidence=edge.confidence)
        )
        return False

    def parents_of(self, child_id: str) -> list[ParentEdge]:
        return self._select(parent_edge_table.c.child_id == child_id)

    def children_of(self, parent_id: str) -> list[ParentEdge]:
        return self._select(parent_edge_table.c.parent_id == parent_id)

    def for_graph(self, db_id: str) -> list[ParentEdge]:
        return self._select(parent_edge_table.c.child_id.in_(_member_ids(db_id)))

    def count(self) -> int:
        return self.session.execute(
            select(func.count()).select_from(parent_edge_table)
        ).scalar_one()

    def _select(self, *criteria: Any) -> list[ParentEdge]:
        stmt = select(parent_edge_table).where(*criteria).order_by(parent_edge_table.c.edge_id)
        return [
            ParentEdge(
                child_id=row.child_id,
                parent_id=row.parent_id,
                role=ParentRole(row.parent_role),
                source=row.source,
                confidence=row.confidence,
            )
            for row in self.session.execute(stmt)
        ]


class SqlAlchemyOverrideRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(
        self, entity_type: EntityType, entity_id: str, field_name: str
    ) -> LocalOverride | None:
        row = self.session.execute(
            select(local_override_table)
            .where(local_override_table.c.entity_type == entity_type)
            .where(local_override_table.c.entity_id == entity_id)
            .where(local_override_table.c.field_name == field_name)
        ).one_or_none()
        return _override_from_row(row) if row is not None else None

    def upsert(self, override: LocalOverride) -> LocalOverride:
        now = _now()
        stmt = sqlite_insert(local_override_table).values(
            entity_type=override.entity_type,
            entity_id=override.entity_id,
            field_name=override.field_name,
            original_value=override.original_value,
            override_value=override.override_value,
            reason=override.reason,
            source=override.source,
            created_at=now,
            updated_at=now,
        )
        # original_value keeps the first recorded value.
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity_type", "entity_id", "field_name"],
            set_={
                "override_value": stmt.excluded.override_value,
                "reason": func.coalesce(stmt.excluded.reason, local_override_table.c.reason),
                "source": func.coalesce(stmt.excluded.source, local_override_table.c.source),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.execute(stmt)
        stored = self.get(override.entity_type, override.entity_id, override.field_name)
        if stored is None:
            raise RuntimeError("Override upsert did not persist")
        return stored

    def delete(self, entity_type: EntityType, entity_id: str, field_name: str) -> bool:
        result = self.session.execute(
            delete(local_override_table)
            .where(local_override_table.c.entity_type == entity_type)
            .where(local_override_table.c.entity_id == entity_id)
            .where(local_override_table.c.field_name == field_name)
        )
        return bool(result.rowcount)

    def delete_for_entity(self, entity_type: EntityType, entity_id: str) -> int:
        result = self.session.execute(
            delete(local_override_table)
            .where(local_override_table.c.entity_type == entity_type)
            .where(local_override_table.c.entity_id == entity_id)
        )
        return result.rowcount

    def for_entities(
        self, entity_type: EntityType, entity_ids: Iterable[str]
    ) -> list[LocalOverride]:
        ids = list(entity_ids)
        if not ids:
            return []
        stmt = (
            select(local_override_table)
            .where(local_override_table.c.entity_type == entity_type)
            .where(local_override_table.c.entity_id.in_(ids))
            .order_by(local_override_table.c.override_id)
        )
        return [_override_from_row(row) for row in self.session.execute(stmt)]

    def page(self, *, limit: int = 100, offset: int = 0) -> list[LocalOverride]:
        stmt = (
            select(local_override_table)
            .order_by(
                local_override_table.c.updated_at.desc(), local_override_table.c.override_id.desc()
            )
            .limit(limit)
            .offset(offset)
        )
        return [_override_from_row(row) for row in self.session.execute(stmt)]

    def count(self, *, db_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(local_override_table)
        if db_id is not None:
            members = _member_ids(db_id)
            owned_events = select(vital_event_table.c.event_id).where(
                vital_event_table.c.person_id.in_(members)
            )
            owned_claims = select(claim_table.c.claim_id).where(
                claim_table.c.person_id.in_(members)
            )
            stmt = stmt.where(
                or_(
                    and_(
                        local_override_table.c.entity_type == EntityType.PERSON,
                        local_override_table.c.entity_id.in_(members),
                    ),
                    and_(
                        local_override_table.c.entity_type == EntityType.VITAL_EVENT,
                        local_override_table.c.entity_id.in_(owned_events),
                    ),
                    and_(
                        local_override_table.c.entity_type == EntityType.CLAIM,
                        local_override_table.c.entity_id.in_(owned_claims),
                    ),
                )
            )
        return self.session.execute(stmt).scalar_one()


def _override_from_row(row: Row[Any]) -> LocalOverride:
    return LocalOverride(
        entity_type=EntityType(row.entity_type),
        entity_id=row.entity_id,
        field_name=row.field_name,
        original_value=row.original_value,
        override_value=row.override_value,
        reason=row.reason,
        source=row.source,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyRawPayloadRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, payload: RawPayload) -> int:
        result = self.session.execute(
            raw_payload_table.insert().values(
                source=payload.source,
                external_id=payload.external_id,
                payload=dict(payload.payload),
                fetched_at=payload.fetched_at,
            )
        )
        (payload_id,) = result.inserted_primary_key or (None,)
        if payload_id is None:
            raise RuntimeError("Raw payload insert returned no primary key")
        return int(payload_id)

    def latest(self, source: str, external_id: str) -> RawPayload | None:
        row = self.session.execute(
            select(raw_payload_table)
            .where(raw_payload_table.c.source == source)
            .where(raw_payload_table.c.external_id == external_id)
            .order_by(raw_payload_table.c.fetched_at.desc(), raw_payload_table.c.payload_id.desc())
            .limit(1)
        ).one_or_none()
        if row is None:
            return None
        return RawPayload(
            source=row.source,
            external_id=row.external_id,
            payload=row.payload,
            fetched_at=row.fetched_at,
            payload_id=row.payload_id,
        )


class SqlAlchemyGraphDatabaseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add_member(self, membership: DatabaseMembership) -> None:
        table = database_membership_table
        stmt = sqlite_insert(table).values(
            db_id=membership.db_id,
            person_id=membership.person_id,
            generation=membership.generation,
            is_root=membership.is_root,
            is_frontier=membership.is_frontier,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["db_id", "person_id"],
            set_={
                "generation": func.min(table.c.generation, stmt.excluded.generation),
                "is_root": or_(table.c.is_root, stmt.excluded.is_root),
                # Once expanded, a member never reverts to a frontier leaf.
                "is_frontier": and_(table.c.is_frontier, stmt.excluded.is_frontier),
            },
        )
        self.session.execute(stmt)

    def members(self, db_id: str) -> list[DatabaseMembership]:
        stmt = (
            select(database_membership_table)
            .where(database_membership_table.c.db_id == db_id)
            .order_by(database_membership_table.c.generation, database_membership_table.c.person_id)
        )
        return [
            DatabaseMembership(
                db_id=row.db_id,
                person_id=row.person_id,
                generation=row.generation,
                is_root=bool(row.is_root),
                is_frontier=bool(row.is_frontier),
            )
            for row in self.session.execute(stmt)
        ]

    def graphs_of(self, person_id: str) -> list[str]:
        stmt = (
            select(database_membership_table.c.db_id)
            .where(database_membership_table.c.person_id == person_id)
            .order_by(database_membership_table.c.db_id)
        )
        return list(self.session.scalars(stmt))

    def upsert_info(self, info: DatabaseInfo) -> None:
        values = {
            "root_id": info.root_id,
            "root_name": info.root_name,
            "source": info.source,
            "max_generations": info.max_generations,
            "person_count": info.person_count,
            "updated_at": info.updated_at or _now(),
        }
        stmt = sqlite_insert(database_info_table).values(db_id=info.db_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["db_id"], set_=values)
        self.session.execute(stmt)

    def get_info(self, db_id: str) -> DatabaseInfo | None:
        row = self.session.execute(
            select(database_info_table).where(database_info_table.c.db_id == db_id)
        ).one_or_none()
        return _info_from_row(row) if row is not None else None

    def list_info(self) -> list[DatabaseInfo]:
        stmt = select(database_info_table).order_by(database_info_table.c.updated_at.desc())
        return [_info_from_row(row) for row in self.session.execute(stmt)]


def _info_from_row(row: Row[Any]) -> DatabaseInfo:
    return DatabaseInfo(
        db_id=row.db_id,
        root_id=row.root_id,
        root_name=row.root_name,
        source=row.source,
        max_generations=row.max_generations,
        person_count=row.person_count,
        updated_at=row.updated_at,
    )


class SqlAlchemyAuditRepository:
    """Aggregate queries used by the integrity auditor."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def counts(self, db_id: str) -> GraphCounts:
        membership = database_membership_table
        persons = self.session.execute(
            select(func.count()).select_from(membership).where(membership.c.db_id == db_id)
        ).scalar_one()
        frontier = self.session.execute(
            select(func.count())
            .select_from(membership)
            .where(membership.c.db_id == db_id)
            .where(membership.c.is_frontier.is_(True))
        ).scalar_one()
        has_parent = exists().where(parent_edge_table.c.child_id == membership.c.person_id)
        with_parents = self.session.execute(
            select(func.count())
            .select_from(membership)
            .where(membership.c.db_id == db_id)
            .where(has_parent)
        ).scalar_one()
        coverage_stmt = (
            select(
                external_identity_table.c.source,
                func.count(func.distinct(external_identity_table.c.person_id)),
            )
            .where(external_identity_table.c.person_id.in_(_member_ids(db_id)))
            .group_by(external_identity_table.c.source)
        )
        coverage = {source: count for source, count in self.session.execute(coverage_stmt)}
        overrides = SqlAlchemyOverrideRepository(self.session).count(db_id=db_id)
        return GraphCounts(
            persons=persons,
            persons_with_parents=with_parents,
            frontier=frontier,
            overrides=overrides,
            coverage=coverage,
        )

    def coverage(self, db_id: str) -> list[CoverageRow]:
        rows = self._members_with_sources(db_id)
        return [
            CoverageRow(person_id=person_id, display_name=name, sources=frozenset(sources))
            for person_id, (name, sources) in rows.items()
        ]

    def parentless_members(self, db_id: str) -> list[ParentlessRow]:
        membership = database_membership_table
        has_parent = exists().where(parent_edge_table.c.child_id == membership.c.person_id)
        stmt = (
            select(membership.c.person_id)
            .join(person_table, person_table.c.person_id == membership.c.person_id)
            .where(membership.c.db_id == db_id)
            .where(membership.c.is_frontier.is_(False))
            .where(person_table.c.no_known_parents.is_(False))
            .where(~has_parent)
        )
        parentless = set(self.session.execute(stmt).scalars())
        rows = self._members_with_sources(db_id)
        return [
            ParentlessRow(person_id=person_id, display_name=name, sources=frozenset(sources))
            for person_id, (name, sources) in rows.items()
            if person_id in parentless
        ]

    def unlinked_parents(self, db_id: str, sources: Sequence[str]) -> list[UnlinkedParentRow]:
        child = aliased(person_table, name="child")
        parent = aliased(person_table, name="parent")
        child_identity = aliased(external_identity_table, name="child_identity")
        parent_identity = aliased(external_identity_table, name="parent_identity")
        results: list[UnlinkedParentRow] = []
        for source in sources:
            parent_linked = (
                exists()
                .where(parent_identity.c.person_id == parent_edge_table.c.parent_id)
                .where(parent_identity.c.source == source)
            )
            stmt = (
                select(
                    parent_edge_table.c.child_id,
                    child.c.display_name.label("child_name"),
                    parent_edge_table.c.parent_id,
                    parent.c.display_name.label("parent_name"),
                    parent_edge_table.c.parent_role,
                )
                .join(child, child.c.person_id == parent_edge_table.c.child_id)
                .join(parent, parent.c.person_id == parent_edge_table.c.parent_id)
                .join(
                    child_identity,
                    and_(
                        child_identity.c.person_id == parent_edge_table.c.child_id,
                        child_identity.c.source == source,
                    ),
                )
                .where(parent_edge_table.c.child_id.in_(_member_ids(db_id)))
                .where(~parent_linked)
                .order_by(parent_edge_table.c.child_id, parent_edge_table.c.parent_role)
            )
            results.extend(
                UnlinkedParentRow(
                    child_id=row.child_id,
                    child_name=row.child_name,
                    parent_id=row.parent_id,
                    parent_name=row.parent_name,
                    parent_role=ParentRole(row.parent_role),
                    source=source,
                )
                for row in self.session.execute(stmt)
            )
        return results

    def dangling_edges(self, db_id: str | None = None) -> list[DanglingEdgeRow]:
        child_exists = exists().where(person_table.c.person_id == parent_edge_table.c.child_id)
        parent_exists = exists().where(person_table.c.person_id == parent_edge_table.c.parent_id)
        stmt = (
            select(
                parent_edge_table.c.child_id,
                parent_edge_table.c.parent_id,
                child_exists.label("child_exists"),
                parent_exists.label("parent_exists"),
            )
            .where(or_(~child_exists, ~parent_exists))
            .order_by(parent_edge_table.c.edge_id)
        )
        if db_id is not None:
            members = _member_ids(db_id)
            stmt = stmt.where(
                or_(
                    parent_edge_table.c.child_id.in_(members),
                    parent_edge_table.c.parent_id.in_(members),
                )
            )
        return [
            DanglingEdgeRow(
                child_id=row.child_id,
                parent_id=row.parent_id,
                child_exists=bool(row.child_exists),
                parent_exists=bool(row.parent_exists),
            )
            for row in self.session.execute(stmt)
        ]

    def payload_ages(
        self, *, fetched_before: datetime, db_id: str | None = None, source: str | None = None
    ) -> list[PayloadAgeRow]:
        latest = (
            select(
                raw_payload_table.c.source,
                raw_payload_table.c.external_id,
                func.max(raw_payload_table.c.fetched_at).label("fetched_at"),
            )
            .group_by(raw_payload_table.c.source, raw_payload_table.c.external_id)
            .subquery("latest_payload")
        )
        stmt = (
            select(
                latest.c.source,
                latest.c.external_id,
                latest.c.fetched_at,
                external_identity_table.c.person_id,
                person_table.c.display_name,
            )
            .select_from(latest)
            .outerjoin(
                external_identity_table,
                and_(
                    external_identity_table.c.source == latest.c.source,
                    external_identity_table.c.external_id == latest.c.external_id,
                ),
            )
            .outerjoin(
                person_table, person_table.c.person_id == external_identity_table.c.person_id
            )
            .where(latest.c.fetched_at < fetched_before)
            .order_by(latest.c.fetched_at)
        )
        if source is not None:
            stmt = stmt.where(latest.c.source == source)
        if db_id is not None:
            stmt = stmt.where(external_identity_table.c.person_id.in_(_member_ids(db_id)))
        return [
            PayloadAgeRow(
                person_id=row.person_id,
                display_name=row.display_name,
                source=row.source,
                external_id=row.external_id,
                fetched_at=_as_utc(row.fetched_at),
            )
            for row in self.session.execute(stmt)
        ]

    def _members_with_sources(self, db_id: str) -> dict[str, tuple[str | None, set[str]]]:
        stmt = (
            select(
                database_membership_table.c.person_id,
                person_table.c.display_name,
                external_identity_table.c.source,
            )
            .join(person_table, person_table.c.person_id == database_membership_table.c.person_id)
            .outerjoin(
                external_identity_table,
                external_identity_table.c.person_id == database_membership_table.c.person_id,
            )
            .where(database_membership_table.c.db_id == db_id)
            .order_by(database_membership_table.c.generation, database_membership_table.c.person_id)
        )
        names: dict[str, str | None] = {}
        sources: defaultdict[str, set[str]] = defaultdict(set)
        for person_id, display_name, source in self.session.execute(stmt):
            names[person_id] = display_name
            if source is not None:
                sources[person_id].add(source)
        return {person_id: (name, sources[person_id]) for person_id, name in names.items()}


def _as_utc(value: datetime | str) -> datetime:
    # Aggregates bypass the column type, so SQLite hands back the stored string.
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value if value.tzinfo else value.replace(tzinfo=UTC)
