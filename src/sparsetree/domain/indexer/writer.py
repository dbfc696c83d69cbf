"""Per-person persistence shared by the indexer and bulk discovery."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.errors import GraphEngineError, UpstreamFetchError
from sparsetree.domain.model import (
    Claim,
    DatabaseInfo,
    DatabaseMembership,
    Gender,
    ParentEdge,
    ParentRole,
    PersonAttributes,
    VitalEvent,
    new_canonical_id,
    parse_year,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.model import RawPayload, RelativeRef, TransformedRecord, VitalFact
    from sparsetree.domain.ports.fetching import PayloadTransformer
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)

DATABASE_LISTING_KEY = "databases"

_ROLE_BY_GENDER: dict[Gender, ParentRole] = {
    Gender.MALE: ParentRole.FATHER,
    Gender.FEMALE: ParentRole.MOTHER,
}


@dataclass(slots=True, frozen=True)
class LinkedRelative:
    """A relative named by a record, already resolved to a canonical id."""

    ref: RelativeRef
    person_id: str
    is_parent: bool


@dataclass(slots=True, frozen=True)
class PersistOutcome:
    person_id: str
    new_edges: int


class GraphWriter:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        identity: IdentityResolver,
        *,
        caches: CacheRegistry | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._identity = identity
        self._caches = caches or CacheRegistry()

    def link_relatives(
        self,
        record: TransformedRecord,
        source: str,
        *,
        parents: bool = True,
        children: bool = False,
        ignore_ids: Collection[str] = (),
    ) -> list[LinkedRelative]:
        """Ensure a person row for each relative of ``record`` that the caller follows."""

        refs: list[tuple[RelativeRef, bool]] = []
        if parents:
            refs.extend((ref, True) for ref in record.parents)
        if children:
            refs.extend((ref, False) for ref in record.children)
        linked: list[LinkedRelative] = []
        for ref, is_parent in refs:
            if ref.external_id in ignore_ids or ref.external_id == record.external_id:
                continue
            person_id = self._identity.ensure_person(
                ref.external_id, source, PersonAttributes(display_name=ref.name)
            )
            linked.append(LinkedRelative(ref=ref, person_id=person_id, is_parent=is_parent))
        return linked

    def persist_record(
        self,
        *,
        db_id: str,
        person_id: str,
        record: TransformedRecord,
        source: str,
        generation: int,
        relatives: Sequence[LinkedRelative] = (),
        payload: RawPayload | None = None,
        is_root: bool = False,
    ) -> PersistOutcome:
        """Write one person's full row set in a single transaction.

        ``payload`` is only given for freshly fetched records. Relatives join the graph as
        frontier members one generation further out until they are expanded themselves.
        """

        now = datetime.now(UTC)
        new_edges = 0
        with self._uow_factory() as uow:
            repos = uow.repositories
            if payload is not None:
                repos.payloads.add(payload)
            repos.persons.update(person_id, record.person)
            repos.identities.touch(source, record.external_id, now)
            for fact in record.vitals:
                repos.vital_events.upsert(_vital_event(person_id, source, fact))
            for claim in record.claims:
                repos.claims.add_if_absent(
                    Claim(
                        claim_id=new_canonical_id(),
                        person_id=person_id,
                        predicate=claim.predicate,
                        value=claim.value,
                        source=source,
                    )
                )
            for relative in relatives:
                if relative.is_parent:
                    edge = ParentEdge(
                        child_id=person_id,
                        parent_id=relative.person_id,
                        role=relative.ref.role,
                        source=source,
                    )
                else:
                    edge = ParentEdge(
                        child_id=relative.person_id,
                        parent_id=person_id,
                        role=_ROLE_BY_GENDER.get(record.person.gender, ParentRole.PARENT),
                        source=source,
                    )
                if repos.parent_edges.upsert(edge):
                    new_edges += 1
                repos.databases.add_member(
                    DatabaseMembership(
                        db_id=db_id,
                        person_id=relative.person_id,
                        generation=generation + 1,
                        is_frontier=True,
                    )
                )
            repos.databases.add_member(
                DatabaseMembership(
                    db_id=db_id,
                    person_id=person_id,
                    generation=generation,
                    is_root=is_root,
                )
            )
            repos.persons.index_text(person_id)
            uow.commit()

        self._caches.invalidate_graph(db_id)
        self._caches.invalidate_person(person_id)
        log.debug(
            "Persisted %s:%s as %s (generation %d, %d new edges)",
            source,
            record.external_id,
            person_id,
            generation,
            new_edges,
        )
        return PersistOutcome(person_id=person_id, new_edges=new_edges)

    def generation_of(self, db_id: str, person_id: str) -> int | None:
        with self._uow_factory() as uow:
            members = uow.repositories.databases.members(db_id)
        return next(
            (member.generation for member in members if member.person_id == person_id), None
        )

    def finalize(
        self, *, db_id: str, root_id: str, source: str, max_generations: int
    ) -> DatabaseInfo:
        """Refresh the graph's summary row after a crawl."""

        with self._uow_factory() as uow:
            repos = uow.repositories
            root = repos.persons.get(root_id)
            info = DatabaseInfo(
                db_id=db_id,
                root_id=root_id,
                root_name=root.display_name if root else None,
                source=source,
                max_generations=max_generations,
                person_count=len(repos.databases.members(db_id)),
                updated_at=datetime.now(UTC),
            )
            repos.databases.upsert_info(info)
            uow.commit()
        self._caches.invalidate_graph(db_id)
        self._caches.listing.invalidate_prefix(DATABASE_LISTING_KEY)
        return info


def parse_payload(transformer: PayloadTransformer, payload: RawPayload) -> TransformedRecord:
    """Run ``transformer``, reporting any parse failure as a per-record upstream error."""

    try:
        return transformer(payload)
    except GraphEngineError:
        raise
    except Exception as exc:
        raise UpstreamFetchError(
            f"Could not parse {payload.source} payload: {exc!r}",
            source=payload.source,
            external_id=payload.external_id,
        ) from exc


def _vital_event(person_id: str, source: str, fact: VitalFact) -> VitalEvent:
    year = fact.year
    if year is None:
        year = parse_year(fact.date_formal)
    if year is None:
        year = parse_year(fact.date_original)
    return VitalEvent(
        event_id=new_canonical_id(),
        person_id=person_id,
        event_type=fact.event_type,
        source=source,
        date_original=fact.date_original,
        date_formal=fact.date_formal,
        date_year=year,
        place=fact.place,
    )
