"""Fake FamilySearch payloads, fetchers and seeded graphs for tests."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sparsetree.domain.errors import UpstreamFetchError
from sparsetree.domain.model import (
    DatabaseInfo,
    DatabaseMembership,
    ParentEdge,
    PersonAttributes,
    RawPayload,
    Source,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

GEDCOMX_MALE = "http://gedcomx.org/Male"
GEDCOMX_FEMALE = "http://gedcomx.org/Female"
FAMILYSEARCH = Source.FAMILYSEARCH.value

type Payload = dict[str, object]


def person_payload(
    person_id: str,
    name: str | None = None,
    *,
    gender: str = GEDCOMX_MALE,
    father: str | None = None,
    mother: str | None = None,
    families_as_parent: Sequence[tuple[str | None, str | None, Sequence[str]]] = (),
    birth_year: int | None = None,
    embedded: Iterable[Payload] = (),
) -> Payload:
    """Build a minimal ``/platform/tree/persons/{id}`` response body."""

    display_name = name or f"Person {person_id}"
    facts: list[dict[str, object]] = []
    if birth_year is not None:
        facts.append(
            {
                "type": "http://gedcomx.org/Birth",
                "date": {"original": f"1 January {birth_year}", "formal": f"+{birth_year:04d}"},
                "place": {"original": "Springfield"},
            }
        )
    display: dict[str, object] = {"name": display_name}
    if father or mother:
        family: dict[str, object] = {}
        if father:
            family["parent1"] = {"resourceId": father}
        if mother:
            family["parent2"] = {"resourceId": mother}
        display["familiesAsChild"] = [family]
    if families_as_parent:
        display["familiesAsParent"] = [
            {
                **({"parent1": {"resourceId": parent1}} if parent1 else {}),
                **({"parent2": {"resourceId": parent2}} if parent2 else {}),
                "children": [{"resourceId": child} for child in children],
            }
            for parent1, parent2, children in families_as_parent
        ]
    subject = {
        "id": person_id,
        "living": False,
        "gender": {"type": gender},
        "names": [
            {
                "type": "http://gedcomx.org/BirthName",
                "preferred": True,
                "nameForms": [{"fullText": display_name}],
            }
        ],
        "facts": facts,
        "display": display,
    }
    persons: list[object] = [subject]
    for other in embedded:
        persons.extend(other["persons"])  # type: ignore[arg-type]
    return {"persons": persons}


def family_payloads(
    parents: Mapping[str, Sequence[str]],
    *,
    names: Mapping[str, str] | None = None,
    birth_years: Mapping[str, int] | None = None,
) -> dict[str, Payload]:
    """Payloads for a whole family given ``child -> [father, mother]``.

    The first parent listed is male and the second female; children lists are derived
    so that descendant crawls work from the same mapping.
    """

    names = names or {}
    birth_years = birth_years or {}
    genders: dict[str, str] = {}
    families: defaultdict[str, list[tuple[str | None, str | None, list[str]]]] = defaultdict(list)
    couples: dict[tuple[str | None, str | None], list[str]] = {}
    for child, child_parents in parents.items():
        father = child_parents[0] if len(child_parents) > 0 else None
        mother = child_parents[1] if len(child_parents) > 1 else None
        if father:
            genders.setdefault(father, GEDCOMX_MALE)
        if mother:
            genders.setdefault(mother, GEDCOMX_FEMALE)
        couples.setdefault((father, mother), []).append(child)
    for (father, mother), children in couples.items():
        for member in (father, mother):
            if member:
                families[member].append((father, mother, children))

    everyone = set(parents) | {pid for ps in parents.values() for pid in ps} | set(families)
    payloads: dict[str, Payload] = {}
    for person_id in sorted(everyone):
        child_parents = parents.get(person_id, ())
        payloads[person_id] = person_payload(
            person_id,
            names.get(person_id),
            gender=genders.get(person_id, GEDCOMX_MALE),
            father=child_parents[0] if len(child_parents) > 0 else None,
            mother=child_parents[1] if len(child_parents) > 1 else None,
            families_as_parent=families.get(person_id, ()),
            birth_year=birth_years.get(person_id),
        )
    return payloads


class FakeFetcher:
    """In-memory provider keyed by external id; records every call."""

    def __init__(
        self,
        payloads: Mapping[str, Payload],
        *,
        failures: Iterable[str] = (),
        before_fetch: Callable[[str], None] | None = None,
        fetched_at: datetime | None = None,
    ) -> None:
        self.payloads = dict(payloads)
        self.failures = set(failures)
        self.before_fetch = before_fetch
        self.fetched_at = fetched_at
        self.calls: list[str] = []

    def __call__(self, external_id: str, source: str) -> RawPayload:
        self.calls.append(external_id)
        if self.before_fetch is not None:
            self.before_fetch(external_id)
        if external_id in self.failures or external_id not in self.payloads:
            raise UpstreamFetchError(
                f"no record for {external_id}", source=source, external_id=external_id
            )
        return RawPayload(
            source=source,
            external_id=external_id,
            payload=self.payloads[external_id],
            fetched_at=self.fetched_at or datetime.now(UTC),
        )

    def count(self, external_id: str) -> int:
        return self.calls.count(external_id)


def seed_graph(
    unit_of_work_factory: UnitOfWorkFactory,
    identity: IdentityResolver,
    children: Mapping[str, Sequence[str]],
    *,
    root: str,
    names: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Store a graph rooted at ``root`` directly, bypassing the crawler.

    Keys and values of ``children`` are FamilySearch ids; returns their canonical ids. The
    graph's ``db_id`` is the canonical id of ``root``.
    """

    names = names or {}
    kids_listed = [kid for kids in children.values() for kid in kids]
    everyone = dict.fromkeys([root, *children, *kids_listed])
    ids = {
        external_id: identity.ensure_person(
            external_id,
            FAMILYSEARCH,
            PersonAttributes(display_name=names.get(external_id, f"Person {external_id}")),
        )
        for external_id in everyone
    }
    db_id = ids[root]
    with unit_of_work_factory() as uow:
        repos = uow.repositories
        for external_id, person_id in ids.items():
            repos.databases.add_member(
                DatabaseMembership(
                    db_id=db_id,
                    person_id=person_id,
                    generation=0 if external_id == root else 1,
                    is_root=external_id == root,
                )
            )
        for parent, kids in children.items():
            for kid in kids:
                repos.parent_edges.upsert(
                    ParentEdge(child_id=ids[kid], parent_id=ids[parent], source=FAMILYSEARCH)
                )
        repos.databases.upsert_info(
            DatabaseInfo(
                db_id=db_id,
                root_id=db_id,
                root_name=names.get(root),
                source=FAMILYSEARCH,
                max_generations=len(ids),
                person_count=len(ids),
            )
        )
        uow.commit()
    return ids
