"""Translate FamilySearch person payloads into provider-independent records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from sparsetree.domain.model import (
    ClaimFact,
    EventType,
    Gender,
    ParentRole,
    PersonAttributes,
    RelativeRef,
    TransformedRecord,
    VitalFact,
    build_lifespan,
    parse_year,
)

from .schema import (
    FAMILYSEARCH_LIFE_SKETCH,
    GEDCOMX_ALSO_KNOWN_AS,
    GEDCOMX_BIRTH_NAME,
    GEDCOMX_CAUSE,
    GEDCOMX_FEMALE,
    GEDCOMX_MALE,
    GEDCOMX_MARRIED_NAME,
    FamilySearchPersonRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sparsetree.domain.model import RawPayload

    from .schema import (
        DisplayFamily,
        FamilySearchPerson,
        GedcomxFact,
        GedcomxGender,
        ResourceReference,
    )

FAMILYSEARCH_PERSON_URL = "https://www.familysearch.org/tree/person/details/{person_id}"

_VITAL_TYPES: Final[dict[str, EventType]] = {
    "http://gedcomx.org/Birth": EventType.BIRTH,
    "http://gedcomx.org/Death": EventType.DEATH,
    "http://gedcomx.org/Burial": EventType.BURIAL,
    "http://gedcomx.org/Christening": EventType.CHRISTENING,
    "http://gedcomx.org/Marriage": EventType.MARRIAGE,
    "http://gedcomx.org/Divorce": EventType.DIVORCE,
}

_CLAIM_TYPES: Final[dict[str, str]] = {
    "http://gedcomx.org/Occupation": "occupation",
    "http://gedcomx.org/Title": "title",
    "data:,TitleOfNobility": "title",
    "data:,Title%20%28Nobility%29": "title",
    "http://gedcomx.org/Religion": "religion",
    "http://gedcomx.org/MilitaryService": "military_service",
}

_GENDERS: Final[dict[str, Gender]] = {
    GEDCOMX_MALE: Gender.MALE,
    GEDCOMX_FEMALE: Gender.FEMALE,
}


def transform_payload(payload: RawPayload) -> TransformedRecord:
    """Parse one stored ``/platform/tree/persons/{id}`` response.

    Raises :class:`pydantic.ValidationError` (a ``ValueError``) when the payload does not
    contain a person.
    """

    record = FamilySearchPersonRecord.model_validate(dict(payload.payload))
    person = record.subject
    display_name = _display_name(person)
    vitals = tuple(_vitals(person.facts))
    birth = next((fact for fact in vitals if fact.event_type is EventType.BIRTH), None)
    death = next((fact for fact in vitals if fact.event_type is EventType.DEATH), None)

    lifespan = person.display.lifespan if person.display else None
    if not lifespan:
        lifespan = build_lifespan(birth.year if birth else None, death.year if death else None)

    attributes = PersonAttributes(
        display_name=display_name,
        birth_name=_birth_name(person, display_name),
        gender=_gender(person.gender),
        living=person.living,
        bio=_first_value(person.facts, FAMILYSEARCH_LIFE_SKETCH),
        lifespan=lifespan or None,
    )

    families_as_child = person.display.families_as_child if person.display else []
    families_as_parent = person.display.families_as_parent if person.display else []
    # The requested id is authoritative; merged persons come back under their new id.
    external_id = payload.external_id or person.id
    extra: dict[str, object] = {}
    if person.id != external_id:
        extra["resolved_id"] = person.id
    spouses = _spouse_ids(families_as_parent, person.id)
    if spouses:
        extra["spouses"] = spouses

    return TransformedRecord(
        external_id=external_id,
        person=attributes,
        vitals=vitals,
        claims=tuple(_claims(person, display_name)),
        parents=tuple(_parents(record, families_as_child[0] if families_as_child else None)),
        children=tuple(_children(record, families_as_parent, person.id)),
        url=FAMILYSEARCH_PERSON_URL.format(person_id=external_id),
        extra=extra,
    )


def _display_name(person: FamilySearchPerson) -> str | None:
    if person.display and person.display.name:
        return person.display.name
    return next((name.full_text for name in person.names if name.full_text), None)


def _birth_name(person: FamilySearchPerson, display_name: str | None) -> str | None:
    """Return the birth name only when the person is known by another name."""

    birth_names = [
        name.full_text
        for name in person.names
        if name.type == GEDCOMX_BIRTH_NAME and name.full_text
    ]
    if display_name in birth_names:
        return None
    return birth_names[0] if birth_names else None


def _gender(gender: GedcomxGender | None) -> Gender:
    if gender is None or gender.type is None:
        return Gender.UNKNOWN
    return _GENDERS.get(gender.type, Gender.UNKNOWN)


def _vitals(facts: Iterable[GedcomxFact]) -> Iterable[VitalFact]:
    seen: set[EventType] = set()
    for fact in facts:
        event_type = _VITAL_TYPES.get(fact.type or "")
        # One row per event type; the first fact listed is the preferred one.
        if event_type is None or event_type in seen:
            continue
        seen.add(event_type)
        date_original = fact.date.original if fact.date else None
        date_formal = fact.date.formal if fact.date else None
        yield VitalFact(
            event_type=event_type,
            date_original=date_original,
            date_formal=date_formal,
            year=_year(date_formal, date_original),
            place=fact.place.original if fact.place else None,
        )


def _claims(person: FamilySearchPerson, display_name: str | None) -> Iterable[ClaimFact]:
    seen: set[tuple[str, str]] = set()

    def claim(predicate: str, value: str | None) -> Iterable[ClaimFact]:
        if not value or (predicate, value) in seen:
            return
        seen.add((predicate, value))
        yield ClaimFact(predicate=predicate, value=value)

    for fact in person.facts:
        predicate = _CLAIM_TYPES.get(fact.type or "")
        if predicate is not None:
            yield from claim(predicate, fact.value)
        if _VITAL_TYPES.get(fact.type or "") is EventType.DEATH:
            for qualifier in fact.qualifiers:
                if qualifier.name in {GEDCOMX_CAUSE, "cause"}:
                    yield from claim("cause_of_death", qualifier.value)
    for name in person.names:
        if name.full_text is None or name.full_text == display_name:
            continue
        if name.type == GEDCOMX_ALSO_KNOWN_AS:
            yield from claim("alias", name.full_text)
        elif name.type == GEDCOMX_MARRIED_NAME:
            yield from claim("married_name", name.full_text)


def _year(date_formal: str | None, date_original: str | None) -> int | None:
    year = parse_year(date_formal)
    return year if year is not None else parse_year(date_original)


def _first_value(facts: Iterable[GedcomxFact], fact_type: str) -> str | None:
    return next((fact.value for fact in facts if fact.type == fact_type and fact.value), None)


def _parents(
    record: FamilySearchPersonRecord, family: DisplayFamily | None
) -> Iterable[RelativeRef]:
    if family is None:
        return
    # parent1 is the father and parent2 the mother unless the embedded person says otherwise.
    for reference, default_role in (
        (family.parent1, ParentRole.FATHER),
        (family.parent2, ParentRole.MOTHER),
    ):
        if reference is None or not reference.resource_id:
            continue
        yield _relative(record, reference, default_role)


def _children(
    record: FamilySearchPersonRecord,
    families: Iterable[DisplayFamily],
    person_id: str,
) -> Iterable[RelativeRef]:
    seen: set[str] = set()
    for family in families:
        for reference in family.children:
            child_id = reference.resource_id
            if not child_id or child_id == person_id or child_id in seen:
                continue
            seen.add(child_id)
            yield _relative(record, reference, ParentRole.PARENT)


def _relative(
    record: FamilySearchPersonRecord, reference: ResourceReference, default_role: ParentRole
) -> RelativeRef:
    external_id = reference.resource_id or ""
    embedded = record.person(external_id)
    if embedded is None:
        return RelativeRef(external_id=external_id, role=default_role)
    role = default_role
    if default_role is not ParentRole.PARENT:
        gender = _gender(embedded.gender)
        if gender is Gender.MALE:
            role = ParentRole.FATHER
        elif gender is Gender.FEMALE:
            role = ParentRole.MOTHER
    return RelativeRef(external_id=external_id, role=role, name=_display_name(embedded))


def _spouse_ids(families: Iterable[DisplayFamily], person_id: str) -> tuple[str, ...]:
    spouses: list[str] = []
    for family in families:
        for reference in (family.parent1, family.parent2):
            spouse_id = reference.resource_id if reference else None
            if spouse_id and spouse_id != person_id and spouse_id not in spouses:
                spouses.append(spouse_id)
    return tuple(spouses)


__all__ = ["FAMILYSEARCH_PERSON_URL", "transform_payload"]
