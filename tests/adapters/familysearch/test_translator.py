from __future__ import annotations

from datetime import UTC, datetime

import pytest

from sparsetree.adapters.familysearch import transform_payload
from sparsetree.adapters.familysearch.translator import FAMILYSEARCH_PERSON_URL
from sparsetree.domain.model import (
    ClaimFact,
    EventType,
    Gender,
    ParentRole,
    RawPayload,
    RelativeRef,
    Source,
)
from tests.helpers.family import GEDCOMX_FEMALE, person_payload

FamilySearchPayload = dict[str, object]


def _raw(body: FamilySearchPayload, external_id: str) -> RawPayload:
    return RawPayload(
        source=Source.FAMILYSEARCH,
        external_id=external_id,
        payload=body,
        fetched_at=datetime(2025, 6, 1, tzinfo=UTC),
    )


def test_transform_payload_reads_person_attributes(person_record: RawPayload) -> None:
    record = transform_payload(person_record)

    assert record.external_id == "KWQS-BBQ"
    assert record.person.display_name == "John Smith"
    assert record.person.birth_name is None
    assert record.person.gender is Gender.MALE
    assert record.person.living is False
    assert record.person.lifespan == "1850-1920"
    assert record.person.bio is not None
    assert record.person.bio.startswith("Farmed the family land")
    assert record.url == FAMILYSEARCH_PERSON_URL.format(person_id="KWQS-BBQ")


def test_transform_payload_keeps_first_fact_per_event(person_record: RawPayload) -> None:
    record = transform_payload(person_record)

    vitals = {fact.event_type: fact for fact in record.vitals}
    assert set(vitals) == {EventType.BIRTH, EventType.DEATH}
    birth = vitals[EventType.BIRTH]
    assert birth.year == 1850
    assert birth.date_original == "3 March 1850"
    assert birth.date_formal == "+1850-03-03"
    assert birth.place == "Columbus, Franklin, Ohio, United States"
    assert vitals[EventType.DEATH].year == 1920


def test_transform_payload_collects_claims(person_record: RawPayload) -> None:
    record = transform_payload(person_record)

    assert record.claims == (
        ClaimFact(predicate="cause_of_death", value="Pneumonia"),
        ClaimFact(predicate="occupation", value="Farmer"),
        ClaimFact(predicate="alias", value="Jack Smith"),
    )


def test_transform_payload_links_relatives(person_record: RawPayload) -> None:
    record = transform_payload(person_record)

    assert record.parents == (
        RelativeRef(external_id="KWQ1-AAA", role=ParentRole.FATHER),
        RelativeRef(external_id="KWQ2-BBB", role=ParentRole.MOTHER, name="Mary Jones"),
    )
    assert [child.external_id for child in record.children] == ["KWQ4-DDD", "KWQ5-EEE"]
    assert all(child.role is ParentRole.PARENT for child in record.children)
    assert record.extra == {"spouses": ("KWQ3-CCC",)}


def test_embedded_gender_overrides_parent_slot() -> None:
    mother = person_payload("P1", "Eva Holm", gender=GEDCOMX_FEMALE)
    body = person_payload("C", "Carl Holm", father="P1", embedded=[mother])

    record = transform_payload(_raw(body, "C"))

    assert record.parents == (
        RelativeRef(external_id="P1", role=ParentRole.MOTHER, name="Eva Holm"),
    )


def test_merged_person_keeps_requested_id(person_body: FamilySearchPayload) -> None:
    record = transform_payload(_raw(person_body, "OLD-ID"))

    assert record.external_id == "OLD-ID"
    assert record.extra["resolved_id"] == "KWQS-BBQ"
    assert record.url == FAMILYSEARCH_PERSON_URL.format(person_id="OLD-ID")


def test_lifespan_is_built_from_vitals() -> None:
    body = person_payload("C", birth_year=1900)

    record = transform_payload(_raw(body, "C"))

    assert record.person.lifespan == "1900-"
    assert record.person.display_name == "Person C"


def test_birth_name_differs_from_display_name() -> None:
    body = person_payload("C", "Anna Berg")
    body["persons"][0]["display"]["name"] = "Anna Holm"  # type: ignore[index]

    record = transform_payload(_raw(body, "C"))

    assert record.person.display_name == "Anna Holm"
    assert record.person.birth_name == "Anna Berg"


def test_payload_without_persons_is_rejected() -> None:
    with pytest.raises(ValueError, match="persons"):
        transform_payload(_raw({"persons": []}, "C"))
