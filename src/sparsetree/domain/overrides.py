"""Layered field resolution: local override > normalized store > raw payload.

Overrides are keyed by ``(entity_type, entity_id, field_name)``. Person overrides use the
person id; vital-event and claim overrides use the event or claim id, so gathering every
override for a person first needs that person's event and claim ids.

Event overrides may be recorded under a generic field name (``date``, ``place``) or an
event-qualified one (``birth_date``, ``death_place``); projections accept both.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.errors import InvalidInputError, NotFoundError
from sparsetree.domain.model import (
    Claim,
    EntityType,
    EventType,
    Gender,
    LocalOverride,
    Source,
    VitalEvent,
    build_lifespan,
    new_canonical_id,
    parse_year,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sparsetree.domain.model import Person
    from sparsetree.domain.ports.unit_of_work import GraphRepositories, UnitOfWorkFactory

log = getLogger(__name__)

LOCAL_SOURCE = Source.LOCAL.value
CLAIM_VALUE_FIELD = "value_text"

_PERSON_FIELDS: dict[str, str] = {
    "name": "display_name",
    "display_name": "display_name",
    "birth_name": "birth_name",
    "gender": "gender",
    "bio": "bio",
}


def _event_field_aliases(event_type: EventType, generic: str) -> tuple[str, str]:
    return generic, f"{event_type.value}_{generic}"


@dataclass(slots=True, frozen=True)
class EffectiveValue:
    value: str | None
    is_overridden: bool
    override: LocalOverride | None = None


@dataclass(slots=True, frozen=True)
class PersonOverrides:
    person: tuple[LocalOverride, ...] = ()
    vital_events: tuple[LocalOverride, ...] = ()
    claims: tuple[LocalOverride, ...] = ()

    @property
    def total(self) -> int:
        return len(self.person) + len(self.vital_events) + len(self.claims)


@dataclass(slots=True, frozen=True)
class EventView:
    date: str | None = None
    place: str | None = None
    year: int | None = None


@dataclass(slots=True, frozen=True)
class EffectiveClaim:
    claim: Claim
    value: str
    is_overridden: bool
    override: LocalOverride | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class PersonView:
    """Read model of a person with every layer already resolved."""

    person_id: str
    display_name: str | None
    birth_name: str | None = None
    gender: Gender = Gender.UNKNOWN
    living: bool = False
    bio: str | None = None
    birth: EventView | None = None
    death: EventView | None = None
    lifespan: str = ""
    overridden_fields: frozenset[str] = field(default_factory=frozenset)


def person_view_from_store(person: Person, events: Iterable[VitalEvent]) -> PersonView:
    """Build the stored-layer view; provider events win over local ones per event type."""

    by_type: dict[EventType, VitalEvent] = {}
    for event in events:
        current = by_type.get(event.event_type)
        if current is None or (current.source == LOCAL_SOURCE and event.source != LOCAL_SOURCE):
            by_type[event.event_type] = event
    birth = _event_view(by_type.get(EventType.BIRTH))
    death = _event_view(by_type.get(EventType.DEATH))
    return PersonView(
        person_id=person.person_id,
        display_name=person.display_name,
        birth_name=person.birth_name,
        gender=person.gender,
        living=person.living,
        bio=person.bio,
        birth=birth,
        death=death,
        lifespan=build_lifespan(
            birth.year if birth else None,
            death.year if death else None,
        )
        or person.lifespan
        or "",
    )


def _event_view(event: VitalEvent | None) -> EventView | None:
    if event is None:
        return None
    return EventView(
        date=event.date_original or event.date_formal,
        place=event.place,
        year=event.date_year,
    )


def apply_overrides(
    view: PersonView,
    overrides: PersonOverrides,
    *,
    vital_event_types: Mapping[str, EventType],
    recompute_lifespan: bool = True,
) -> PersonView:
    """Overlay overrides onto ``view`` and return a new view; ``view`` is left untouched."""

    texts: dict[str, str] = {}
    gender = view.gender
    overridden: set[str] = set(view.overridden_fields)

    for override in overrides.person:
        attribute = _PERSON_FIELDS.get(override.field_name)
        if attribute is None or override.override_value is None:
            continue
        if attribute == "gender":
            try:
                gender = Gender(override.override_value.lower())
            except ValueError:
                log.warning(
                    "Ignoring gender override %r for %s", override.override_value, view.person_id
                )
                continue
        else:
            texts[attribute] = override.override_value
        overridden.add(attribute)

    events: dict[EventType, EventView | None] = {
        EventType.BIRTH: view.birth,
        EventType.DEATH: view.death,
    }
    for override in overrides.vital_events:
        event_type = vital_event_types.get(override.entity_id)
        if event_type not in events:
            continue
        current = events[event_type]
        updated = _overlay_event(current, event_type, override)
        if updated is not current:
            generic = override.field_name.removeprefix(f"{event_type.value}_")
            overridden.add(f"{event_type.value}.{generic}")
        events[event_type] = updated

    birth, death = events[EventType.BIRTH], events[EventType.DEATH]
    lifespan = view.lifespan
    if recompute_lifespan:
        lifespan = (
            build_lifespan(
                birth.year if birth else None,
                death.year if death else None,
            )
            or view.lifespan
        )
    return replace(
        view,
        display_name=texts.get("display_name", view.display_name),
        birth_name=texts.get("birth_name", view.birth_name),
        bio=texts.get("bio", view.bio),
        gender=gender,
        birth=birth,
        death=death,
        lifespan=lifespan,
        overridden_fields=frozenset(overridden),
    )


def _overlay_event(
    current: EventView | None, event_type: EventType, override: LocalOverride
) -> EventView | None:
    base = current or EventView()
    if override.field_name in _event_field_aliases(event_type, "date"):
        return replace(base, date=override.override_value, year=parse_year(override.override_value))
    if override.field_name in _event_field_aliases(event_type, "place"):
        return replace(base, place=override.override_value)
    return current


class OverrideResolver:
    """Store-backed operations on local overrides plus person projections."""

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        caches: CacheRegistry | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._caches = caches or CacheRegistry()

    def set_override(
        self,
        entity_type: EntityType,
        entity_id: str,
        field_name: str,
        value: str | None,
        original_value: str | None = None,
        *,
        reason: str | None = None,
        source: str = LOCAL_SOURCE,
    ) -> LocalOverride:
        """Create or update an override; the first recorded ``original_value`` is kept."""

        if not entity_id or not field_name:
            raise InvalidInputError("An override needs an entity id and a field name")
        with self._uow_factory() as uow:
            stored = uow.repositories.overrides.upsert(
                LocalOverride(
                    entity_type=EntityType(entity_type),
                    entity_id=entity_id,
                    field_name=field_name,
                    original_value=original_value,
                    override_value=value,
                    reason=reason,
                    source=source,
                )
            )
            owner = _owner_person_id(uow.repositories, stored.entity_type, entity_id)
            uow.commit()
        self._invalidate(owner)
        log.info("Override set on %s %s.%s", entity_type, entity_id, field_name)
        return stored

    def get_override(
        self, entity_type: EntityType, entity_id: str, field_name: str
    ) -> LocalOverride | None:
        with self._uow_factory() as uow:
            return uow.repositories.overrides.get(entity_type, entity_id, field_name)

    def has_override(self, entity_type: EntityType, entity_id: str, field_name: str) -> bool:
        return self.get_override(entity_type, entity_id, field_name) is not None

    def get_overrides_for_entity(
        self, entity_type: EntityType, entity_id: str
    ) -> list[LocalOverride]:
        with self._uow_factory() as uow:
            return uow.repositories.overrides.for_entities(entity_type, (entity_id,))

    def get_effective_value(
        self,
        entity_type: EntityType,
        entity_id: str,
        field_name: str,
        stored_value: str | None,
    ) -> EffectiveValue:
        override = self.get_override(entity_type, entity_id, field_name)
        if override is None:
            return EffectiveValue(value=stored_value, is_overridden=False)
        return EffectiveValue(value=override.override_value, is_overridden=True, override=override)

    def remove_override(self, entity_type: EntityType, entity_id: str, field_name: str) -> bool:
        with self._uow_factory() as uow:
            removed = uow.repositories.overrides.delete(entity_type, entity_id, field_name)
            owner = _owner_person_id(uow.repositories, EntityType(entity_type), entity_id)
            uow.commit()
        if removed:
            self._invalidate(owner)
        return removed

    def get_all_overrides_for_person(self, person_id: str) -> PersonOverrides:
        with self._uow_factory() as uow:
            overrides, _ = _load_person_overrides(uow.repositories, person_id)
        return overrides

    def list_overrides(self, *, limit: int = 100, offset: int = 0) -> list[LocalOverride]:
        with self._uow_factory() as uow:
            return uow.repositories.overrides.page(limit=limit, offset=offset)

    def count_overrides(self) -> int:
        with self._uow_factory() as uow:
            return uow.repositories.overrides.count()

    def get_effective_person(
        self, person_id: str, *, recompute_lifespan: bool = True
    ) -> PersonView:
        key = f"person:{person_id}:view:{int(recompute_lifespan)}"
        cached = self._caches.person.get(key)
        if isinstance(cached, PersonView):
            return cached
        with self._uow_factory() as uow:
            repos = uow.repositories
            person = repos.persons.get(person_id)
            if person is None:
                raise NotFoundError(f"Unknown person: {person_id}")
            overrides, events = _load_person_overrides(repos, person_id)
        view = apply_overrides(
            person_view_from_store(person, events),
            overrides,
            vital_event_types={event.event_id: event.event_type for event in events},
            recompute_lifespan=recompute_lifespan,
        )
        self._caches.person.set(key, view)
        return view

    def mark_no_known_parents(self, person_id: str, value: bool = True) -> None:
        """Flag a person whose parents are genuinely unknown so gap audits skip them."""

        with self._uow_factory() as uow:
            if not uow.repositories.persons.set_no_known_parents(person_id, value):
                raise NotFoundError(f"Unknown person: {person_id}")
            uow.commit()
        self._invalidate(person_id)

    def ensure_vital_event(self, person_id: str, event_type: EventType) -> str:
        """Return the id of the person's event of this type, creating a local one if absent."""

        with self._uow_factory() as uow:
            repos = uow.repositories
            if repos.persons.get(person_id) is None:
                raise NotFoundError(f"Unknown person: {person_id}")
            existing = [
                event for event in repos.vital_events.for_person(person_id)
                if event.event_type is event_type
            ]
            if existing:
                provider_events = [event for event in existing if event.source != LOCAL_SOURCE]
                return (provider_events or existing)[0].event_id
            event_id = repos.vital_events.upsert(
                VitalEvent(
                    event_id=new_canonical_id(),
                    person_id=person_id,
                    event_type=event_type,
                    source=LOCAL_SOURCE,
                )
            )
            uow.commit()
        self._invalidate(person_id)
        return event_id

    def add_claim(self, person_id: str, predicate: str, value: str) -> Claim:
        if not predicate or not value:
            raise InvalidInputError("A claim needs a predicate and a value")
        with self._uow_factory() as uow:
            repos = uow.repositories
            if repos.persons.get(person_id) is None:
                raise NotFoundError(f"Unknown person: {person_id}")
            claim_id = repos.claims.add_if_absent(
                Claim(
                    claim_id=new_canonical_id(),
                    person_id=person_id,
                    predicate=predicate,
                    value=value,
                    source=LOCAL_SOURCE,
                )
            )
            repos.persons.index_text(person_id)
            uow.commit()
        self._invalidate(person_id)
        return Claim(
            claim_id=claim_id,
            person_id=person_id,
            predicate=predicate,
            value=value,
            source=LOCAL_SOURCE,
        )

    def update_claim(self, claim_id: str, value: str) -> Claim:
        """Edit a locally entered claim in place; provider claims are corrected by override."""

        with self._uow_factory() as uow:
            repos = uow.repositories
            claim = repos.claims.get(claim_id)
            if claim is None:
                raise NotFoundError(f"Unknown claim: {claim_id}")
            if claim.source != LOCAL_SOURCE:
                raise InvalidInputError(
                    f"Claim {claim_id} comes from {claim.source}; set an override instead"
                )
            repos.claims.update_value(claim_id, value)
            repos.persons.index_text(claim.person_id)
            uow.commit()
        self._invalidate(claim.person_id)
        return replace(claim, value=value)

    def delete_claim(self, claim_id: str) -> bool:
        with self._uow_factory() as uow:
            repos = uow.repositories
            claim = repos.claims.get(claim_id)
            if claim is None:
                return False
            repos.overrides.delete_for_entity(EntityType.CLAIM, claim_id)
            repos.claims.delete(claim_id)
            repos.persons.index_text(claim.person_id)
            uow.commit()
        self._invalidate(claim.person_id)
        return True

    def get_claims_for_person(self, person_id: str) -> list[EffectiveClaim]:
        with self._uow_factory() as uow:
            repos = uow.repositories
            claims = repos.claims.for_person(person_id)
            overrides = repos.overrides.for_entities(
                EntityType.CLAIM, (claim.claim_id for claim in claims)
            )
        by_claim = {
            override.entity_id: override
            for override in overrides
            if override.field_name == CLAIM_VALUE_FIELD
        }
        effective: list[EffectiveClaim] = []
        for claim in claims:
            override = by_claim.get(claim.claim_id)
            if override is not None and override.override_value is not None:
                effective.append(
                    EffectiveClaim(
                        claim=claim,
                        value=override.override_value,
                        is_overridden=True,
                        override=override,
                    )
                )
            else:
                effective.append(
                    EffectiveClaim(claim=claim, value=claim.value, is_overridden=False)
                )
        return effective

    def _invalidate(self, person_id: str | None) -> None:
        if person_id is None:
            return
        with self._uow_factory() as uow:
            graphs = uow.repositories.databases.graphs_of(person_id)
        self._caches.invalidate_person(person_id, graphs=graphs)


def _load_person_overrides(
    repos: GraphRepositories, person_id: str
) -> tuple[PersonOverrides, list[VitalEvent]]:
    events = repos.vital_events.for_person(person_id)
    claims = repos.claims.for_person(person_id)
    overrides = PersonOverrides(
        person=tuple(repos.overrides.for_entities(EntityType.PERSON, (person_id,))),
        vital_events=tuple(
            repos.overrides.for_entities(
                EntityType.VITAL_EVENT, (event.event_id for event in events)
            )
        ),
        claims=tuple(
            repos.overrides.for_entities(EntityType.CLAIM, (claim.claim_id for claim in claims))
        ),
    )
    return overrides, events


def _owner_person_id(
    repos: GraphRepositories, entity_type: EntityType, entity_id: str
) -> str | None:
    if entity_type is EntityType.PERSON:
        return entity_id
    if entity_type is EntityType.VITAL_EVENT:
        event = repos.vital_events.get(entity_id)
        return event.person_id if event else None
    claim = repos.claims.get(entity_id)
    return claim.person_id if claim else None

