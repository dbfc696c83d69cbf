"""FamilySearch (GEDCOM-X) person response schemas."""

from __future__ import annotations

import logging
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger(__name__)

type FSPersonId = str  # e.g. KWQS-BBQ
type GedcomxUri = str  # e.g. http://gedcomx.org/Birth

GEDCOMX_MALE = "http://gedcomx.org/Male"
GEDCOMX_FEMALE = "http://gedcomx.org/Female"
GEDCOMX_BIRTH_NAME = "http://gedcomx.org/BirthName"
GEDCOMX_ALSO_KNOWN_AS = "http://gedcomx.org/AlsoKnownAs"
GEDCOMX_MARRIED_NAME = "http://gedcomx.org/MarriedName"
FAMILYSEARCH_LIFE_SKETCH = "http://familysearch.org/v1/LifeSketch"
GEDCOMX_CAUSE = "http://gedcomx.org/Cause"


class FamilySearchBaseModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)
    _logged_extra_keys: ClassVar[set[str]] = set()

    def model_post_init(self, _context: object, /) -> None:
        extras = self.__pydantic_extra__
        if not extras:
            return
        new_keys = set(extras).difference(self._logged_extra_keys)
        if not new_keys:
            return
        self._logged_extra_keys.update(new_keys)
        log.debug(
            "FamilySearch %s: unmodeled keys: %s",
            type(self).__name__,
            ", ".join(sorted(new_keys)),
        )


class GedcomxDate(FamilySearchBaseModel):
    original: str | None = None
    formal: str | None = None


class GedcomxPlace(FamilySearchBaseModel):
    original: str | None = None


class GedcomxQualifier(FamilySearchBaseModel):
    name: GedcomxUri
    value: str | None = None


class GedcomxFact(FamilySearchBaseModel):
    id: str | None = None
    type: GedcomxUri | None = None
    value: str | None = None
    date: GedcomxDate | None = None
    place: GedcomxPlace | None = None
    primary: bool | None = None
    qualifiers: list[GedcomxQualifier] = Field(default_factory=list)


class GedcomxNameForm(FamilySearchBaseModel):
    full_text: str | None = Field(default=None, alias="fullText")


class GedcomxName(FamilySearchBaseModel):
    type: GedcomxUri | None = None
    preferred: bool | None = None
    name_forms: list[GedcomxNameForm] = Field(default_factory=list, alias="nameForms")

    @property
    def full_text(self) -> str | None:
        return next((form.full_text for form in self.name_forms if form.full_text), None)


class GedcomxGender(FamilySearchBaseModel):
    type: GedcomxUri | None = None


class ResourceReference(FamilySearchBaseModel):
    resource_id: FSPersonId | None = Field(default=None, alias="resourceId")
    resource: str | None = None


class DisplayFamily(FamilySearchBaseModel):
    parent1: ResourceReference | None = None
    parent2: ResourceReference | None = None
    children: list[ResourceReference] = Field(default_factory=list)


class PersonDisplay(FamilySearchBaseModel):
    name: str | None = None
    gender: str | None = None
    lifespan: str | None = None
    birth_date: str | None = Field(default=None, alias="birthDate")
    birth_place: str | None = Field(default=None, alias="birthPlace")
    death_date: str | None = Field(default=None, alias="deathDate")
    death_place: str | None = Field(default=None, alias="deathPlace")
    families_as_child: list[DisplayFamily] = Field(default_factory=list, alias="familiesAsChild")
    families_as_parent: list[DisplayFamily] = Field(
        default_factory=list, alias="familiesAsParent"
    )


class FamilySearchPerson(FamilySearchBaseModel):
    id: FSPersonId
    living: bool = False
    gender: GedcomxGender | None = None
    names: list[GedcomxName] = Field(default_factory=list)
    facts: list[GedcomxFact] = Field(default_factory=list)
    display: PersonDisplay | None = None


class FamilySearchPersonRecord(FamilySearchBaseModel):
    """Response of ``GET /platform/tree/persons/{id}``; the requested person comes first."""

    persons: list[FamilySearchPerson] = Field(min_length=1)

    @property
    def subject(self) -> FamilySearchPerson:
        return self.persons[0]

    def person(self, person_id: str) -> FamilySearchPerson | None:
        return next((person for person in self.persons if person.id == person_id), None)
