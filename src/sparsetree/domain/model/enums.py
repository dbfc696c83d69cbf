"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class Source(StrEnum):
    FAMILYSEARCH = "familysearch"
    ANCESTRY = "ancestry"
    WIKITREE = "wikitree"
    GENI = "geni"
    TWENTY_THREE_AND_ME = "23andme"
    LOCAL = "local"


# Order matters: identifiers that are not canonical are tried against these in turn.
PROVIDER_SOURCES: tuple[Source, ...] = (
    Source.FAMILYSEARCH,
    Source.ANCESTRY,
    Source.WIKITREE,
    Source.GENI,
    Source.TWENTY_THREE_AND_ME,
)

# Providers whose coverage is audited by default.
AUDITED_SOURCES: tuple[Source, ...] = (
    Source.FAMILYSEARCH,
    Source.ANCESTRY,
    Source.WIKITREE,
    Source.TWENTY_THREE_AND_ME,
)


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class EventType(StrEnum):
    BIRTH = "birth"
    DEATH = "death"
    BURIAL = "burial"
    CHRISTENING = "christening"
    MARRIAGE = "marriage"
    DIVORCE = "divorce"


class ParentRole(StrEnum):
    FATHER = "father"
    MOTHER = "mother"
    PARENT = "parent"


class EntityType(StrEnum):
    """Discriminator for the entity a local override targets."""

    PERSON = "person"
    VITAL_EVENT = "vital_event"
    CLAIM = "claim"


class CacheMode(StrEnum):
    PREFER_CACHE = "prefer-cache"
    PREFER_COMPLETE = "prefer-complete"
    FORCE_NETWORK = "force-network"
    CACHE_ONLY = "cache-only"


class CrawlDirection(StrEnum):
    ANCESTORS = "ancestors"
    DESCENDANTS = "descendants"
    BOTH = "both"


class JobStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


class JobKind(StrEnum):
    INDEX = "index"
    DISCOVERY = "discovery"
