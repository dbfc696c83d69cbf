"""Domain model for the genealogy graph."""

from __future__ import annotations

from .dates import build_lifespan, parse_year
from .entities import (
    Claim,
    ClaimFact,
    DatabaseInfo,
    DatabaseMembership,
    ExternalIdentity,
    LocalOverride,
    ParentEdge,
    Person,
    PersonAttributes,
    RawPayload,
    RelativeRef,
    TransformedRecord,
    VitalEvent,
    VitalFact,
)
from .enums import (
    AUDITED_SOURCES,
    PROVIDER_SOURCES,
    CacheMode,
    CrawlDirection,
    EntityType,
    EventType,
    Gender,
    JobKind,
    JobStatus,
    ParentRole,
    Source,
)
from .ids import is_canonical_id, new_canonical_id

__all__ = [
    "AUDITED_SOURCES",
    "PROVIDER_SOURCES",
    "CacheMode",
    "Claim",
    "ClaimFact",
    "CrawlDirection",
    "DatabaseInfo",
    "DatabaseMembership",
    "EntityType",
    "EventType",
    "ExternalIdentity",
    "Gender",
    "JobKind",
    "JobStatus",
    "LocalOverride",
    "ParentEdge",
    "ParentRole",
    "Person",
    "PersonAttributes",
    "RawPayload",
    "RelativeRef",
    "Source",
    "TransformedRecord",
    "VitalEvent",
    "VitalFact",
    "build_lifespan",
    "is_canonical_id",
    "new_canonical_id",
    "parse_year",
]
