"""SQLAlchemy table metadata for the genealogy graph store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
    func,
)

from sparsetree.domain.model import EntityType, EventType, Gender, ParentRole

if TYPE_CHECKING:
    from enum import StrEnum

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

CANONICAL_ID_LENGTH = 26


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _value_enum(enum_cls: type[StrEnum]) -> Enum:
    # Store the enum values ("father"), not member names, so raw SQL stays readable.
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
    )


def _person_fk(*, nullable: bool = False) -> Column[str]:
    return Column(
        "person_id",
        String(CANONICAL_ID_LENGTH),
        ForeignKey("person.person_id", ondelete="CASCADE"),
        nullable=nullable,
    )


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Core tables -----------------------------------------------------------------

person_table = Table(
    "person",
    metadata,
    Column("person_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    Column("display_name", String, nullable=True),
    Column("birth_name", String, nullable=True),
    Column("gender", _value_enum(Gender), nullable=False, default=Gender.UNKNOWN),
    Column("living", Boolean, nullable=False, default=False),
    Column("bio", Text, nullable=True),
    Column("lifespan", String, nullable=True),
    Column("no_known_parents", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime(), nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime(), nullable=False, server_default=func.now()),
)

external_identity_table = Table(
    "external_identity",
    metadata,
    Column("identity_id", Integer, primary_key=True, autoincrement=True),
    _person_fk(),
    Column("source", String, nullable=False),
    Column("external_id", String, nullable=False),
    Column("url", String, nullable=True),
    Column("confidence", Float, nullable=False, default=1.0),
    Column("last_seen_at", UTCDateTime(), nullable=True),
    UniqueConstraint("source", "external_id", name="uq_external_identity_key"),
    UniqueConstraint("person_id", "source", name="uq_external_identity_person_source"),
)

vital_event_table = Table(
    "vital_event",
    metadata,
    Column("event_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    _person_fk(),
    Column("event_type", _value_enum(EventType), nullable=False),
    Column("date_original", String, nullable=True),
    Column("date_formal", String, nullable=True),
    Column("date_year", Integer, nullable=True),
    Column("place", String, nullable=True),
    Column("source", String, nullable=False),
    UniqueConstraint("person_id", "event_type", "source", name="uq_vital_event_key"),
)

claim_table = Table(
    "claim",
    metadata,
    Column("claim_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    _person_fk(),
    Column("predicate", String, nullable=False),
    Column("value_text", Text, nullable=False),
    Column("source", String, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False, server_default=func.now()),
    UniqueConstraint("person_id", "predicate", "value_text", "source", name="uq_claim_value"),
    Index("ix_claim_person", "person_id"),
)

# Edges may outlive either endpoint after pruning, so no foreign keys here.
parent_edge_table = Table(
    "parent_edge",
    metadata,
    Column("edge_id", Integer, primary_key=True, autoincrement=True),
    Column("child_id", String(CANONICAL_ID_LENGTH), nullable=False),
    Column("parent_id", String(CANONICAL_ID_LENGTH), nullable=False),
    Column("parent_role", _value_enum(ParentRole), nullable=False, default=ParentRole.PARENT),
    Column("source", String, nullable=True),
    Column("confidence", Float, nullable=False, default=1.0),
    UniqueConstraint("child_id", "parent_id", name="uq_parent_edge_pair"),
    Index("ix_parent_edge_parent", "parent_id"),
)

local_override_table = Table(
    "local_override",
    metadata,
    Column("override_id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", _value_enum(EntityType), nullable=False),
    Column("entity_id", String, nullable=False),
    Column("field_name", String, nullable=False),
    Column("original_value", Text, nullable=True),
    Column("override_value", Text, nullable=True),
    Column("reason", Text, nullable=True),
    Column("source", String, nullable=False, default="local"),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    UniqueConstraint("entity_type", "entity_id", "field_name", name="uq_local_override_key"),
)

raw_payload_table = Table(
    "raw_payload",
    metadata,
    Column("payload_id", Integer, primary_key=True, autoincrement=True),
    Column("source", String, nullable=False),
    Column("external_id", String, nullable=False),
    Column("payload", JSON, nullable=False),
    Column("fetched_at", UTCDateTime(), nullable=False),
    Index("ix_raw_payload_key", "source", "external_id", "fetched_at"),
)

database_membership_table = Table(
    "database_membership",
    metadata,
    Column("db_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    Column("person_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    Column("generation", Integer, nullable=False),
    Column("is_root", Boolean, nullable=False, default=False),
    Column("is_frontier", Boolean, nullable=False, default=False),
)

database_info_table = Table(
    "database_info",
    metadata,
    Column("db_id", String(CANONICAL_ID_LENGTH), primary_key=True),
    Column("root_id", String(CANONICAL_ID_LENGTH), nullable=False),
    Column("root_name", String, nullable=True),
    Column("source", String, nullable=False),
    Column("max_generations", Integer, nullable=False),
    Column("person_count", Integer, nullable=False, default=0),
    Column("updated_at", UTCDateTime(), nullable=False),
)

# Full-text index over names, bio and claim values; person_id links back to person.
PERSON_FTS_TABLE = "person_fts"

event.listen(
    metadata,
    "after_create",
    DDL(
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {PERSON_FTS_TABLE} USING fts5("
        "person_id UNINDEXED, display_name, birth_name, bio, claims)"
    ).execute_if(dialect="sqlite"),
)


def create_all_tables(engine: Engine) -> None:
    """Create all tables (and the SQLite search index) if they do not exist."""

    metadata.create_all(engine)
    log.debug("Ensured graph tables on %s", engine.url)


__all__ = [
    "PERSON_FTS_TABLE",
    "UTCDateTime",
    "claim_table",
    "create_all_tables",
    "database_info_table",
    "database_membership_table",
    "external_identity_table",
    "local_override_table",
    "metadata",
    "parent_edge_table",
    "person_table",
    "raw_payload_table",
    "vital_event_table",
]
