"""SQLAlchemy adapter package for sparsetree."""

from __future__ import annotations

from .mappings import create_all_tables, metadata
from .repositories import (
    SqlAlchemyAuditRepository,
    SqlAlchemyClaimRepository,
    SqlAlchemyExternalIdentityRepository,
    SqlAlchemyGraphDatabaseRepository,
    SqlAlchemyOverrideRepository,
    SqlAlchemyParentEdgeRepository,
    SqlAlchemyPersonRepository,
    SqlAlchemyRawPayloadRepository,
    SqlAlchemyVitalEventRepository,
)
from .unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyAuditRepository",
    "SqlAlchemyClaimRepository",
    "SqlAlchemyExternalIdentityRepository",
    "SqlAlchemyGraphDatabaseRepository",
    "SqlAlchemyOverrideRepository",
    "SqlAlchemyParentEdgeRepository",
    "SqlAlchemyPersonRepository",
    "SqlAlchemyRawPayloadRepository",
    "SqlAlchemyUnitOfWork",
    "SqlAlchemyVitalEventRepository",
    "StartupError",
    "configured_engine",
    "create_all_tables",
    "is_started",
    "metadata",
    "shutdown",
    "startup",
]
