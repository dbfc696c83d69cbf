"""Error taxonomy shared by every engine component.

Exceptions are raised inside the engine and translated into structured results at the
application boundary (see :mod:`sparsetree.app`). Integrity problems are not exceptions:
they are collected as :class:`IntegrityViolation` values and reported alongside results.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class GraphEngineError(RuntimeError):
    """Base class for engine failures that callers are expected to handle."""


class NotFoundError(GraphEngineError):
    """Raised for unknown persons, jobs, overrides or claims."""


class ConflictError(GraphEngineError):
    """Raised when a job is already running or a unique key is claimed by another row."""


class InvalidInputError(GraphEngineError):
    """Raised for missing roots, bad generation bounds and similar caller mistakes."""


class UpstreamFetchError(GraphEngineError):
    """Wraps a provider-client failure for a single record."""

    def __init__(self, message: str, *, source: str, external_id: str) -> None:
        super().__init__(message)
        self.source = source
        self.external_id = external_id


class StorageError(GraphEngineError):
    """Raised when the store is unavailable; fatal to the active job."""


class ViolationKind(StrEnum):
    CYCLE = "cycle"
    ORPHANED_EDGE = "orphaned_edge"


@dataclass(frozen=True, slots=True)
class IntegrityViolation:
    kind: ViolationKind
    message: str
    entity_ids: tuple[str, ...] = ()
