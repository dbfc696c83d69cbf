"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import PayloadTransformer, PersonRecordFetcher
from .progress import (
    CollectingProgressSink,
    NullProgressSink,
    ProgressEvent,
    ProgressPhase,
    ProgressSink,
)
from .unit_of_work import (
    GraphRepositories,
    GraphUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "CollectingProgressSink",
    "GraphRepositories",
    "GraphUnitOfWork",
    "NullProgressSink",
    "PayloadTransformer",
    "PersonRecordFetcher",
    "ProgressEvent",
    "ProgressPhase",
    "ProgressSink",
    "RepositoryCollection",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
