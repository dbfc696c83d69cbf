"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from .audit import AuditRepository
    from .persistence import (
        ClaimRepository,
        ExternalIdentityRepository,
        GraphDatabaseRepository,
        OverrideRepository,
        ParentEdgeRepository,
        PersonRepository,
        RawPayloadRepository,
        VitalEventRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class GraphRepositories(RepositoryCollection):
    """Repositories backing every engine component."""

    persons: PersonRepository
    identities: ExternalIdentityRepository
    vital_events: VitalEventRepository
    claims: ClaimRepository
    parent_edges: ParentEdgeRepository
    overrides: OverrideRepository
    payloads: RawPayloadRepository
    databases: GraphDatabaseRepository
    audit: AuditRepository


type GraphUnitOfWork = UnitOfWork[GraphRepositories]
type UnitOfWorkFactory = Callable[[], GraphUnitOfWork]
