"""Read-only graph queries over a stored database."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.cache import CacheRegistry, graph_prefix, make_key
from sparsetree.domain.errors import InvalidInputError, NotFoundError
from sparsetree.domain.model import CrawlDirection

from .adjacency import AdjacencyEntry, build_adjacency
from .paths import longest_path, random_path, shortest_path
from .tree import Relative, TreeNode, collect_relatives, materialize_tree

if TYPE_CHECKING:
    from sparsetree.domain.errors import IntegrityViolation
    from sparsetree.domain.identity import IdentityResolver
    from sparsetree.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)


class PathMethod(StrEnum):
    SHORTEST = "shortest"
    LONGEST = "longest"
    RANDOM = "random"


@dataclass(slots=True, frozen=True)
class PathResult:
    method: PathMethod
    source: str
    target: str
    path: tuple[str, ...]
    cycles: tuple[IntegrityViolation, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.path)


class GraphQueryService:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        identity: IdentityResolver,
        *,
        caches: CacheRegistry | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._identity = identity
        self._caches = caches or CacheRegistry()
        self._rng = rng

    def adjacency(self, db_id: str) -> dict[str, AdjacencyEntry]:
        """Snapshot of the graph's parent/child relations, cached until the graph changes."""

        key = f"{graph_prefix(db_id)}adjacency"
        cached = self._caches.query.get(key)
        if isinstance(cached, dict):
            return cached
        with self._uow_factory() as uow:
            repos = uow.repositories
            if repos.databases.get_info(db_id) is None:
                raise NotFoundError(f"Unknown database: {db_id}")
            members = [member.person_id for member in repos.databases.members(db_id)]
            edges = repos.parent_edges.for_graph(db_id)
        adjacency = build_adjacency(edges, nodes=members)
        self._caches.query.set(key, adjacency)
        log.debug("Built adjacency for %s: %d nodes, %d edges", db_id, len(adjacency), len(edges))
        return adjacency

    def find_path(
        self,
        db_id: str,
        source: str,
        target: str,
        method: PathMethod | str = PathMethod.SHORTEST,
    ) -> PathResult:
        """Find a descent path from ``source`` down to ``target``.

        Both ends accept canonical or provider ids.
        """

        try:
            method = PathMethod(method)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown path method: {method}") from exc
        source_id = self._identity.require_id(source)
        target_id = self._identity.require_id(target)

        key = graph_prefix(db_id) + make_key(
            "path", {"method": method.value, "source": source_id, "target": target_id}
        )
        if method is not PathMethod.RANDOM:
            cached = self._caches.query.get(key)
            if isinstance(cached, PathResult):
                return cached

        graph = self.adjacency(db_id)
        cycles: tuple[IntegrityViolation, ...] = ()
        match method:
            case PathMethod.SHORTEST:
                path = shortest_path(graph, source_id, target_id)
            case PathMethod.LONGEST:
                outcome = longest_path(graph, source_id, target_id)
                path, cycles = outcome.path, outcome.cycles
            case PathMethod.RANDOM:
                path = random_path(graph, source_id, target_id, rng=self._rng)

        result = PathResult(
            method=method,
            source=source_id,
            target=target_id,
            path=tuple(path),
            cycles=cycles,
        )
        if method is not PathMethod.RANDOM:
            self._caches.query.set(key, result)
        return result

    def ancestors(self, db_id: str, person: str, *, max_depth: int | None = None) -> list[Relative]:
        person_id = self._identity.require_id(person)
        return collect_relatives(
            self.adjacency(db_id),
            person_id,
            direction=CrawlDirection.ANCESTORS,
            max_depth=max_depth,
        )

    def descendants(
        self, db_id: str, person: str, *, max_depth: int | None = None
    ) -> list[Relative]:
        person_id = self._identity.require_id(person)
        return collect_relatives(
            self.adjacency(db_id),
            person_id,
            direction=CrawlDirection.DESCENDANTS,
            max_depth=max_depth,
        )

    def tree(
        self,
        db_id: str,
        person: str,
        *,
        direction: CrawlDirection = CrawlDirection.ANCESTORS,
        max_depth: int = 4,
    ) -> TreeNode:
        if max_depth < 0:
            raise InvalidInputError("max_depth must not be negative")
        person_id = self._identity.require_id(person)
        return materialize_tree(
            self.adjacency(db_id), person_id, direction=direction, max_depth=max_depth
        )
