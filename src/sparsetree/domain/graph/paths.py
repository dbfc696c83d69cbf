"""Path search over an adjacency snapshot.

All searches follow the ``children`` relation and never touch the store.
"""

from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.errors import IntegrityViolation, ViolationKind

if TYPE_CHECKING:
    from .adjacency import Adjacency

log = getLogger(__name__)

DEFAULT_RANDOM_STEP_BUDGET = 10_000


@dataclass(slots=True, frozen=True)
class LongestPath:
    path: list[str]
    cycles: tuple[IntegrityViolation, ...] = ()


def _children(graph: Adjacency, node: str) -> list[str]:
    entry = graph.get(node)
    return entry.children if entry is not None else []


def shortest_path(graph: Adjacency, source: str, target: str) -> list[str]:
    """Breadth-first search; ties resolve in child-list order. Empty when unreachable."""

    if source not in graph:
        return []
    predecessors: dict[str, str | None] = {source: None}
    queue: deque[str] = deque([source])
    while queue:
        node = queue.popleft()
        if node == target:
            path = [node]
            while (previous := predecessors[path[-1]]) is not None:
                path.append(previous)
            path.reverse()
            return path
        for child in _children(graph, node):
            if child not in predecessors:
                predecessors[child] = node
                queue.append(child)
    return []


def longest_path(graph: Adjacency, source: str, target: str) -> LongestPath:
    """Longest simple path from ``source`` to ``target``.

    Full path prefixes are queued. A node is queued again only along a path longer than
    the deepest one it was queued with before. Stepping onto a node already in the
    current prefix means the parent/child data is cyclic: the cycle is reported and that
    branch is dropped. The target itself is expanded too so that cycles running back
    through it are reported.
    """

    longest: list[str] = []
    cycles: list[IntegrityViolation] = []
    seen_cycles: set[tuple[str, ...]] = set()
    depth: dict[str, int] = {source: 0}
    queue: deque[list[str]] = deque([[source]])

    while queue:
        path = queue.popleft()
        node = path[-1]
        if node == target and len(path) > len(longest):
            longest = path
        for child in _children(graph, node):
            if child in path:
                chain = (*path[path.index(child) :], child)
                if chain not in seen_cycles:
                    seen_cycles.add(chain)
                    cycles.append(_cycle_violation(chain))
                continue
            if depth.get(child, 0) < len(path):
                depth[child] = len(path)
                queue.append([*path, child])

    return LongestPath(path=longest, cycles=tuple(cycles))


def _cycle_violation(chain: tuple[str, ...]) -> IntegrityViolation:
    rendered = " -> ".join(chain)
    log.warning("Cyclic parent/child relationship detected: %s", rendered)
    return IntegrityViolation(
        kind=ViolationKind.CYCLE,
        message=f"Cyclic relationship: {rendered}",
        entity_ids=chain[:-1],
    )


def random_path(
    graph: Adjacency,
    source: str,
    target: str,
    *,
    rng: random.Random | None = None,
    max_steps: int = DEFAULT_RANDOM_STEP_BUDGET,
) -> list[str]:
    """Stochastic walk toward ``target`` choosing uniformly among unvisited children.

    Gives up (returning an empty list) on an unknown node, a dead end, or when the step
    budget is spent. Finding an existing path is not guaranteed.
    """

    chooser = rng or random.Random()
    if source not in graph:
        log.debug("Random path: %s is not in the graph", source)
        return []
    path = [source]
    visited = {source}
    node = source
    steps = 0
    while node != target:
        if steps >= max_steps:
            log.debug("Random path: step budget of %d exhausted", max_steps)
            return []
        options = [child for child in _children(graph, node) if child not in visited]
        if not options:
            log.debug("Random path: dead end at %s", node)
            return []
        node = chooser.choice(options)
        visited.add(node)
        path.append(node)
        steps += 1
    return path
