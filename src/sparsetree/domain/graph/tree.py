"""Depth-bounded tree materialization in either direction."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sparsetree.domain.model import CrawlDirection

if TYPE_CHECKING:
    from .adjacency import Adjacency


@dataclass(slots=True, frozen=True)
class TreeNode:
    person_id: str
    depth: int
    branches: tuple[TreeNode, ...] = field(default_factory=tuple)

    def walk(self) -> list[TreeNode]:
        nodes = [self]
        for branch in self.branches:
            nodes.extend(branch.walk())
        return nodes


@dataclass(slots=True, frozen=True)
class Relative:
    person_id: str
    depth: int


def _neighbours(graph: Adjacency, node: str, direction: CrawlDirection) -> list[str]:
    entry = graph.get(node)
    if entry is None:
        return []
    if direction is CrawlDirection.ANCESTORS:
        return entry.parents
    if direction is CrawlDirection.DESCENDANTS:
        return entry.children
    return [*entry.parents, *entry.children]


def materialize_tree(
    graph: Adjacency,
    root: str,
    *,
    direction: CrawlDirection = CrawlDirection.ANCESTORS,
    max_depth: int = 4,
) -> TreeNode:
    """Return the tree of relatives reachable from ``root`` within ``max_depth`` steps.

    A person already on the current branch is not expanded again, so cyclic data yields
    a finite tree. Shared ancestors (pedigree collapse) appear on every branch they occupy.
    """

    def build(node: str, depth: int, lineage: frozenset[str]) -> TreeNode:
        if depth >= max_depth:
            return TreeNode(person_id=node, depth=depth)
        branches = tuple(
            build(neighbour, depth + 1, lineage | {neighbour})
            for neighbour in _neighbours(graph, node, direction)
            if neighbour not in lineage
        )
        return TreeNode(person_id=node, depth=depth, branches=branches)

    return build(root, 0, frozenset({root}))


def collect_relatives(
    graph: Adjacency,
    root: str,
    *,
    direction: CrawlDirection = CrawlDirection.ANCESTORS,
    max_depth: int | None = None,
) -> list[Relative]:
    """Breadth-first list of distinct relatives (excluding ``root``) with their depth."""

    seen = {root}
    relatives: list[Relative] = []
    queue: deque[tuple[str, int]] = deque([(root, 0)])
    while queue:
        node, depth = queue.popleft()
        if max_depth is not None and depth >= max_depth:
            continue
        for neighbour in _neighbours(graph, node, direction):
            if neighbour in seen:
                continue
            seen.add(neighbour)
            relatives.append(Relative(person_id=neighbour, depth=depth + 1))
            queue.append((neighbour, depth + 1))
    return relatives
