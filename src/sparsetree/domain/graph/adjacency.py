"""Snapshot adjacency view of a stored graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sparsetree.domain.model import ParentEdge


@dataclass(slots=True)
class AdjacencyEntry:
    parents: list[str] = field(default_factory=list)
    children: list[str] = field(default_factory=list)


type Adjacency = Mapping[str, AdjacencyEntry]


def build_adjacency(
    edges: Iterable[ParentEdge], *, nodes: Iterable[str] = ()
) -> dict[str, AdjacencyEntry]:
    """Materialize ``id -> parents/children`` from parent edges, keeping edge order."""

    adjacency: dict[str, AdjacencyEntry] = {node: AdjacencyEntry() for node in nodes}
    for edge in edges:
        child = adjacency.setdefault(edge.child_id, AdjacencyEntry())
        parent = adjacency.setdefault(edge.parent_id, AdjacencyEntry())
        if edge.parent_id not in child.parents:
            child.parents.append(edge.parent_id)
        if edge.child_id not in parent.children:
            parent.children.append(edge.child_id)
    return adjacency


def adjacency_from_children(children: Mapping[str, Iterable[str]]) -> dict[str, AdjacencyEntry]:
    """Build a view from a plain ``node -> children`` mapping."""

    adjacency: dict[str, AdjacencyEntry] = {node: AdjacencyEntry() for node in children}
    for node, kids in children.items():
        for kid in kids:
            adjacency[node].children.append(kid)
            adjacency.setdefault(kid, AdjacencyEntry()).parents.append(node)
    return adjacency
