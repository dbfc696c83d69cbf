"""Path finding and tree materialization over stored parent/child edges."""

from __future__ import annotations

from .adjacency import Adjacency, AdjacencyEntry, adjacency_from_children, build_adjacency
from .paths import LongestPath, longest_path, random_path, shortest_path
from .service import GraphQueryService, PathMethod, PathResult
from .tree import Relative, TreeNode, collect_relatives, materialize_tree

__all__ = [
    "Adjacency",
    "AdjacencyEntry",
    "GraphQueryService",
    "LongestPath",
    "PathMethod",
    "PathResult",
    "Relative",
    "TreeNode",
    "adjacency_from_children",
    "build_adjacency",
    "collect_relatives",
    "longest_path",
    "materialize_tree",
    "random_path",
    "shortest_path",
]
