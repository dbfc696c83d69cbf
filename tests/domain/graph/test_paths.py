from __future__ import annotations

import random

from sparsetree.domain.errors import ViolationKind
from sparsetree.domain.graph import (
    adjacency_from_children,
    build_adjacency,
    longest_path,
    random_path,
    shortest_path,
)
from sparsetree.domain.model import ParentEdge

DIAMOND = adjacency_from_children({"A": ["B", "C"], "B": ["C"], "C": ["D"]})


def test_shortest_path_prefers_fewest_generations() -> None:
    assert shortest_path(DIAMOND, "A", "D") == ["A", "C", "D"]


def test_shortest_path_to_self_is_single_node() -> None:
    assert shortest_path(DIAMOND, "A", "A") == ["A"]


def test_shortest_path_follows_descent_only() -> None:
    assert shortest_path(DIAMOND, "D", "A") == []
    assert shortest_path(DIAMOND, "X", "A") == []


def test_longest_path_takes_the_long_way() -> None:
    outcome = longest_path(DIAMOND, "A", "D")

    assert outcome.path == ["A", "B", "C", "D"]
    assert outcome.cycles == ()


def test_longest_path_unreachable_is_empty() -> None:
    assert longest_path(DIAMOND, "D", "A").path == []


def test_longest_path_reports_cycles() -> None:
    graph = adjacency_from_children({"A": ["B"], "B": ["C"], "C": ["A"]})

    outcome = longest_path(graph, "A", "C")

    assert outcome.path == ["A", "B", "C"]
    assert len(outcome.cycles) == 1
    violation = outcome.cycles[0]
    assert violation.kind is ViolationKind.CYCLE
    assert violation.entity_ids == ("A", "B", "C")
    assert "A -> B -> C -> A" in violation.message


def test_random_path_reaches_only_target_on_a_chain() -> None:
    chain = adjacency_from_children({"A": ["B"], "B": ["C"]})

    assert random_path(chain, "A", "C", rng=random.Random(1)) == ["A", "B", "C"]


def test_random_path_gives_up_at_dead_end() -> None:
    graph = adjacency_from_children({"A": ["B"], "C": []})

    assert random_path(graph, "A", "C", rng=random.Random(0)) == []
    assert random_path(graph, "missing", "C") == []


def test_random_path_respects_step_budget() -> None:
    chain = adjacency_from_children({"A": ["B"], "B": ["C"], "C": ["D"]})

    assert random_path(chain, "A", "D", rng=random.Random(0), max_steps=2) == []


def test_random_path_is_a_valid_descent() -> None:
    rng = random.Random(7)
    for _ in range(20):
        path = random_path(DIAMOND, "A", "D", rng=rng)
        if not path:
            continue
        assert path[0] == "A"
        assert path[-1] == "D"
        for parent, child in zip(path, path[1:], strict=False):
            assert child in DIAMOND[parent].children


def test_build_adjacency_keeps_edge_order_and_members() -> None:
    edges = [
        ParentEdge(child_id="C", parent_id="A"),
        ParentEdge(child_id="C", parent_id="B"),
        ParentEdge(child_id="C", parent_id="A"),
    ]

    graph = build_adjacency(edges, nodes=["Z"])

    assert graph["C"].parents == ["A", "B"]
    assert graph["A"].children == ["C"]
    assert graph["Z"].parents == []
