from __future__ import annotations

from sparsetree.domain.graph import adjacency_from_children, collect_relatives, materialize_tree
from sparsetree.domain.model import CrawlDirection

# Pedigree collapse: D's parents B and C share the parent A.
FAMILY = adjacency_from_children({"A": ["B", "C"], "B": ["D"], "C": ["D"], "D": ["E"]})


def test_ancestor_tree_repeats_shared_ancestors_on_each_branch() -> None:
    tree = materialize_tree(FAMILY, "D", direction=CrawlDirection.ANCESTORS, max_depth=4)

    assert [branch.person_id for branch in tree.branches] == ["B", "C"]
    assert [node.person_id for node in tree.walk()] == ["D", "B", "A", "C", "A"]
    assert max(node.depth for node in tree.walk()) == 2


def test_tree_depth_is_bounded() -> None:
    tree = materialize_tree(FAMILY, "A", direction=CrawlDirection.DESCENDANTS, max_depth=1)

    assert [node.person_id for node in tree.walk()] == ["A", "B", "C"]
    assert all(not branch.branches for branch in tree.branches)


def test_tree_of_depth_zero_is_the_root() -> None:
    tree = materialize_tree(FAMILY, "D", max_depth=0)

    assert tree.person_id == "D"
    assert tree.branches == ()


def test_tree_over_cyclic_data_terminates() -> None:
    graph = adjacency_from_children({"A": ["B"], "B": ["A"]})

    tree = materialize_tree(graph, "A", direction=CrawlDirection.DESCENDANTS, max_depth=10)

    assert [node.person_id for node in tree.walk()] == ["A", "B"]


def test_collect_relatives_lists_each_person_once_with_depth() -> None:
    ancestors = collect_relatives(FAMILY, "E", direction=CrawlDirection.ANCESTORS)

    assert [(relative.person_id, relative.depth) for relative in ancestors] == [
        ("D", 1),
        ("B", 2),
        ("C", 2),
        ("A", 3),
    ]
    limited = collect_relatives(FAMILY, "E", max_depth=2)
    assert [relative.person_id for relative in limited] == ["D", "B", "C"]


def test_collect_relatives_in_both_directions() -> None:
    both = collect_relatives(FAMILY, "B", direction=CrawlDirection.BOTH, max_depth=1)

    assert {relative.person_id for relative in both} == {"A", "D"}
