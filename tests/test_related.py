"""Tests for related-note queries."""

from datetime import datetime, timezone

import networkx as nx
import pytest

from notegraph.errors import NotFoundError
from notegraph.related import RelatedNote, find_related


def _graph():
    G = nx.Graph()
    G.add_edge("A", "B", weight=0.9)
    G.add_edge("A", "C", weight=0.4)
    return G


def test_top_one():
    assert find_related(_graph(), "A", k=1) == [RelatedNote("B", 0.9)]


def test_sorted_by_score():
    results = find_related(_graph(), "A", k=5)
    assert [(r.note_id, r.score) for r in results] == [("B", 0.9), ("C", 0.4)]


def test_missing_note():
    with pytest.raises(NotFoundError):
        find_related(_graph(), "missing-id", k=3)


@pytest.mark.parametrize("k", [0, -1])
def test_non_positive_k(k):
    assert find_related(_graph(), "A", k=k) == []


def test_isolated_note():
    G = _graph()
    G.add_node("D")
    assert find_related(G, "D", k=3) == []


def test_ties_prefer_recent_then_id():
    G = nx.Graph()
    old = datetime(2025, 1, 1, tzinfo=timezone.utc)
    new = datetime(2026, 1, 1, tzinfo=timezone.utc)
    G.add_node("X")
    G.add_node("old", created_at=old)
    G.add_node("new", created_at=new)
    G.add_node("b-same", created_at=new)
    G.add_node("undated")
    for other in ("old", "new", "b-same", "undated"):
        G.add_edge("X", other, weight=0.5)

    ids = [r.note_id for r in find_related(G, "X", k=10)]
    assert ids == ["b-same", "new", "old", "undated"]


def test_deterministic():
    G = _graph()
    assert find_related(G, "A", 2) == find_related(G, "A", 2)


def test_carries_common_tags_and_description():
    G = nx.Graph()
    G.add_edge("A", "B", weight=0.6, kind="tag", common_tags=["python", "data"])
    G.add_edge("A", "C", weight=0.9, kind="text", common_tags=[])
    by_id = {r.note_id: r for r in find_related(G, "A", k=5)}
    assert by_id["B"].common_tags == ("python", "data")
    assert by_id["B"].description == "shared tags: python, data"
    assert by_id["C"].description == "highly similar"
