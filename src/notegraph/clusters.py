"""Partition the relationship graph into labelled topic clusters.

Clusters are the connected components of the graph: every note belongs to
exactly one, and notes without edges form singleton clusters. Each cluster
is labelled with the tags most frequent among its members, falling back to
keywords drawn from member titles.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass

import networkx as nx

from notegraph.text import tokenize

# Title words too common to describe a topic
_STOPWORDS = frozenset(
    """
    a an and are as at be by for from has have in is it its of on or that the
    this to was were will with untitled note notes
    """.split()
)
_MIN_KEYWORD_LENGTH = 3


@dataclass(frozen=True)
class TopicCluster:
    """A connected group of related notes."""

    cluster_id: str
    name: str
    note_ids: tuple[str, ...]
    tags: tuple[str, ...]
    keywords: tuple[str, ...]
    cohesion: float  # mean edge weight inside the cluster

    @property
    def size(self) -> int:
        return len(self.note_ids)


def top_terms(terms: Iterable[str], limit: int) -> tuple[str, ...]:
    """Most frequent terms; ties go to the term observed first."""
    counts = Counter(terms)  # insertion ordered, so first-seen wins ties
    ranked = sorted(counts, key=lambda t: -counts[t])
    return tuple(ranked[:limit])


def extract_clusters(G: nx.Graph, label_size: int = 3) -> list[TopicCluster]:
    """Split the graph into connected components and label each one.

    Members are listed in snapshot order. Clusters are ordered by size
    (largest first), then by the snapshot position of their first member.
    An empty graph yields no clusters.
    """
    def position(node_id: str) -> tuple[int, str]:
        return (G.nodes[node_id].get("order", 0), node_id)

    components = [sorted(c, key=position) for c in nx.connected_components(G)]
    components.sort(key=lambda members: (-len(members), position(members[0])))

    clusters = []
    for idx, members in enumerate(components, 1):
        tags = top_terms(
            (tag for nid in members for tag in G.nodes[nid].get("tags", [])), label_size
        )
        keywords = top_terms(
            (
                word
                for nid in members
                for word in tokenize(G.nodes[nid].get("title", ""))
                if len(word) >= _MIN_KEYWORD_LENGTH and word not in _STOPWORDS
            ),
            label_size,
        )

        sub = G.subgraph(members)
        weights = [w for _, _, w in sub.edges(data="weight", default=0.0)]
        cohesion = sum(weights) / len(weights) if weights else 0.0

        if tags:
            name = tags[0]
        elif keywords:
            name = keywords[0]
        else:
            name = G.nodes[members[0]].get("title", members[0])

        clusters.append(
            TopicCluster(
                cluster_id=f"topic-{idx}",
                name=name,
                note_ids=tuple(members),
                tags=tags,
                keywords=keywords,
                cohesion=cohesion,
            )
        )

    return clusters
