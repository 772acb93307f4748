"""Build the weighted relationship graph from pairwise note scores."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import networkx as nx

from notegraph.config import check_unit
from notegraph.evaluate import SimilarityScore
from notegraph.vault import NoteRecord


def build_graph(
    notes: Sequence[NoteRecord],
    scores: Iterable[SimilarityScore],
    edge_threshold: float,
) -> nx.Graph:
    """Build an undirected graph of related notes.

    Nodes are note ids, one per note in the snapshot, carrying ``title``,
    ``tags``, ``created_at`` and ``order`` (position in the snapshot).
    An edge joins two notes whose score is at least ``edge_threshold``.

    Returns:
        Weighted undirected graph. Edge weight = pair score; the score
        breakdown is kept as edge attributes.
    """
    check_unit("edge_threshold", edge_threshold)

    G = nx.Graph(edge_threshold=edge_threshold)
    for idx, note in enumerate(notes):
        G.add_node(
            note.id,
            title=note.title,
            tags=list(note.tags),
            created_at=note.created_at,
            order=idx,
        )

    for s in scores:
        if s.score < edge_threshold or s.note_a == s.note_b:
            continue
        if s.note_a not in G or s.note_b not in G:
            continue
        G.add_edge(
            s.note_a,
            s.note_b,
            weight=s.score,
            text_score=s.text_score,
            image_score=s.image_score,
            tag_score=s.tag_score,
            kind=s.kind,
            common_tags=list(s.common_tags),
        )

    return G


def graph_to_dict(G: nx.Graph) -> dict[str, Any]:
    """Plain ``{"nodes": [...], "edges": [...]}`` rendering, JSON friendly."""
    nodes = []
    for node_id, data in sorted(G.nodes(data=True), key=lambda item: item[1].get("order", 0)):
        created = data.get("created_at")
        nodes.append(
            {
                "id": node_id,
                "title": data.get("title", node_id),
                "tags": list(data.get("tags", [])),
                "created_at": created.isoformat() if created is not None else None,
            }
        )

    edges = []
    for a, b, data in G.edges(data=True):
        source, target = (a, b) if a < b else (b, a)
        edges.append(
            {
                "source": source,
                "target": target,
                "weight": round(data["weight"], 6),
                "kind": data.get("kind", "text"),
            }
        )
    edges.sort(key=lambda e: (e["source"], e["target"]))

    return {"nodes": nodes, "edges": edges, "edge_threshold": G.graph.get("edge_threshold")}


def graph_stats(G: nx.Graph) -> dict[str, Any]:
    """Node, edge, component and isolate counts plus density."""
    return {
        "notes": G.number_of_nodes(),
        "edges": G.number_of_edges(),
        "components": nx.number_connected_components(G) if G.number_of_nodes() else 0,
        "isolated": nx.number_of_isolates(G),
        "density": nx.density(G) if G.number_of_nodes() > 1 else 0.0,
    }
