"""Top-K related notes for a single note."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import networkx as nx

from notegraph.errors import NotFoundError
from notegraph.evaluate import similarity_reason


@dataclass(frozen=True)
class RelatedNote:
    note_id: str
    score: float
    kind: str = "text"
    common_tags: tuple[str, ...] = ()

    @property
    def description(self) -> str:
        """Why the notes are related: their shared tags, or how similar they are."""
        if self.kind == "tag" and self.common_tags:
            return f"shared tags: {', '.join(self.common_tags)}"
        return similarity_reason(self.score)


def _recency(created: datetime | None) -> float:
    return created.timestamp() if created is not None else float("-inf")


def find_related(G: nx.Graph, note_id: str, k: int) -> list[RelatedNote]:
    """The ``k`` heaviest neighbours of ``note_id``.

    Ordered by weight (highest first), then more recent ``created_at``,
    then id. Raises NotFoundError for an id outside the graph; ``k <= 0``
    returns an empty list.
    """
    if note_id not in G:
        raise NotFoundError(note_id)
    if k <= 0:
        return []

    neighbours = [
        RelatedNote(
            note_id=other,
            score=data.get("weight", 0.0),
            kind=data.get("kind", "text"),
            common_tags=tuple(data.get("common_tags", ())),
        )
        for other, data in G[note_id].items()
    ]
    neighbours.sort(
        key=lambda r: (-r.score, -_recency(G.nodes[r.note_id].get("created_at")), r.note_id)
    )
    return neighbours[:k]
