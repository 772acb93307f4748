"""Group near-duplicate notes: threshold the pair scores, merge with union-find."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from itertools import combinations

from networkx.utils import UnionFind

from notegraph.config import check_unit
from notegraph.evaluate import PairwiseEvaluator, SimilarityScore
from notegraph.vault import NoteRecord

MERGE_THRESHOLD = 0.95


@dataclass(frozen=True)
class DuplicateGroup:
    """Notes connected, directly or transitively, by above-threshold pairs."""

    group_id: str
    note_ids: tuple[str, ...]
    similarity: float  # mean score over all member pairs
    min_similarity: float
    earliest: datetime

    @property
    def size(self) -> int:
        return len(self.note_ids)

    @property
    def suggested_action(self) -> str:
        return "merge" if self.similarity > MERGE_THRESHOLD else "review"


def find_duplicates(
    notes: Sequence[NoteRecord],
    scores: Iterable[SimilarityScore],
    dup_threshold: float,
    evaluator: PairwiseEvaluator | None = None,
) -> list[DuplicateGroup]:
    """Partition the notes that have a duplicate into groups.

    Grouping is transitive: if A~B and B~C clear the threshold, A, B and C
    share a group even when A~C alone would not. Groups are ordered by
    size (largest first), then by their earliest ``created_at``.

    Args:
        notes: The snapshot the scores were computed over.
        scores: Pair scores for the snapshot.
        dup_threshold: Minimum score for a pair to be merged.
        evaluator: Used to score member pairs missing from ``scores``
            when computing group similarity.
    """
    check_unit("dup_threshold", dup_threshold)
    order = {note.id: idx for idx, note in enumerate(notes)}
    by_id = {note.id: note for note in notes}

    known: dict[tuple[str, str], float] = {}
    sets = UnionFind()
    for s in scores:
        known[s.pair] = s.score
        if s.score >= dup_threshold:
            sets.union(s.note_a, s.note_b)

    groups = []
    for members in sets.to_sets():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=lambda nid: (by_id[nid].created_at.timestamp(), order[nid]))
        pair_scores = [
            _pair_score(by_id[a], by_id[b], known, evaluator) for a, b in combinations(sorted(members), 2)
        ]
        pair_scores = [p for p in pair_scores if p is not None]
        groups.append(
            DuplicateGroup(
                group_id=f"group-{ordered[0]}",
                note_ids=tuple(ordered),
                similarity=sum(pair_scores) / len(pair_scores),
                min_similarity=min(pair_scores),
                earliest=by_id[ordered[0]].created_at,
            )
        )

    groups.sort(key=lambda g: (-g.size, g.earliest.timestamp(), order[g.note_ids[0]]))
    return groups


def _pair_score(
    a: NoteRecord,
    b: NoteRecord,
    known: dict[tuple[str, str], float],
    evaluator: PairwiseEvaluator | None,
) -> float | None:
    key = (a.id, b.id) if a.id < b.id else (b.id, a.id)
    if key in known:
        return known[key]
    if evaluator is None:
        return None
    return evaluator.evaluate(a, b).score


def summarize_groups(groups: Sequence[DuplicateGroup], total_notes: int) -> str:
    """One-paragraph report of a duplicate scan."""
    if not groups:
        return f"No duplicates found among {total_notes} notes."

    grouped = sum(g.size for g in groups)
    redundant = grouped - len(groups)  # all but one note per group
    merge = sum(1 for g in groups if g.suggested_action == "merge")
    lines = [
        f"Found {len(groups)} duplicate groups covering {grouped} of {total_notes} notes; "
        f"{redundant} notes are redundant.",
        f"{merge} groups can be merged, {len(groups) - merge} need review.",
    ]
    for idx, group in enumerate(groups, 1):
        lines.append(
            f"  Group {idx}: {group.size} notes, similarity {group.similarity:.1%} "
            f"({group.suggested_action})"
        )
    return "\n".join(lines)
