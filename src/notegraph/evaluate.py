"""Combine text, image and tag signals into one score per note pair."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from notegraph.config import SignalWeights, TextWeights
from notegraph.errors import ImageDecodeError, InvalidArgument
from notegraph.images import Fingerprint, FingerprintCache, ImageHasher, ImageResolver
from notegraph.text import score_text
from notegraph.vault import NoteRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityScore:
    """Score of an unordered note pair, stored with ``note_a < note_b``."""

    note_a: str
    note_b: str
    score: float
    text_score: float
    image_score: float  # 0 when either note lacks a usable image
    tag_score: float
    has_image: bool = False
    has_tags: bool = False
    common_tags: tuple[str, ...] = ()
    kind: str = "text"  # dominant signal: "text", "image" or "tag"

    @property
    def pair(self) -> tuple[str, str]:
        return (self.note_a, self.note_b)

    @property
    def reason(self) -> str:
        return similarity_reason(self.score)

    def other(self, note_id: str) -> str:
        return self.note_b if note_id == self.note_a else self.note_a


def similarity_reason(score: float) -> str:
    """Human label for a pair score."""
    if score > 0.95:
        return "near-identical"
    if score > 0.85:
        return "highly similar"
    if score > 0.7:
        return "partial overlap"
    return "weakly similar"


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """``|A & B| / |A | B|``, 0 when both sets are empty."""
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def pair_key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class ScoreCache:
    """Compute-once map from unordered id pairs to scores."""

    def __init__(self):
        self._scores: dict[tuple[str, str], SimilarityScore] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._scores)

    def get(self, a: str, b: str) -> SimilarityScore | None:
        return self._scores.get(pair_key(a, b))

    def get_or_compute(
        self, a: str, b: str, compute: Callable[[], SimilarityScore]
    ) -> SimilarityScore:
        key = pair_key(a, b)
        cached = self._scores.get(key)
        if cached is not None:
            return cached
        # Evaluation is pure, so racing first-writers produce equal values;
        # setdefault keeps whichever landed first.
        score = compute()
        with self._lock:
            return self._scores.setdefault(key, score)


class PairwiseEvaluator:
    """Scores note pairs for one snapshot.

    Fingerprints are memoized per note id for the lifetime of the
    evaluator, so an evaluator must not outlive the snapshot it scores.
    The shared FingerprintCache may outlive it: it is keyed by image
    content digest.
    """

    def __init__(
        self,
        text_weights: TextWeights | None = None,
        signal_weights: SignalWeights | None = None,
        hasher: ImageHasher | None = None,
        fingerprints: FingerprintCache | None = None,
        resolver: Callable[[str | bytes], bytes] | None = None,
        scores: ScoreCache | None = None,
    ):
        self.text_weights = text_weights or TextWeights()
        self.signal_weights = signal_weights or SignalWeights()
        self.text_weights.validate()
        self.signal_weights.validate()
        self.hasher = hasher or ImageHasher()
        self.fingerprints = fingerprints if fingerprints is not None else FingerprintCache()
        self.resolver = resolver or ImageResolver()
        self.scores = scores if scores is not None else ScoreCache()
        self._memo: dict[str, Fingerprint | None] = {}
        self._memo_lock = threading.Lock()

    def fingerprint(self, note: NoteRecord) -> Fingerprint | None:
        """The note's image fingerprint, or None when it has no usable image."""
        if note.image_ref is None:
            return None
        memo = self._memo
        if note.id in memo:
            return memo[note.id]

        try:
            data = self.resolver(note.image_ref)
            fingerprint = self.fingerprints.get_or_compute(note.id, data, self.hasher)
        except ImageDecodeError as exc:
            logger.warning("Dropping image signal for note %s: %s", note.id, exc.reason)
            fingerprint = None
        return self.remember(note.id, fingerprint)

    def remember(self, note_id: str, fingerprint: Fingerprint | None) -> Fingerprint | None:
        """Pin a note's fingerprint for this snapshot; the first value wins."""
        with self._memo_lock:
            return self._memo.setdefault(note_id, fingerprint)

    def evaluate(self, note_a: NoteRecord, note_b: NoteRecord) -> SimilarityScore:
        """Similarity of two distinct notes. Symmetric and cached per pair."""
        if note_a.id == note_b.id:
            raise InvalidArgument("note", f"cannot score note {note_a.id!r} against itself")
        if note_b.id < note_a.id:
            note_a, note_b = note_b, note_a
        return self.scores.get_or_compute(
            note_a.id, note_b.id, lambda: self._score(note_a, note_b)
        )

    def _score(self, note_a: NoteRecord, note_b: NoteRecord) -> SimilarityScore:
        weights = self.signal_weights

        text_score = score_text(note_a.text_content, note_b.text_content, self.text_weights)

        tags_a, tags_b = note_a.tag_set, note_b.tag_set
        has_tags = bool(tags_a or tags_b)
        tag_score = jaccard(tags_a, tags_b)

        fp_a, fp_b = self.fingerprint(note_a), self.fingerprint(note_b)
        has_image = fp_a is not None and fp_b is not None
        image_score = self.hasher.compare(fp_a, fp_b) if has_image else 0.0

        # Drop unavailable signals and renormalize the rest
        parts = {"text": (weights.text, text_score)}
        if has_image:
            parts["image"] = (weights.image, image_score)
        if has_tags:
            parts["tag"] = (weights.tag, tag_score)
        total = sum(w for w, _ in parts.values())
        score = sum(w * s for w, s in parts.values()) / total
        score = min(max(score, 0.0), 1.0)

        # Dominant contribution; dict order makes text win ties
        kind = max(parts, key=lambda name: parts[name][0] * parts[name][1])

        return SimilarityScore(
            note_a=note_a.id,
            note_b=note_b.id,
            score=score,
            text_score=text_score,
            image_score=image_score,
            tag_score=tag_score,
            has_image=has_image,
            has_tags=has_tags,
            common_tags=tuple(t for t in note_a.tags if t in tags_b),
            kind=kind,
        )
