"""Lexical text similarity: normalized edit distance blended with TF cosine."""

from __future__ import annotations

import re
from collections import Counter

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _sk_cosine

from notegraph.config import TextWeights

_WHITESPACE_RE = re.compile(r"\s+")
# Word runs; splits on whitespace, punctuation and underscores
_TOKEN_RE = re.compile(r"[^\W_]+")
_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """Case-fold and collapse whitespace."""
    return _WHITESPACE_RE.sub(" ", text.casefold()).strip()


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.casefold())


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute), two-row DP."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + (ca != cb),  # substitution
                )
            )
        previous = current
    return previous[-1]


def edit_similarity(a: str, b: str) -> float:
    """``1 - levenshtein(a, b) / max(len(a), len(b), 1)``."""
    return 1.0 - levenshtein(a, b) / max(len(a), len(b), 1)


def cosine_similarity(a: str, b: str) -> float:
    """Cosine of the term-frequency vectors of two texts.

    Vectors are built over the union vocabulary of the pair. Texts
    without any token score 0.
    """
    tf_a = Counter(tokenize(a))
    tf_b = Counter(tokenize(b))
    vocab = sorted(tf_a.keys() | tf_b.keys())
    if not vocab:
        return 0.0

    vectors = np.array(
        [[tf_a[term] for term in vocab], [tf_b[term] for term in vocab]],
        dtype=float,
    )
    sim = float(_sk_cosine(vectors)[0, 1])
    return min(max(sim, 0.0), 1.0)


def score_text(a: str, b: str, weights: TextWeights | None = None) -> float:
    """Similarity of two texts in [0, 1].

    Both empty is defined as identical (1.0); exactly one empty scores 0.0.
    """
    weights = weights or TextWeights()
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if norm_a == norm_b:
        return 1.0

    total = weights.edit + weights.cosine
    score = (
        weights.edit * edit_similarity(norm_a, norm_b)
        + weights.cosine * cosine_similarity(norm_a, norm_b)
    ) / total
    return min(max(score, 0.0), 1.0)


def is_exact_duplicate(a: str, b: str) -> bool:
    """True when the texts match after dropping case, punctuation and spacing."""

    def strip(text: str) -> str:
        return _WHITESPACE_RE.sub(" ", _PUNCT_RE.sub("", text.lower())).strip()

    return strip(a) == strip(b)
