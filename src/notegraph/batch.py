"""The shared pairwise pass behind duplicate scanning and graph building."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import defaultdict
from collections.abc import Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from notegraph.errors import Cancelled, ImageDecodeError
from notegraph.evaluate import PairwiseEvaluator, SimilarityScore
from notegraph.vault import NoteRecord, check_snapshot

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation with an optional deadline.

    Args:
        timeout: Seconds from now after which the token counts as cancelled.
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self.reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.reason = "deadline exceeded"
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled(self.reason)


def _length_bucket(note: NoteRecord) -> int:
    return int(math.log2(len(note.text_content) + 1))


def candidate_pairs(
    notes: Sequence[NoteRecord], bucket_min_notes: int = 2000
) -> list[tuple[int, int]]:
    """Index pairs ``(i, j)``, ``i < j``, worth a full evaluation.

    Below ``bucket_min_notes`` every pair is a candidate. From there on a
    pair is kept only if the notes share a tag or their text lengths fall
    in the same or adjacent power-of-two bucket.
    """
    n = len(notes)
    if n < bucket_min_notes:
        return [(i, j) for i in range(n) for j in range(i + 1, n)]

    buckets: dict[tuple[str, object], list[int]] = defaultdict(list)
    for idx, note in enumerate(notes):
        for tag in note.tags:
            buckets[("tag", tag)].append(idx)
        # Joining the next bucket too makes adjacent lengths meet
        length = _length_bucket(note)
        buckets[("len", length)].append(idx)
        buckets[("len", length + 1)].append(idx)

    pairs: set[tuple[int, int]] = set()
    for members in buckets.values():
        for pos, i in enumerate(members):
            for j in members[pos + 1 :]:
                pairs.add((i, j) if i < j else (j, i))

    logger.info(
        "Bucketing kept %d of %d candidate pairs across %d buckets",
        len(pairs), n * (n - 1) // 2, len(buckets),
    )
    return sorted(pairs)


@dataclass(frozen=True)
class PairwiseResult:
    """Every candidate pair of a snapshot with its score, sorted by pair."""

    notes: tuple[NoteRecord, ...]
    scores: tuple[SimilarityScore, ...]

    def above(self, threshold: float) -> list[SimilarityScore]:
        return [s for s in self.scores if s.score >= threshold]


def prefetch_fingerprints(
    evaluator: PairwiseEvaluator,
    notes: Sequence[NoteRecord],
    workers: int = 4,
    timeout: float = 5.0,
    cancel: CancelToken | None = None,
) -> int:
    """Decode every note image on a bounded pool, each within ``timeout``.

    Slow or broken images lose their image signal; they never fail the
    batch. Returns the number of usable fingerprints.
    """
    with_images = [n for n in notes if n.image_ref is not None]
    if not with_images:
        return 0

    usable = 0
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notegraph-image")
    try:
        futures = [(note, executor.submit(evaluator.fingerprint, note)) for note in with_images]
        for note, future in futures:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                fingerprint = future.result(timeout=timeout)
            except FutureTimeout:
                err = ImageDecodeError(note.image_ref, f"decode exceeded {timeout}s", note_id=note.id)
                logger.warning("Dropping image signal for note %s: %s", note.id, err.reason)
                fingerprint = evaluator.remember(note.id, None)
            if fingerprint is not None:
                usable += 1
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    logger.debug("Fingerprinted %d of %d images", usable, len(with_images))
    return usable


def _evaluate_chunk(
    evaluator: PairwiseEvaluator,
    notes: Sequence[NoteRecord],
    chunk: Sequence[tuple[int, int]],
    cancel: CancelToken | None,
) -> list[SimilarityScore]:
    results = []
    for i, j in chunk:
        if cancel is not None:
            cancel.raise_if_cancelled()
        results.append(evaluator.evaluate(notes[i], notes[j]))
    return results


def evaluate_pairs(
    evaluator: PairwiseEvaluator,
    notes: Sequence[NoteRecord],
    pairs: Sequence[tuple[int, int]],
    workers: int = 1,
    chunk_size: int = 256,
    cancel: CancelToken | None = None,
) -> list[SimilarityScore]:
    """Score the given index pairs, in parallel when ``workers > 1``.

    Raises Cancelled (and returns nothing) if the token fires mid-run.
    The result is sorted by pair, independent of completion order.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    chunks = [pairs[k : k + chunk_size] for k in range(0, len(pairs), chunk_size)]
    if workers <= 1 or len(chunks) <= 1:
        results = [
            score for chunk in chunks for score in _evaluate_chunk(evaluator, notes, chunk, cancel)
        ]
    else:
        results = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notegraph-pairs") as executor:
            futures = [
                executor.submit(_evaluate_chunk, evaluator, notes, chunk, cancel) for chunk in chunks
            ]
            done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in futures if f in done and f.exception() is not None]
            if failed:
                for future in not_done:
                    future.cancel()
                raise failed[0].exception()
            for future in futures:
                results.extend(future.result())

    results.sort(key=lambda s: s.pair)
    return results


def run_pairwise(
    evaluator: PairwiseEvaluator,
    notes: Sequence[NoteRecord],
    *,
    workers: int = 1,
    chunk_size: int = 256,
    bucket_min_notes: int = 2000,
    image_workers: int = 4,
    image_timeout: float = 5.0,
    cancel: CancelToken | None = None,
) -> PairwiseResult:
    """Full pass over a snapshot: fingerprints, candidate pairs, scores."""
    check_snapshot(notes)
    notes = tuple(notes)
    started = time.perf_counter()

    prefetch_fingerprints(evaluator, notes, workers=image_workers, timeout=image_timeout, cancel=cancel)
    pairs = candidate_pairs(notes, bucket_min_notes)
    scores = evaluate_pairs(
        evaluator, notes, pairs, workers=workers, chunk_size=chunk_size, cancel=cancel
    )

    logger.info(
        "Scored %d pairs over %d notes in %.2fs",
        len(scores), len(notes), time.perf_counter() - started,
    )
    return PairwiseResult(notes=notes, scores=tuple(scores))
