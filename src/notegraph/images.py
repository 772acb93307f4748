"""Perceptual image fingerprints (difference hash) and their per-note cache."""

from __future__ import annotations

import hashlib
import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from notegraph.errors import ImageDecodeError, InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fingerprint:
    """A fixed-length bit string packed into an int."""

    bits: int
    length: int

    def hamming(self, other: Fingerprint) -> int:
        if self.length != other.length:
            raise InvalidArgument(
                "fingerprint",
                f"cannot compare {self.length}-bit and {other.length}-bit fingerprints",
            )
        return bin(self.bits ^ other.bits).count("1")

    def hex(self) -> str:
        return f"{self.bits:0{(self.length + 3) // 4}x}"


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ImageResolver:
    """Turn an ``image_ref`` into raw bytes.

    Bytes pass through unchanged; strings are read as file paths, relative
    ones resolved against ``base_dir``.
    """

    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir) if base_dir is not None else None

    def __call__(self, image_ref: str | bytes) -> bytes:
        if isinstance(image_ref, (bytes, bytearray)):
            return bytes(image_ref)

        path = Path(image_ref)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ImageDecodeError(image_ref, f"unreadable: {exc.strerror or exc}") from exc


class ImageHasher:
    """Difference hash over a ``(size + 1) x size`` grayscale thumbnail.

    Each bit records whether a pixel's right-hand neighbour is brighter
    than the pixel itself, giving ``size ** 2`` bits.
    """

    def __init__(self, size: int = 8):
        if size < 2:
            raise InvalidArgument("hash_size", "must be at least 2")
        self.size = size

    @property
    def bit_length(self) -> int:
        return self.size * self.size

    def hash(self, data: bytes) -> Fingerprint:
        if not data:
            raise ImageDecodeError(data, "empty image")
        try:
            with Image.open(io.BytesIO(data)) as img:
                img = img.convert("L").resize(
                    (self.size + 1, self.size), Image.Resampling.LANCZOS
                )
                pixels = np.asarray(img, dtype=np.int16)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise ImageDecodeError(data, str(exc) or type(exc).__name__) from exc

        diff = pixels[:, 1:] > pixels[:, :-1]
        bits = 0
        for bit in diff.flatten():
            bits = (bits << 1) | int(bit)
        return Fingerprint(bits=bits, length=self.bit_length)

    @staticmethod
    def compare(fp1: Fingerprint, fp2: Fingerprint) -> float:
        """``1 - hamming / bit_length``; identical fingerprints score 1."""
        return 1.0 - fp1.hamming(fp2) / fp1.length


@dataclass(frozen=True)
class _Entry:
    digest: str
    fingerprint: Fingerprint | None  # None: image unusable


class FingerprintCache:
    """Per-note fingerprints, invalidated when the image content changes.

    Entries are keyed by note id and tagged with the SHA-256 digest of the
    image bytes. A lookup with a different digest misses. Failed decodes are
    cached as None so a bad image is only attempted once per digest.
    """

    def __init__(self):
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._inflight: dict[tuple[str, str], threading.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._entries

    def lookup(self, note_id: str, digest: str) -> tuple[bool, Fingerprint | None]:
        """Return ``(hit, fingerprint)`` for a note at a given content digest."""
        entry = self._entries.get(note_id)
        if entry is None or entry.digest != digest:
            return False, None
        return True, entry.fingerprint

    def get_or_compute(self, note_id: str, data: bytes, hasher: ImageHasher) -> Fingerprint | None:
        """Fingerprint for the note's image bytes, hashing at most once per digest.

        Concurrent callers for the same key wait on a single computation.
        """
        digest = content_digest(data)
        hit, fingerprint = self.lookup(note_id, digest)
        if hit:
            return fingerprint

        key = (note_id, digest)
        with self._lock:
            flight = self._inflight.setdefault(key, threading.Lock())
        with flight:
            hit, fingerprint = self.lookup(note_id, digest)
            if hit:
                return fingerprint
            try:
                try:
                    fingerprint = hasher.hash(data)
                except ImageDecodeError as exc:
                    logger.warning("Image for note %s is unusable: %s", note_id, exc.reason)
                    fingerprint = None
                with self._lock:
                    self._entries[note_id] = _Entry(digest, fingerprint)
            finally:
                with self._lock:
                    self._inflight.pop(key, None)
        return fingerprint

