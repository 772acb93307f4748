"""Engine configuration: every tunable threshold and weight, validated eagerly."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from notegraph.errors import InvalidArgument

logger = logging.getLogger(__name__)


def check_unit(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument(name, f"expected a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise InvalidArgument(name, f"must be within [0, 1], got {value}")


def _check_positive_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(name, f"must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class TextWeights:
    """Blend of the two text measures. Renormalized by their sum."""

    edit: float = 0.4
    cosine: float = 0.6

    def validate(self, prefix: str = "text_weights") -> None:
        check_unit(f"{prefix}.edit", self.edit)
        check_unit(f"{prefix}.cosine", self.cosine)
        if self.edit + self.cosine <= 0:
            raise InvalidArgument(prefix, "weights must not all be zero")


@dataclass(frozen=True)
class SignalWeights:
    """Blend of the text, image and tag signals of a note pair.

    Signals that are unavailable for a pair are dropped and the
    remaining weights renormalized.
    """

    text: float = 0.5
    image: float = 0.3
    tag: float = 0.2

    def validate(self, prefix: str = "signal_weights") -> None:
        check_unit(f"{prefix}.text", self.text)
        check_unit(f"{prefix}.image", self.image)
        check_unit(f"{prefix}.tag", self.tag)
        if self.text <= 0:
            # text is the one signal every pair has
            raise InvalidArgument(f"{prefix}.text", "must be greater than zero")


@dataclass(frozen=True)
class EngineConfig:
    """All options recognized by the engine.

    Attributes:
        edge_threshold: Minimum score for a relationship graph edge.
        dup_threshold: Minimum score for two notes to count as duplicates.
        related_k: Default number of neighbours returned by related queries.
        text_weights: Edit distance / cosine blend for text scoring.
        signal_weights: Text / image / tag blend for note pairs.
        hash_size: Side of the perceptual hash grid; fingerprints have
            ``hash_size ** 2`` bits.
        image_workers: Threads used to decode images.
        image_timeout: Seconds allowed per image decode.
        workers: Threads used for pairwise evaluation.
        chunk_size: Pairs handed to a worker at a time.
        bucket_min_notes: Corpus size from which candidate pairs are
            pre-filtered by shared tag or text-length bucket.
        cluster_label_size: Tags and keywords kept per topic cluster.
    """

    edge_threshold: float = 0.3
    dup_threshold: float = 0.85
    related_k: int = 5
    text_weights: TextWeights = field(default_factory=TextWeights)
    signal_weights: SignalWeights = field(default_factory=SignalWeights)
    hash_size: int = 8
    image_workers: int = 4
    image_timeout: float = 5.0
    workers: int = field(default_factory=lambda: min(8, os.cpu_count() or 1))
    chunk_size: int = 256
    bucket_min_notes: int = 2000
    cluster_label_size: int = 3

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise InvalidArgument on the first option outside its range."""
        check_unit("edge_threshold", self.edge_threshold)
        check_unit("dup_threshold", self.dup_threshold)
        if isinstance(self.related_k, bool) or not isinstance(self.related_k, int):
            raise InvalidArgument("related_k", f"expected an integer, got {self.related_k!r}")
        if self.related_k < 0:
            raise InvalidArgument("related_k", f"must not be negative, got {self.related_k}")
        if not isinstance(self.text_weights, TextWeights):
            raise InvalidArgument("text_weights", "expected a TextWeights instance")
        if not isinstance(self.signal_weights, SignalWeights):
            raise InvalidArgument("signal_weights", "expected a SignalWeights instance")
        self.text_weights.validate()
        self.signal_weights.validate()
        _check_positive_int("hash_size", self.hash_size)
        if self.hash_size < 2:
            raise InvalidArgument("hash_size", "must be at least 2")
        _check_positive_int("image_workers", self.image_workers)
        if isinstance(self.image_timeout, bool) or not isinstance(self.image_timeout, (int, float)):
            raise InvalidArgument("image_timeout", f"expected a number, got {self.image_timeout!r}")
        if self.image_timeout <= 0:
            raise InvalidArgument("image_timeout", "must be greater than zero")
        _check_positive_int("workers", self.workers)
        _check_positive_int("chunk_size", self.chunk_size)
        _check_positive_int("bucket_min_notes", self.bucket_min_notes)
        _check_positive_int("cluster_label_size", self.cluster_label_size)

    def with_overrides(self, **overrides: Any) -> EngineConfig:
        """Return a copy with the non-None overrides applied (and validated)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise InvalidArgument(sorted(unknown)[0], "unknown configuration option")
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Build a config from a plain mapping, rejecting unknown keys."""
        if not isinstance(data, dict):
            raise InvalidArgument("config", f"expected a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidArgument(sorted(unknown)[0], "unknown configuration option")

        kwargs = dict(data)
        for key, weight_cls in (("text_weights", TextWeights), ("signal_weights", SignalWeights)):
            if key in kwargs:
                kwargs[key] = _weights_from_dict(key, weight_cls, kwargs[key])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _weights_from_dict(key: str, weight_cls: type, value: Any):
    if isinstance(value, weight_cls):
        return value
    if not isinstance(value, dict):
        raise InvalidArgument(key, f"expected a mapping, got {value!r}")
    known = {f.name for f in fields(weight_cls)}
    unknown = set(value) - known
    if unknown:
        raise InvalidArgument(f"{key}.{sorted(unknown)[0]}", "unknown weight")
    return weight_cls(**value)


def load_config(path: str | Path) -> EngineConfig:
    """Load an EngineConfig from a YAML file.

    An empty file yields the defaults.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise InvalidArgument("config", f"invalid YAML in {config_path}: {exc}") from exc

    config = EngineConfig.from_dict(data)
    logger.debug("Loaded config from %s", config_path)
    return config
