"""Note snapshots: the NoteRecord type and the stores that supply them."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Protocol

import yaml

from notegraph.errors import InvalidArgument, NotFoundError

# Matches YAML frontmatter delimited by ---
_FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---\n?", re.DOTALL)

_TITLE_LENGTH = 80


def normalize_tags(tags: Iterable[str] | str | None) -> tuple[str, ...]:
    """Strip, lower-case and de-duplicate tags, keeping first-seen order.

    Accepts a list or a comma separated string. A leading ``#`` is dropped.
    """
    if tags is None:
        return ()
    if isinstance(tags, str):
        tags = tags.split(",")

    seen: dict[str, None] = {}
    for tag in tags:
        norm = str(tag).strip().lstrip("#").strip().lower()
        if norm:
            seen.setdefault(norm, None)
    return tuple(seen)


@dataclass(frozen=True)
class NoteRecord:
    """An immutable snapshot of a single note."""

    id: str
    text_content: str = ""  # refined text, else raw OCR text, else empty
    tags: tuple[str, ...] = ()
    image_ref: str | bytes | None = None
    created_at: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, timezone.utc))
    title: str = ""

    def __post_init__(self):
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        if not self.title:
            object.__setattr__(self, "title", _title_from_text(self.text_content))

    @property
    def tag_set(self) -> frozenset[str]:
        return frozenset(self.tags)


def _title_from_text(text: str) -> str:
    for line in text.splitlines():
        line = line.strip().lstrip("#").strip()
        if line:
            return line[:_TITLE_LENGTH]
    return "Untitled"


class NoteStore(Protocol):
    """Read-only source of note snapshots."""

    def list_notes(
        self, filter: Callable[[NoteRecord], bool] | None = None
    ) -> list[NoteRecord]: ...

    def get_note(self, note_id: str) -> NoteRecord: ...


def check_snapshot(notes: Iterable[NoteRecord]) -> None:
    """Reject snapshots that reuse a note id."""
    seen: set[str] = set()
    for note in notes:
        if note.id in seen:
            raise InvalidArgument("notes", f"duplicate note id {note.id!r} in snapshot")
        seen.add(note.id)


class InMemoryNoteStore:
    """NoteStore over an already loaded list of notes. Ids must be unique."""

    def __init__(self, notes: Iterable[NoteRecord]):
        self._notes = list(notes)
        check_snapshot(self._notes)
        self._by_id = {n.id: n for n in self._notes}

    def list_notes(self, filter: Callable[[NoteRecord], bool] | None = None) -> list[NoteRecord]:
        if filter is None:
            return list(self._notes)
        return [n for n in self._notes if filter(n)]

    def get_note(self, note_id: str) -> NoteRecord:
        try:
            return self._by_id[note_id]
        except KeyError:
            raise NotFoundError(note_id) from None


def _parse_created(value: object, path: Path) -> datetime:
    if isinstance(value, datetime):
        created = value
    elif isinstance(value, date):
        created = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            created = datetime.fromisoformat(value.strip())
        except ValueError:
            created = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
    else:
        created = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)

    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def parse_note(path: Path) -> NoteRecord:
    """Parse a single markdown file into a NoteRecord.

    Frontmatter keys: ``id``, ``title``, ``tags``, ``image``, ``created``
    and ``ocr_text``. The body is the refined text; ``ocr_text`` is used
    when the body is empty. Relative image paths resolve against the
    note's directory.
    """
    raw = path.read_text(encoding="utf-8")

    frontmatter: dict = {}
    body = raw
    fm_match = _FRONTMATTER_RE.match(raw)
    if fm_match:
        try:
            frontmatter = yaml.safe_load(fm_match.group(1)) or {}
        except yaml.YAMLError:
            frontmatter = {}
        if not isinstance(frontmatter, dict):
            frontmatter = {}
        body = raw[fm_match.end() :]

    text = body.strip() or str(frontmatter.get("ocr_text") or "").strip()

    image_ref = None
    image = frontmatter.get("image")
    if image:
        image_path = Path(str(image))
        if not image_path.is_absolute():
            image_path = path.parent / image_path
        image_ref = str(image_path)

    return NoteRecord(
        id=str(frontmatter.get("id") or path.stem.lower()),
        text_content=text,
        tags=normalize_tags(frontmatter.get("tags")),
        image_ref=image_ref,
        created_at=_parse_created(frontmatter.get("created"), path),
        title=str(frontmatter.get("title") or ""),
    )


def load_vault(vault_path: str | Path) -> list[NoteRecord]:
    """Recursively load all markdown notes from a vault directory.

    Skips hidden directories (e.g. .obsidian, .trash).
    """
    vault = Path(vault_path)
    if not vault.is_dir():
        raise FileNotFoundError(f"Vault directory not found: {vault}")

    notes: list[NoteRecord] = []
    for md_file in sorted(vault.rglob("*.md")):
        # Skip hidden dirs
        if any(part.startswith(".") for part in md_file.relative_to(vault).parts):
            continue
        notes.append(parse_note(md_file))

    return notes


class VaultNoteStore(InMemoryNoteStore):
    """NoteStore backed by a directory of markdown notes."""

    def __init__(self, vault_path: str | Path):
        self.path = Path(vault_path)
        super().__init__(load_vault(self.path))
