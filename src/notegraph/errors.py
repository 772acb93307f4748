"""Typed errors raised by the correlation engine."""

from __future__ import annotations

from typing import Any


class NotegraphError(Exception):
    """Base class for every error raised by notegraph."""

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}


class NotFoundError(NotegraphError, KeyError):
    """A note id is absent from the current snapshot."""

    def __init__(self, note_id: str):
        super().__init__(f"Note not found: {note_id!r}", context={"note_id": note_id})
        self.note_id = note_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.message


class ImageDecodeError(NotegraphError):
    """An image reference could not be read or decoded.

    Never fatal: callers drop the image signal for the affected note.
    """

    def __init__(self, ref: object, reason: str, *, note_id: str | None = None):
        shown = f"<{len(ref)} bytes>" if isinstance(ref, (bytes, bytearray)) else repr(ref)
        super().__init__(
            f"Cannot decode image {shown}: {reason}",
            context={"note_id": note_id, "reason": reason},
        )
        self.note_id = note_id
        self.reason = reason


class InvalidArgument(NotegraphError, ValueError):
    """A threshold, weight or other option is outside its valid range."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}", context={"field": field})
        self.field = field


class Cancelled(NotegraphError):
    """A batch operation was aborted by its cancel token or deadline."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Operation cancelled: {reason}", context={"reason": reason})
        self.reason = reason
