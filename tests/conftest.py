"""Shared fixtures."""

import io
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from notegraph.vault import NoteRecord

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def gradient_image():
    """Factory for PNG bytes of a horizontal gradient (rising or falling)."""

    def make(reverse: bool = False, size=(72, 64)) -> bytes:
        width, height = size
        img = Image.new("L", size)
        ramp = [int(255 * x / (width - 1)) for x in range(width)]
        if reverse:
            ramp.reverse()
        img.putdata(ramp * height)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    return make


@pytest.fixture
def make_note():
    """Factory for NoteRecords; ``day`` offsets created_at from a fixed base."""

    def make(note_id, text="", tags=(), image=None, day=0):
        return NoteRecord(
            id=note_id,
            text_content=text,
            tags=tags,
            image_ref=image,
            created_at=BASE_TIME + timedelta(days=day),
        )

    return make
