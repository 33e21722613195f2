"""Tests for the session data models."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import pytest

from repo_chat.models import Attachment

if TYPE_CHECKING:
    from pathlib import Path


def test_image_file_becomes_data_url(tmp_path: Path) -> None:
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG fake")
    attachment = Attachment.from_path(image)
    assert attachment.name == "shot.png"
    assert attachment.mime_type == "image/png"
    assert attachment.is_image
    assert attachment.data == "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
    assert attachment.inline_bytes() == b"\x89PNG fake"


def test_other_files_are_read_as_text(tmp_path: Path) -> None:
    notes = tmp_path / "notes.md"
    notes.write_text("# Notes\nhéllo\n", encoding="utf-8")
    attachment = Attachment.from_path(notes)
    assert not attachment.is_image
    assert attachment.data == "# Notes\nhéllo\n"


def test_unknown_type_defaults_to_octet_stream(tmp_path: Path) -> None:
    blob = tmp_path / "Makefile"
    blob.write_text("all:\n")
    attachment = Attachment.from_path(blob)
    assert attachment.mime_type == "application/octet-stream"
    assert attachment.data == "all:\n"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):  # noqa: PT011
        Attachment.from_path(tmp_path / "missing.txt")
