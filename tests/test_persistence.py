"""Tests for the JSON state store."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from repo_chat.persistence import JsonStateStore

if TYPE_CHECKING:
    from pathlib import Path


def test_read_missing_key_returns_none(state_store: JsonStateStore) -> None:
    assert state_store.read("chat_sessions") is None


def test_write_then_read(state_store: JsonStateStore) -> None:
    state_store.write("credentials", {"api_key": "k"})
    assert state_store.read("credentials") == {"api_key": "k"}
    assert not list(state_store.root.glob("*.tmp"))


def test_keys_map_to_safe_file_names(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path)
    store.write("../weird key", [1, 2])
    assert (tmp_path / "___weird_key.json").exists()
    assert json.loads((tmp_path / "___weird_key.json").read_text()) == [1, 2]


def test_corrupt_content_raises_value_error(state_store: JsonStateStore) -> None:
    state_store.root.mkdir(parents=True)
    (state_store.root / "selected_model.json").write_text("{oops", encoding="utf-8")
    with pytest.raises(ValueError, match="Expecting"):
        state_store.read("selected_model")


def test_delete(state_store: JsonStateStore) -> None:
    state_store.write("system_instruction", "Be brief.")
    assert state_store.delete("system_instruction")
    assert not state_store.delete("system_instruction")
    assert state_store.read("system_instruction") is None
