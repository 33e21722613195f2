"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
import io
from typing import TYPE_CHECKING

import pytest
from rich.console import Console

from repo_chat.config import ProviderSettings, Settings, Storage
from repo_chat.models import ChatSession, ProjectFile
from repo_chat.persistence import JsonStateStore

if TYPE_CHECKING:
    from pathlib import Path


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(3))


@pytest.fixture
def mock_console() -> Console:
    """Provide a console that writes to a StringIO for testing."""
    return Console(file=io.StringIO(), width=80, force_terminal=True)


@pytest.fixture
def state_store(tmp_path: Path) -> JsonStateStore:
    """A state store in a temporary directory."""
    return JsonStateStore(tmp_path / "state")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with an API key and a temporary state directory."""
    return Settings(
        provider=ProviderSettings(api_key="test-key"),
        storage=Storage(state_dir=str(tmp_path / "state"), persist_debounce_seconds=0.01),
    )


@pytest.fixture
def project_files() -> list[ProjectFile]:
    """A tiny two-file project."""
    return [
        ProjectFile(path="a.ts", content="export const a=1;"),
        ProjectFile(path="b.ts", content="export const b=2;"),
    ]


@pytest.fixture
def session() -> ChatSession:
    """An empty session."""
    return ChatSession()
