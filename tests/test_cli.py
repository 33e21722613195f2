"""Tests for the CLI."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import patch

from typer.testing import CliRunner

from repo_chat import constants
from repo_chat.cli import app

if TYPE_CHECKING:
    from pathlib import Path

    import pytest

runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})


def test_main_no_args() -> None:
    """Test the main function with no arguments."""
    result = runner.invoke(app)
    assert "No command specified" in result.stdout
    assert "Usage" in result.stdout


@patch("repo_chat.agents.chat.setup_rich_logging")
def test_main_with_args(mock_setup_logging: pytest.MagicMock) -> None:
    """Test the main function with arguments."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "Usage" in result.stdout
    assert "chat" in result.stdout
    assert "sessions" in result.stdout
    mock_setup_logging.assert_not_called()


def test_chat_help() -> None:
    result = runner.invoke(app, ["chat", "--help"])
    assert result.exit_code == 0
    assert "--repo" in result.stdout
    assert "--state-dir" in result.stdout


def test_sessions_lists_saved_sessions(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    result = runner.invoke(app, ["sessions", "--state-dir", str(state_dir)])
    assert result.exit_code == 0
    assert "Sessions:" in result.stdout
    assert f"1. {constants.DEFAULT_SESSION_TITLE}" in result.stdout


@patch("repo_chat.agents.chat.setup_rich_logging")
def test_chat_runs_commands_until_exit(mock_setup_logging: pytest.MagicMock, tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    result = runner.invoke(
        app,
        ["chat", "--state-dir", str(state_dir), "--gemini-api-key", "test-key"],
        input="/rename Notes\n/usage\n/exit\n",
    )
    assert result.exit_code == 0
    assert "Type /help for commands." in result.stdout
    assert "Renamed session to: Notes" in result.stdout
    assert "Context:" in result.stdout
    assert "Goodbye!" in result.stdout
    mock_setup_logging.assert_called_once()

    saved = json.loads((state_dir / f"{constants.SESSIONS_KEY}.json").read_text())
    assert saved[0]["title"] == "Notes"


@patch("repo_chat.agents.chat.setup_rich_logging")
def test_chat_warns_without_api_key(
    mock_setup_logging: pytest.MagicMock,  # noqa: ARG001
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    result = runner.invoke(app, ["chat", "--state-dir", str(tmp_path)], input="/exit\n")
    assert result.exit_code == 0
    assert "No Gemini API key set" in result.stdout
