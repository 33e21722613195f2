"""Shared CLI options for repo-chat commands."""

from __future__ import annotations

import typer

from repo_chat import constants

# --- Model Options ---
MODEL = typer.Option(
    constants.DEFAULT_MODEL,
    "--model",
    "-m",
    help="Name of the Gemini model to use.",
    rich_help_panel="Model Options",
)
GEMINI_API_KEY = typer.Option(
    None,
    "--gemini-api-key",
    envvar="GEMINI_API_KEY",
    help="Gemini API key. Falls back to the key saved with /key.",
    rich_help_panel="Model Options",
)
BASE_URL = typer.Option(
    constants.DEFAULT_BASE_URL,
    "--base-url",
    help="OpenAI-compatible endpoint of the model provider.",
    rich_help_panel="Model Options",
)
PRECISE_TOKEN_COUNT = typer.Option(
    False,
    "--precise-token-count/--estimate-token-count",
    help="Count input tokens with the provider instead of estimating them.",
    rich_help_panel="Model Options",
)

# --- Repository Options ---
GITHUB_TOKEN = typer.Option(
    None,
    "--github-token",
    envvar="GITHUB_TOKEN",
    help="GitHub token for private repositories and higher rate limits.",
    rich_help_panel="Repository Options",
)
REPO = typer.Option(
    None,
    "--repo",
    help="GitHub repository URL to load into the session on start.",
    rich_help_panel="Repository Options",
)

# --- Storage Options ---
STATE_DIR = typer.Option(
    None,
    "--state-dir",
    help="Directory holding saved sessions (default: ~/.config/repo-chat/state).",
    rich_help_panel="Storage Options",
)

# --- General Options ---
LOG_LEVEL = typer.Option(
    "WARNING",
    "--log-level",
    help="Set the log level (e.g., DEBUG, INFO, WARNING).",
    rich_help_panel="General Options",
)
LOG_FILE = typer.Option(
    None,
    "--log-file",
    help="Path to a file to write logs to.",
    rich_help_panel="General Options",
)
QUIET = typer.Option(
    False,
    "--quiet",
    "-q",
    help="Only print responses, no banners or notices.",
    rich_help_panel="General Options",
)
