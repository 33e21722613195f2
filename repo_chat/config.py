"""Pydantic models for repo-chat configuration and config file loading."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from repo_chat import constants
from repo_chat.core.utils import console

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "repo-chat" / "config.toml"
CONFIG_PATH_2 = Path("repo-chat-config.toml")


def _replace_dashed_keys_recursive(d: dict[str, Any]) -> dict[str, Any]:
    """Recursively replace dashed keys with underscores in a dictionary."""
    new_dict = {}
    for k, v in d.items():
        new_key = k.replace("-", "_")
        if isinstance(v, dict):
            new_dict[new_key] = _replace_dashed_keys_recursive(v)
        else:
            new_dict[new_key] = v
    return new_dict


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file and process it for nested structures."""
    # Determine which config path to use
    if config_path_str:
        config_path = Path(config_path_str)
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                cfg = tomllib.load(f)
                return _replace_dashed_keys_recursive(cfg)
        except tomllib.TOMLDecodeError as e:
            console.print(
                f"[bold red]Error parsing config file {config_path}: {e}[/bold red]",
            )
            return {}

    # Report error only if an explicit path was given
    if config_path_str:
        console.print(
            f"[bold red]Config file not found at {config_path_str}[/bold red]",
        )
    return {}


# --- Pydantic Models for Configuration ---

# --- Panel: Model Provider ---


class ProviderSettings(BaseModel):
    """Configuration for the generation backend."""

    model: str = constants.DEFAULT_MODEL
    api_key: str | None = None
    base_url: str = constants.DEFAULT_BASE_URL
    precise_token_count: bool = False


# --- Panel: Repository Source ---


class GitHub(BaseModel):
    """Configuration for the GitHub repository source."""

    github_token: str | None = None
    api_url: str = constants.GITHUB_API_URL


# --- Panel: Pricing ---


class Pricing(BaseModel):
    """Prices per one million tokens."""

    input_per_million: float = constants.INPUT_PRICE_PER_MILLION
    output_per_million: float = constants.OUTPUT_PRICE_PER_MILLION


# --- Panel: Storage ---


class Storage(BaseModel):
    """Where and how often session state is saved."""

    state_dir: Path | None = None
    persist_debounce_seconds: float = constants.PERSIST_DEBOUNCE_SECONDS

    @field_validator("state_dir", mode="before")
    @classmethod
    def _expand_user_path(cls, v: str | None) -> Path | None:
        if v:
            return Path(v).expanduser()
        return None


# --- Panel: General Options ---


class General(BaseModel):
    """General configuration parameters for logging and I/O."""

    log_level: str = "WARNING"
    log_file: str | None = None
    quiet: bool = False


class Settings(BaseModel):
    """All configuration panels together."""

    provider: ProviderSettings = ProviderSettings()
    github: GitHub = GitHub()
    pricing: Pricing = Pricing()
    storage: Storage = Storage()
    general: General = General()
