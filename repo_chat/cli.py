"""Shared CLI functionality for repo-chat."""

from __future__ import annotations

from typing import Annotated

import typer

from .config import load_config
from .core.utils import console

app = typer.Typer(
    name="repo-chat",
    help="Chat with Gemini about a GitHub repository, from the terminal.",
    add_completion=True,
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_file: Annotated[
        str | None,
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """Chat with Gemini about a GitHub repository."""
    if ctx.invoked_subcommand is None:
        console.print("[bold red]No command specified.[/bold red]")
        console.print("[bold yellow]Running --help for your convenience.[/bold yellow]")
        console.print(ctx.get_help())
        raise typer.Exit
    import dotenv  # noqa: PLC0415

    dotenv.load_dotenv()
    set_config_defaults(ctx, config_file)


def set_config_defaults(ctx: typer.Context, config_file: str | None) -> None:
    """Set the default values for the CLI based on the config file.

    The ``[defaults]`` table applies to every command; a table named after the
    invoked command overrides it.
    """
    config = load_config(config_file)
    wildcard_config = config.get("defaults", {})
    subcommand = ctx.invoked_subcommand

    if not subcommand:
        ctx.default_map = wildcard_config
        return

    command_config = config.get(subcommand, {})
    defaults = {**wildcard_config, **command_config}
    ctx.default_map = {subcommand: defaults}


# Import commands from other modules to register them
from .agents import chat  # noqa: E402, F401
