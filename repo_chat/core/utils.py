"""Console, logging and signal helpers shared by the CLI."""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import contextmanager, suppress
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

console = Console()
err_console = Console(stderr=True)


def setup_rich_logging(
    log_level: str = "warning",
    *,
    log_file: str | None = None,
    console: Console | None = None,
) -> None:
    """Configure logging to use Rich for consistent, pretty output.

    Args:
        log_level: Logging level (debug, info, warning, error).
        log_file: Optional path that additionally receives plain log lines.
        console: Optional Rich console to use (defaults to stderr).

    """
    level = getattr(logging, log_level.upper(), logging.WARNING)
    handler = RichHandler(
        console=console or err_console,
        show_time=True,
        show_level=True,
        show_path=False,  # Don't show file:line - too verbose
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
        )
        root.addHandler(file_handler)

    # Suppress noisy logs from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def print_with_style(message: str, style: str = "bold green") -> None:
    """Print a message with a given style."""
    console.print(Text(message, style=style))


@contextmanager
def sigint_callback(callback: Callable[[], object]) -> Generator[None, None, None]:
    """Route Ctrl+C to ``callback`` on the running loop while inside the block."""
    loop = asyncio.get_running_loop()
    installed = False
    with suppress(NotImplementedError, RuntimeError):  # e.g. Windows event loops
        loop.add_signal_handler(signal.SIGINT, callback)
        installed = True
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
