"""Interactive chat about a GitHub repository.

This agent will:
- Restore the saved chat sessions.
- Load a repository into the active session on request.
- Send each message with the repository context it needs.
- Stream the response live, Ctrl+C stops it and keeps what arrived.
- Save the sessions when the work settles.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

import repo_chat.agents._cli_options as opts
from repo_chat import constants
from repo_chat.cli import app
from repo_chat.config import General, GitHub, ProviderSettings, Settings, Storage
from repo_chat.core.chat_state import (
    ChatLoopState,
    format_session_list,
    handle_slash_command,
    parse_slash_command,
    short_id,
)
from repo_chat.core.utils import (
    console,
    print_with_style,
    setup_rich_logging,
    sigint_callback,
)
from repo_chat.models import Message, Role
from repo_chat.persistence import JsonStateStore
from repo_chat.services.github import GitHubRepoSource
from repo_chat.services.llm import PydanticAIBackend
from repo_chat.store import ChatStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from rich.console import RenderableType

LOGGER = logging.getLogger(__name__)

_LIVE_THINKING_STEPS = 5

# --- Setup ---


def build_store(settings: Settings) -> ChatStore:
    """Create the store for ``settings`` and restore its saved state."""
    store = ChatStore(
        backend=PydanticAIBackend(settings.provider),
        state=JsonStateStore(settings.storage.state_dir),
        settings=settings,
    )
    store.hydrate()
    github_token = settings.github.github_token or store.credentials.get("github_token")
    store.repo_source = GitHubRepoSource(github_token, api_url=settings.github.api_url)
    return store


# --- Rendering ---


def _sources(message: Message) -> list[str]:
    urls: list[str] = []
    grounding = message.grounding_metadata or {}
    for chunk in grounding.get("grounding_chunks", []):
        uri = chunk.get("web", {}).get("uri")
        if uri and uri not in urls:
            urls.append(uri)
    url_context = message.url_context_metadata or {}
    for entry in url_context.get("url_metadata", []):
        uri = entry.get("retrieved_url")
        if uri and uri not in urls:
            urls.append(uri)
    return urls


def render_message(message: Message) -> RenderableType:
    """Render one message for the terminal."""
    if message.role == Role.SYSTEM:
        return Text(f"ℹ {message.content}", style="dim italic")  # noqa: RUF001
    if message.role == Role.USER:
        body = Text(message.content)
        if message.attachments:
            body.append("\n📎 " + ", ".join(a.name for a in message.attachments), style="dim")
        return Panel(
            body,
            title=f"👤 You [{short_id(message.id)}]",
            title_align="left",
            border_style="blue",
        )
    if message.is_error:
        return Panel(Text(message.content), title="Error", border_style="bold red")

    parts: list[RenderableType] = []
    if message.is_thinking and message.thinking_steps:
        steps = message.thinking_steps[-_LIVE_THINKING_STEPS:]
        parts.append(Text("\n".join(f"• {step}" for step in steps), style="dim"))
    if message.content:
        parts.append(Markdown(message.content))
    else:
        parts.append(Text("Thinking..." if message.is_thinking else "(no response)", style="dim"))
    sources = _sources(message)
    if sources:
        parts.append(Text("Sources:\n" + "\n".join(f"  {url}" for url in sources), style="cyan"))
    subtitle = f"{len(message.thinking_steps)} reasoning steps" if message.thinking_steps else ""
    return Panel(
        Group(*parts),
        title="🤖 AI",
        title_align="left",
        subtitle=f"[dim]{subtitle}[/dim]" if subtitle else None,
        border_style="yellow" if message.is_thinking else "green",
    )


def _new_messages(store: ChatStore, before: set[str]) -> list[Message]:
    session = store.active_session
    if session is None:
        return []
    return [m for m in session.messages if m.id not in before]


# --- Main Application Logic ---


async def _run_action(
    store: ChatStore,
    action: Callable[[], str | None],
    *,
    quiet: bool,
) -> None:
    """Run a store action, follow the work it scheduled and print what it added."""
    session = store.active_session
    before = {m.id for m in session.messages} if session else set()
    response = action()
    if response and not quiet:
        print_with_style(response, style="yellow")

    if store.is_busy:
        if quiet:
            await store.wait_idle()
        else:
            with (
                Live(Text("Working...", style="dim"), console=console, transient=True, refresh_per_second=8) as live,
                sigint_callback(store.cancel),
            ):

                def refresh(current: ChatStore) -> None:
                    live.update(Group(*(render_message(m) for m in _new_messages(current, before))))

                unsubscribe = store.subscribe(refresh)
                try:
                    await store.wait_idle()
                finally:
                    unsubscribe()

    for message in _new_messages(store, before):
        if quiet and message.role != Role.MODEL:
            continue
        console.print(render_message(message))


async def _handle_input(store: ChatStore, state: ChatLoopState, text: str, *, quiet: bool) -> None:
    command = parse_slash_command(text)
    if command is not None:
        name, args = command
        await _run_action(store, lambda: handle_slash_command(name, args, store, state), quiet=quiet)
        return

    def send() -> None:
        task = store.send(
            text,
            list(state.attachments),
            use_url_tool=state.use_url_tool,
            use_search_tool=state.use_search_tool,
        )
        if task is not None:
            state.attachments.clear()

    await _run_action(store, send, quiet=quiet)


def _chat_loop(store: ChatStore, *, repo: str | None, quiet: bool) -> None:
    state = ChatLoopState()
    with asyncio.Runner() as runner:
        if repo:
            runner.run(_run_action(store, lambda: handle_slash_command("load", [repo], store, state), quiet=quiet))
        while not state.exit_requested:
            try:
                text = console.input("[bold blue]> [/bold blue]")
            except (EOFError, KeyboardInterrupt):
                break
            if not text.strip():
                continue
            runner.run(_handle_input(store, state, text, quiet=quiet))
        runner.run(store.aclose())


@app.command("chat")
def chat(
    *,
    # --- Model Options ---
    model: str = opts.MODEL,
    gemini_api_key: str | None = opts.GEMINI_API_KEY,
    base_url: str = opts.BASE_URL,
    precise_token_count: bool = opts.PRECISE_TOKEN_COUNT,
    # --- Repository Options ---
    github_token: str | None = opts.GITHUB_TOKEN,
    repo: str | None = opts.REPO,
    # --- Storage Options ---
    state_dir: Path | None = opts.STATE_DIR,
    # --- General Options ---
    log_level: str = opts.LOG_LEVEL,
    log_file: str | None = opts.LOG_FILE,
    quiet: bool = opts.QUIET,
) -> None:
    """Chat with Gemini about a GitHub repository."""
    setup_rich_logging(log_level, log_file=log_file)
    settings = Settings(
        provider=ProviderSettings(
            model=model,
            api_key=gemini_api_key,
            base_url=base_url,
            precise_token_count=precise_token_count,
        ),
        github=GitHub(github_token=github_token),
        storage=Storage(state_dir=state_dir),
        general=General(log_level=log_level, log_file=log_file, quiet=quiet),
    )
    store = build_store(settings)
    if model != constants.DEFAULT_MODEL:
        # An explicit --model beats the saved selection for this run
        store.model_id = model

    if not quiet:
        session = store.active_session
        title = session.title if session else constants.DEFAULT_SESSION_TITLE
        print_with_style(f"💬 {title} ({store.model_id}). Type /help for commands.", style="bold green")
        if not store.api_key:
            print_with_style("No Gemini API key set. Use /key <api-key> or set GEMINI_API_KEY.", style="yellow")

    _chat_loop(store, repo=repo, quiet=quiet)


@app.command("sessions")
def sessions(
    *,
    state_dir: Path | None = opts.STATE_DIR,
) -> None:
    """List the saved chat sessions."""
    settings = Settings(storage=Storage(state_dir=state_dir))
    store = build_store(settings)
    console.print(format_session_list(store))
