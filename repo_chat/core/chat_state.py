"""Chat loop state and slash command handling.

This module keeps the per-run toggles of the interactive chat and turns
slash commands like /new, /load, /sync, /edit and /usage into store actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from repo_chat import constants
from repo_chat.models import Attachment, Role

if TYPE_CHECKING:
    from repo_chat.models import ChatSession, Message
    from repo_chat.store import ChatStore

SHORT_ID_LENGTH = 8


@dataclass
class ChatLoopState:
    """Runtime toggles for an interactive chat run."""

    use_search_tool: bool = False
    use_url_tool: bool = False
    exit_requested: bool = False
    attachments: list[Attachment] = field(default_factory=list)
    """Files queued for the next message."""

    def set_tool(self, tool: str, enabled: bool) -> None:
        """Switch the search or URL tool on or off."""
        if tool == "search":
            self.use_search_tool = enabled
        else:
            self.use_url_tool = enabled


def parse_slash_command(text: str) -> tuple[str, list[str]] | None:
    """Parse a slash command from text.

    Args:
        text: The input text to parse

    Returns:
        Tuple of (command, args) if it's a slash command, None otherwise

    """
    text = text.strip()
    if not text.startswith("/"):
        return None

    parts = text[1:].split()
    if not parts:
        return None

    command = parts[0].lower()
    args = parts[1:]
    return command, args


def short_id(message_id: str) -> str:
    """The abbreviated message id shown in the transcript."""
    return message_id.removeprefix("msg-")[:SHORT_ID_LENGTH]


def find_message(session: ChatSession, ref: str) -> Message | None:
    """Find a message by full id or by a unique prefix of its short id."""
    exact = session.get_message(ref)
    if exact is not None:
        return exact
    ref = ref.removeprefix("msg-")
    matches = [m for m in session.messages if m.id.removeprefix("msg-").startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def handle_slash_command(
    command: str,
    args: list[str],
    store: ChatStore,
    state: ChatLoopState,
) -> str:
    """Execute a slash command and return a response message.

    Commands that need the network (/load, /sync, /summarize) only schedule
    their work; the caller waits for the store to become idle.

    Args:
        command: The command name (without slash)
        args: Command arguments
        store: The session store
        state: The chat loop state

    Returns:
        Response message to display to the user

    """
    handlers = {
        "help": lambda: _handle_help(),
        "new": lambda: _handle_new(store),
        "sessions": lambda: format_session_list(store),
        "switch": lambda: _handle_switch(args, store),
        "delete": lambda: _handle_delete(args, store),
        "rename": lambda: _handle_rename(args, store),
        "load": lambda: _handle_load(args, store),
        "sync": lambda: _handle_sync(store),
        "files": lambda: _handle_files(store),
        "attach": lambda: _handle_attach(args, state),
        "detach": lambda: _handle_detach(state),
        "rm": lambda: _handle_rm(args, store),
        "edit": lambda: _handle_edit(args, store),
        "model": lambda: _handle_model(args, store),
        "search": lambda: _handle_tool("search", args, state),
        "url": lambda: _handle_tool("url", args, state),
        "system": lambda: _handle_system(args, store),
        "key": lambda: _handle_key(args, store),
        "summarize": lambda: _handle_summarize(store),
        "usage": lambda: format_usage(store),
        "exit": lambda: _handle_exit(state),
        "quit": lambda: _handle_exit(state),
    }
    handler = handlers.get(command)
    if handler is None:
        return f"Unknown command: /{command}. Type /help for available commands."
    return handler()


def _handle_help() -> str:
    """Show help message."""
    return """\
Available commands:
  /new                 Start a new chat session
  /sessions            List sessions
  /switch <n>          Switch to session number n
  /delete [<n>]        Delete session n (default: the current one)
  /rename <title>      Rename the current session
  /load <url>          Load a GitHub repository into the session
  /sync                Fetch repository changes since the last load or sync
  /files               List the project files in the session
  /attach [<path>...]  Attach local files to the next message (or list them)
  /detach              Drop the queued attachments
  /rm <id>             Delete a message and its response
  /edit <id> <text>    Replace a message and regenerate from there
  /model [<id>]        Show or select the model
  /search on|off       Toggle the web search tool
  /url on|off          Toggle the URL fetch tool
  /system [<text>]     Set (or clear) the system instruction
  /key <api-key>       Save the Gemini API key
  /summarize           Summarize the conversation
  /usage               Show token usage and cost
  /help                Show this help message
  /exit                Leave the chat

Reference project files with @path (or @dir/ for a whole directory).

Keyboard shortcuts:
  Enter          Send message
  Ctrl+C         Stop the current response (exit when idle)"""


def format_session_list(store: ChatStore) -> str:
    """One line per session, the active one marked."""
    lines = ["Sessions:"]
    for number, session in enumerate(store.sessions, start=1):
        marker = "*" if session.id == store.active_session_id else " "
        repo = f" [{session.repo_url}]" if session.repo_url else ""
        lines.append(
            f" {marker} {number}. {session.title} ({len(session.conversation())} messages){repo}",
        )
    return "\n".join(lines)


def _session_by_number(args: list[str], store: ChatStore) -> ChatSession | str:
    try:
        number = int(args[0])
    except ValueError:
        return f"Invalid session number: {args[0]}"
    if not 1 <= number <= len(store.sessions):
        return f"No session {number}. Use /sessions to list them."
    return store.sessions[number - 1]


def _handle_new(store: ChatStore) -> str:
    store.create_session()
    return "Started a new session"


def _handle_switch(args: list[str], store: ChatStore) -> str:
    if not args:
        return "Usage: /switch <n>"
    session = _session_by_number(args, store)
    if isinstance(session, str):
        return session
    store.select_session(session.id)
    return f"Switched to: {session.title}"


def _handle_delete(args: list[str], store: ChatStore) -> str:
    session = _session_by_number(args, store) if args else store.active_session
    if isinstance(session, str):
        return session
    if session is None:
        return "No session to delete"
    store.delete_session(session.id)
    return f"Deleted session: {session.title}"


def _handle_rename(args: list[str], store: ChatStore) -> str:
    session = store.active_session
    if not args or session is None:
        return "Usage: /rename <title>"
    store.rename_session(session.id, " ".join(args))
    return f"Renamed session to: {session.title}"


def _handle_load(args: list[str], store: ChatStore) -> str:
    if not args:
        return "Usage: /load <github-url>"
    if store.load_repo(args[0]) is None:
        return "Cannot load a repository right now"
    return f"Loading {args[0]}..."


def _handle_sync(store: ChatStore) -> str:
    session = store.active_session
    if session is None or not session.repo_url:
        return "No repository loaded. Use /load <url> first."
    if store.sync_repo() is None:
        return "Cannot sync right now"
    return f"Syncing {session.repo_url}..."


def _handle_files(store: ChatStore) -> str:
    session = store.active_session
    if session is None or not session.project_files:
        return "No project files loaded"
    lines = [f"{len(session.project_files)} files (~{session.project_token_count:,} tokens):"]
    lines.extend(f"  {path}" for path in session.project_paths)
    if session.pending_context_update is not None:
        lines.append("Changes waiting to be sent with the next message.")
    return "\n".join(lines)


def _handle_rm(args: list[str], store: ChatStore) -> str:
    session = store.active_session
    if not args or session is None:
        return "Usage: /rm <id>"
    message = find_message(session, args[0])
    if message is None or message.role != Role.USER:
        return f"No user message with id {args[0]}"
    if not store.delete_message(message.id):
        return "Cannot delete messages while a response is being generated"
    return f"Deleted message {short_id(message.id)} and its response"


def _handle_edit(args: list[str], store: ChatStore) -> str:
    session = store.active_session
    if len(args) < 2 or session is None:  # noqa: PLR2004
        return "Usage: /edit <id> <text>"
    message = find_message(session, args[0])
    if message is None or message.role != Role.USER:
        return f"No user message with id {args[0]}"
    if not store.edit_message(message.id, " ".join(args[1:])):
        return "Cannot edit messages while a response is being generated"
    return f"Edited message {short_id(message.id)}, regenerating..."


def _handle_model(args: list[str], store: ChatStore) -> str:
    if not args:
        lines = [f"Current model: {store.model_id}", "Available models:"]
        lines.extend(f"  {model_id} ({name})" for name, model_id in constants.AVAILABLE_MODELS.items())
        return "\n".join(lines)
    store.select_model(args[0])
    return f"Using model: {args[0]}"


def _handle_tool(tool: str, args: list[str], state: ChatLoopState) -> str:
    current = state.use_search_tool if tool == "search" else state.use_url_tool
    if not args:
        enabled = not current
    elif args[0].lower() in ("on", "off"):
        enabled = args[0].lower() == "on"
    else:
        return f"Invalid argument: {args[0]}. Use /{tool}, /{tool} on, or /{tool} off"
    state.set_tool(tool, enabled)
    status = "on" if enabled else "off"
    return f"The {tool} tool is now {status}"


def _handle_system(args: list[str], store: ChatStore) -> str:
    store.set_system_instruction(" ".join(args))
    if store.system_instruction is None:
        return "Cleared the system instruction"
    return "Saved the system instruction"


def _handle_key(args: list[str], store: ChatStore) -> str:
    if not args:
        return "Usage: /key <api-key>"
    store.set_credentials(api_key=args[0])
    return "Saved the API key"


def _handle_summarize(store: ChatStore) -> str:
    if store.summarize_session() is None:
        return "Nothing to summarize (or no API key set)"
    return "Summarizing..."


def format_usage(store: ChatStore) -> str:
    """Token usage of the active session and the spend across all sessions."""
    session = store.active_session
    if session is None:
        return "No active session"
    return "\n".join(
        [
            f"Context: {session.context_token_count:,} / {constants.CONTEXT_WINDOW_LIMIT:,} tokens"
            f" ({session.context_usage_ratio:.1%})",
            f"  project files: {session.project_token_count:,}",
            f"  conversation:  {session.history_token_count:,}",
            f"Session billed: {session.billed_token_count:,} tokens, ${session.cost:.4f}",
            f"All sessions:   {store.total_billed_tokens:,} tokens, ${store.total_cost:.4f}",
        ],
    )


def _handle_exit(state: ChatLoopState) -> str:
    state.exit_requested = True
    return "Goodbye!"


def _handle_attach(args: list[str], state: ChatLoopState) -> str:
    if not args:
        if not state.attachments:
            return "No attachments queued. Usage: /attach <path>..."
        names = ", ".join(a.name for a in state.attachments)
        return f"Queued for the next message: {names}"
    lines = []
    for arg in args:
        path = Path(arg).expanduser()
        try:
            attachment = Attachment.from_path(path)
        except OSError as e:
            lines.append(f"Cannot attach {arg}: {e.strerror or e}")
            continue
        state.attachments.append(attachment)
        lines.append(f"Attached {attachment.name} ({attachment.mime_type})")
    return "\n".join(lines)


def _handle_detach(state: ChatLoopState) -> str:
    count = len(state.attachments)
    state.attachments.clear()
    return f"Dropped {count} queued attachment(s)"
