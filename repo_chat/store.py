"""The session store: aggregate root for sessions, streaming and persistence.

Actions look synchronous. Work that has to wait on the network (sending,
syncing, loading a repository, summarizing) is scheduled as a task on the
running event loop and its effects show up in later reads of the store.
Every failure inside such a task is turned into a message in the
conversation; none of them escapes the store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from repo_chat import constants, history, prompts
from repo_chat.config import Settings
from repo_chat.context import build_payload, consume_context
from repo_chat.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    RepoSourceError,
    SendInProgressError,
    classify_backend_error,
)
from repo_chat.models import Attachment, ChatSession, Message, ProjectFile, Role
from repo_chat.services.types import GenerationOptions, Part, Turn
from repo_chat.streaming import StreamHandle, StreamingAccumulator, StreamPhase, consume_stream
from repo_chat.sync import apply_delta, sync_base_marker
from repo_chat.tokens import charge, estimate_file_tokens, estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from repo_chat.persistence import JsonStateStore
    from repo_chat.services.base import GenerationBackend, RepoSource

LOGGER = logging.getLogger(__name__)


def _system_notice(content: str) -> Message:
    return Message(role=Role.SYSTEM, content=content)


def _derive_title(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= constants.TITLE_MAX_LENGTH:
        return text
    return text[: constants.TITLE_MAX_LENGTH] + "..."


def _turn_parts(message: Message) -> list[Part]:
    parts = [Part(text=message.sent_content)]
    if message.role != Role.USER:
        return parts
    for attachment in message.attachments:
        if not attachment.is_image:
            continue
        try:
            data = attachment.inline_bytes()
        except ValueError:
            LOGGER.warning("Skipping undecodable image attachment %s", attachment.name)
            continue
        parts.append(Part(mime_type=attachment.mime_type, data=data))
    return parts


def build_history(messages: Sequence[Message]) -> list[Turn]:
    """Convert a message log into backend turns.

    System notices, empty placeholders and error replies are not part of the
    conversation the backend sees.
    """
    turns = []
    for message in messages:
        if message.role == Role.SYSTEM or message.is_error or not message.sent_content:
            continue
        role = "user" if message.role == Role.USER else "model"
        turns.append(Turn(role=role, parts=_turn_parts(message)))
    return turns


class ChatStore:
    """All chat sessions, the active-session pointer and their lifecycle."""

    def __init__(
        self,
        *,
        backend: GenerationBackend,
        repo_source: RepoSource | None = None,
        state: JsonStateStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize an empty store; call :meth:`hydrate` to load saved state."""
        self.backend = backend
        self.repo_source = repo_source
        self.state = state
        self.settings = settings or Settings()

        self.sessions: list[ChatSession] = []
        self.active_session_id: str | None = None
        self.model_id = self.settings.provider.model
        self.system_instruction: str | None = None
        self.credentials: dict[str, str] = {}

        self._streams: dict[str, StreamHandle] = {}
        self._syncing: set[str] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[Callable[[ChatStore], None]] = []
        self._dirty = False
        self._persist_timer: asyncio.TimerHandle | None = None

    # --- Derived State ---

    @property
    def active_session(self) -> ChatSession | None:
        """The currently selected session."""
        return self.get_session(self.active_session_id) if self.active_session_id else None

    @property
    def api_key(self) -> str | None:
        """The generation credential: configured value first, then the saved one."""
        return self.settings.provider.api_key or self.credentials.get("api_key")

    @property
    def is_loading(self) -> bool:
        """Whether any generation is in flight."""
        return bool(self._streams)

    @property
    def is_busy(self) -> bool:
        """Whether any scheduled work (send, load, sync, summary) is still running."""
        return bool(self._tasks)

    @property
    def total_cost(self) -> float:
        """Spend across every session."""
        return sum(s.cost for s in self.sessions)

    @property
    def total_billed_tokens(self) -> int:
        """Billed tokens across every session."""
        return sum(s.billed_token_count for s in self.sessions)

    def get_session(self, session_id: str) -> ChatSession | None:
        """Return a session by id, or None."""
        return next((s for s in self.sessions if s.id == session_id), None)

    def is_streaming(self, session_id: str | None = None) -> bool:
        """Whether a generation is in flight for the (active) session."""
        return (session_id or self.active_session_id) in self._streams

    def is_syncing(self, session_id: str | None = None) -> bool:
        """Whether a repository sync is in flight for the (active) session."""
        return (session_id or self.active_session_id) in self._syncing

    # --- Change Notification And Persistence ---

    def subscribe(self, listener: Callable[[ChatStore], None]) -> Callable[[], None]:
        """Call ``listener`` after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, *, persist: bool = True) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                LOGGER.exception("Store listener failed")
        if persist:
            self._schedule_persist()

    def _schedule_persist(self) -> None:
        self._dirty = True
        if self._persist_timer is not None:
            self._persist_timer.cancel()
            self._persist_timer = None
        if self._streams:
            # Flushed once when the in-flight generation settles
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._persist_timer = loop.call_later(
            self.settings.storage.persist_debounce_seconds,
            self.flush,
        )

    def _settled(self) -> None:
        if self._dirty and not self._streams:
            self.flush()

    def flush(self, *, force: bool = False) -> None:
        """Write sessions and the active-session id now.

        While a generation is in flight this only marks the state dirty,
        unless ``force`` is set.
        """
        if self._persist_timer is not None:
            self._persist_timer.cancel()
            self._persist_timer = None
        if self._streams and not force:
            self._dirty = True
            return
        self._dirty = False
        if self.state is None:
            return
        try:
            self.state.write(
                constants.SESSIONS_KEY,
                [s.model_dump(mode="json") for s in self.sessions],
            )
            if self.active_session_id:
                self.state.write(constants.ACTIVE_SESSION_KEY, self.active_session_id)
        except OSError:
            LOGGER.exception("Failed to save chat sessions")

    def hydrate(self) -> None:
        """Load saved state, falling back to one fresh session."""
        self.sessions = self._load_sessions()
        if not self.sessions:
            self.sessions = [ChatSession()]

        active_id = self._read_state(constants.ACTIVE_SESSION_KEY)
        if not isinstance(active_id, str) or self.get_session(active_id) is None:
            active_id = self.sessions[0].id
        self.active_session_id = active_id

        credentials = self._read_state(constants.CREDENTIALS_KEY)
        if isinstance(credentials, dict):
            self.credentials = {k: v for k, v in credentials.items() if isinstance(v, str) and v}
        instruction = self._read_state(constants.SYSTEM_INSTRUCTION_KEY)
        if isinstance(instruction, str) and instruction.strip():
            self.system_instruction = instruction
        model_id = self._read_state(constants.SELECTED_MODEL_KEY)
        if isinstance(model_id, str) and model_id:
            self.model_id = model_id
        self._changed(persist=False)

    def _read_state(self, key: str) -> Any:
        if self.state is None:
            return None
        try:
            return self.state.read(key)
        except (OSError, ValueError):
            LOGGER.warning("Ignoring unreadable saved state %r", key, exc_info=True)
            return None

    def _load_sessions(self) -> list[ChatSession]:
        raw = self._read_state(constants.SESSIONS_KEY)
        if not isinstance(raw, list):
            return []
        sessions = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            if "billed_token_count" not in item and "tokenCount" in item:
                item = {**item, "billed_token_count": item["tokenCount"]}
            try:
                session = ChatSession.model_validate(item)
            except ValidationError:
                LOGGER.warning("Skipping corrupt saved session %s", item.get("id"))
                continue
            for message in session.messages:
                # A stream cannot survive a restart
                message.is_thinking = False
            session.history_token_count = history.count_history_tokens(session.messages)
            session.project_token_count = estimate_file_tokens(session.project_files)
            sessions.append(session)
        return sessions

    async def aclose(self) -> None:
        """Cancel in-flight work, wait for it to settle and flush."""
        for handle in list(self._streams.values()):
            handle.request_cancel()
        await self.wait_idle()
        self.flush(force=True)

    # --- Settings ---

    def _save_setting(self, key: str, value: Any) -> None:
        """Write (or, for None, delete) one settings key; failures are logged."""
        if self.state is None:
            return
        try:
            if value is None:
                self.state.delete(key)
            else:
                self.state.write(key, value)
        except OSError:
            LOGGER.exception("Failed to save %s", key)

    def set_credentials(self, *, api_key: str | None = None, github_token: str | None = None) -> None:
        """Save credentials under their own key."""
        if api_key is not None:
            self.credentials["api_key"] = api_key
        if github_token is not None:
            self.credentials["github_token"] = github_token
        self._save_setting(constants.CREDENTIALS_KEY, self.credentials)

    def set_system_instruction(self, instruction: str | None) -> None:
        """Save the free-text system instruction sent with every turn."""
        self.system_instruction = instruction.strip() if instruction and instruction.strip() else None
        self._save_setting(constants.SYSTEM_INSTRUCTION_KEY, self.system_instruction)

    def select_model(self, model_id: str) -> None:
        """Use ``model_id`` for subsequent sends."""
        self.model_id = model_id
        self._save_setting(constants.SELECTED_MODEL_KEY, model_id)

    # --- Session Actions ---

    def create_session(self) -> ChatSession:
        """Start a new empty session and make it active."""
        session = ChatSession()
        self.sessions.insert(0, session)
        self.active_session_id = session.id
        self._changed()
        return session

    def select_session(self, session_id: str) -> bool:
        """Make ``session_id`` the active session."""
        if self.get_session(session_id) is None:
            LOGGER.warning("Cannot select unknown session %s", session_id)
            return False
        self.active_session_id = session_id
        self._changed()
        return True

    def delete_session(self, session_id: str) -> None:
        """Delete a session; the store never ends up with zero sessions."""
        handle = self._streams.get(session_id)
        if handle is not None:
            handle.request_cancel()
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if not self.sessions:
            self.sessions = [ChatSession()]
        if self.get_session(self.active_session_id or "") is None:
            self.active_session_id = self.sessions[0].id
        self._changed()

    def rename_session(self, session_id: str, title: str) -> bool:
        """Give a session a manual title."""
        session = self.get_session(session_id)
        if session is None or not title.strip():
            return False
        session.title = title.strip()
        self._changed()
        return True

    def attach_project_files(
        self,
        files: Sequence[ProjectFile],
        source_label: str,
        locator: str | None,
        revision_marker: str | None,
        *,
        session_id: str | None = None,
    ) -> None:
        """Bind a freshly fetched file set to a session.

        The full file set is injected with the next send.
        """
        session = self.get_session(session_id or self.active_session_id or "")
        if session is None:
            return
        session.project_files = list(files)
        session.project_token_count = estimate_file_tokens(session.project_files)
        session.repo_url = locator
        session.revision_marker = revision_marker
        session.context_stale = True
        session.pending_context_update = None
        history.append_message(
            session,
            _system_notice(
                prompts.FILES_ATTACHED_NOTICE.format(
                    count=len(session.project_files),
                    source=source_label,
                    tokens=session.project_token_count,
                ),
            ),
        )
        LOGGER.info(
            "Attached %d files (~%d tokens) to %s",
            len(session.project_files),
            session.project_token_count,
            session.id,
        )
        self._changed()

    def _notify_system(self, session_id: str, content: str) -> None:
        session = self.get_session(session_id)
        if session is None:
            return
        history.append_message(session, _system_notice(content))
        self._changed()

    # --- Message Actions ---

    def delete_message(self, message_id: str) -> bool:
        """Delete a user message and its response from the active session."""
        session = self.active_session
        if session is None or self.is_streaming(session.id):
            return False
        removed = history.delete_message(session, message_id)
        if not removed:
            return False
        self._changed()
        return True

    def edit_message(self, message_id: str, new_text: str) -> bool:
        """Truncate the active session before ``message_id`` and resend ``new_text``.

        The truncation is visible as soon as this returns; the resend is
        scheduled as a follow-up task with the original attachments and
        both tool toggles off.
        """
        session = self.active_session
        if session is None or self.is_streaming(session.id):
            return False
        # Raises RuntimeError outside a running loop, before the session changes
        asyncio.get_running_loop()
        edited = history.truncate_before(session, message_id)
        if edited is None:
            return False
        self._changed()

        session_id = session.id
        attachments = list(edited.attachments)

        async def resend() -> None:
            await asyncio.sleep(0)
            try:
                task = self.send(new_text, attachments, session_id=session_id)
            except SendInProgressError:
                LOGGER.warning("Dropping resend of edited message: session %s is busy", session_id)
                return
            if task is not None:
                await task

        self._spawn(resend())
        return True

    # --- Sending ---

    def send(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        *,
        use_url_tool: bool = False,
        use_search_tool: bool = False,
        session_id: str | None = None,
    ) -> asyncio.Task[None] | None:
        """Send a user turn and stream the response into the session.

        Returns the streaming task, or None when nothing was sent. Raises
        :class:`SendInProgressError` if the session is already streaming and
        ``RuntimeError`` when called without a running event loop.
        """
        session = self.get_session(session_id or self.active_session_id or "")
        if session is None:
            return None
        if session.id in self._streams:
            msg = f"A response is already being generated for session {session.id}"
            raise SendInProgressError(msg)

        api_key = self.api_key
        if not api_key:
            LOGGER.warning("Send attempted without an API key")
            history.append_message(
                session,
                Message(role=Role.MODEL, content=prompts.MISSING_CREDENTIAL_ERROR, is_error=True),
            )
            self._changed()
            return None

        # Raises RuntimeError outside a running loop, before the session changes
        asyncio.get_running_loop()

        payload = build_payload(
            text,
            project_files=session.project_files,
            pending=session.pending_context_update,
            context_stale=session.context_stale,
            attachments=attachments,
        )
        LOGGER.debug("Built %s payload for %s", payload.rule, session.id)
        prior_turns = build_history(session.messages)

        user_message = Message(
            role=Role.USER,
            content=text,
            api_content=payload.text if payload.text != text else None,
            attachments=list(attachments),
        )
        history.append_message(session, user_message)
        consume_context(session, payload)

        placeholder = Message(role=Role.MODEL, is_thinking=True)
        history.append_message(session, placeholder)

        handle = StreamHandle(session_id=session.id, message_id=placeholder.id)
        self._streams[session.id] = handle
        options = GenerationOptions(
            model_id=self.model_id,
            api_key=api_key,
            system_instruction=self.system_instruction,
            use_search_tool=use_search_tool,
            use_url_tool=use_url_tool,
            cancel_event=handle.cancel_event,
        )
        self._changed()

        task = self._spawn(
            self._generate(session, handle, prior_turns, _turn_parts(user_message), options, text),
        )
        handle.task = task
        return task

    def cancel(self, session_id: str | None = None) -> bool:
        """Stop the in-flight generation of the (active) session, keeping partial output."""
        handle = self._streams.get(session_id or self.active_session_id or "")
        if handle is None:
            return False
        LOGGER.info("Cancelling generation for %s", handle.session_id)
        return handle.request_cancel()

    async def _count_input_tokens(self, text: str, api_key: str) -> int:
        if not self.settings.provider.precise_token_count:
            return estimate_tokens(text)
        try:
            return await self.backend.count_tokens(text, self.model_id, api_key)
        except Exception:
            LOGGER.warning("Precise token count failed, using the estimate", exc_info=True)
            return estimate_tokens(text)

    async def _generate(
        self,
        session: ChatSession,
        handle: StreamHandle,
        prior_turns: list[Turn],
        parts: list[Part],
        options: GenerationOptions,
        question: str,
    ) -> None:
        accumulator = StreamingAccumulator()
        pricing = self.settings.pricing
        try:
            input_text = "".join(p.text or "" for p in parts)
            input_tokens = await self._count_input_tokens(input_text, options.api_key)
            charge(session, input_tokens, pricing.input_per_million)

            stream = self.backend.stream_generate(prior_turns, parts, options)
            await consume_stream(
                stream,
                accumulator,
                handle,
                lambda acc: self._write_fragment(session, handle, acc),
            )
        except asyncio.CancelledError:
            self._finish_cancelled(session, handle, accumulator)
            if not handle.cancel_requested:
                raise
        except Exception as exc:
            LOGGER.exception("Generation failed for %s", session.id)
            self._finish_errored(session, handle, exc)
        else:
            if handle.cancel_requested:
                self._finish_cancelled(session, handle, accumulator)
            else:
                self._finish_completed(session, handle, accumulator, question)
        finally:
            if self._streams.get(session.id) is handle:
                del self._streams[session.id]
            self._changed(persist=False)
            self._settled()

    def _write_fragment(
        self,
        session: ChatSession,
        handle: StreamHandle,
        accumulator: StreamingAccumulator,
    ) -> None:
        message = history.set_message_content(session, handle.message_id, accumulator.text)
        if message is None:
            return
        message.thinking_steps = list(accumulator.thinking_steps)
        # Fragments re-render but are not persisted one by one
        self._changed(persist=False)

    def _finish_completed(
        self,
        session: ChatSession,
        handle: StreamHandle,
        accumulator: StreamingAccumulator,
        question: str,
    ) -> None:
        if not handle.settle(StreamPhase.FINALIZING):
            return
        message = history.set_message_content(session, handle.message_id, accumulator.text)
        if message is not None:
            message.is_thinking = False
            message.thinking_steps = list(accumulator.thinking_steps)
            message.grounding_metadata = accumulator.grounding_metadata
            message.url_context_metadata = accumulator.url_context_metadata

        output_tokens = estimate_tokens(accumulator.text)
        charge(session, output_tokens, self.settings.pricing.output_per_million)

        if (
            session.title == constants.DEFAULT_SESSION_TITLE
            and len(session.conversation()) <= constants.TITLE_MAX_TURNS
        ):
            session.title = _derive_title(question)
        LOGGER.info(
            "Generation finished for %s (%d fragments, ~%d output tokens)",
            session.id,
            accumulator.fragment_count,
            output_tokens,
        )
        self._dirty = True

    def _finish_cancelled(
        self,
        session: ChatSession,
        handle: StreamHandle,
        accumulator: StreamingAccumulator,
    ) -> None:
        if not handle.settle(StreamPhase.CANCELLED):
            return
        message = history.set_message_content(session, handle.message_id, accumulator.text)
        if message is not None:
            message.is_thinking = False
            message.thinking_steps = list(accumulator.thinking_steps)
        LOGGER.info("Generation cancelled for %s after %d fragments", session.id, accumulator.fragment_count)
        self._dirty = True

    def _finish_errored(self, session: ChatSession, handle: StreamHandle, exc: Exception) -> None:
        if not handle.settle(StreamPhase.ERRORED):
            return
        category = classify_backend_error(exc)
        if category in (InvalidCredentialError, MissingCredentialError):
            text = prompts.INVALID_CREDENTIAL_ERROR
        else:
            text = prompts.GENERIC_ERROR.format(error=exc)
        message = history.set_message_content(session, handle.message_id, text)
        if message is not None:
            message.is_thinking = False
            message.is_error = True
        self._dirty = True

    # --- Repository Actions ---

    def load_repo(self, locator: str) -> asyncio.Task[None] | None:
        """Fetch a full snapshot of ``locator`` and attach it to the active session."""
        session = self.active_session
        if session is None or self.repo_source is None or session.id in self._syncing:
            return None
        self._syncing.add(session.id)
        return self._spawn(self._load_repo(session.id, locator))

    async def _load_repo(self, session_id: str, locator: str) -> None:
        assert self.repo_source is not None
        try:
            snapshot = await self.repo_source.fetch_all(locator)
        except Exception as exc:
            LOGGER.exception("Loading %s failed", locator)
            self._notify_system(session_id, prompts.LOAD_FAILED_NOTICE.format(error=exc))
            return
        finally:
            self._syncing.discard(session_id)
        if not snapshot.files:
            self._notify_system(session_id, prompts.LOAD_EMPTY_NOTICE)
            return
        self.attach_project_files(
            snapshot.files,
            locator,
            locator,
            snapshot.revision_marker,
            session_id=session_id,
        )

    def sync_repo(self) -> asyncio.Task[None] | None:
        """Fetch the changes since the last fetched revision of the active session."""
        session = self.active_session
        if session is None or self.repo_source is None or session.id in self._syncing:
            return None
        base = sync_base_marker(session)
        if not session.repo_url or not base:
            LOGGER.warning("Sync attempted without a repository or revision marker")
            return None
        self._syncing.add(session.id)
        return self._spawn(self._sync_repo(session.id, session.repo_url, base))

    async def _sync_repo(self, session_id: str, locator: str, base: str) -> None:
        assert self.repo_source is not None
        try:
            delta = await self.repo_source.fetch_delta(locator, base)
        except Exception as exc:
            LOGGER.exception("Syncing %s failed", locator)
            error = exc if isinstance(exc, RepoSourceError) else f"{type(exc).__name__}: {exc}"
            self._notify_system(session_id, prompts.SYNC_FAILED_NOTICE.format(error=error))
            return
        finally:
            self._syncing.discard(session_id)

        session = self.get_session(session_id)
        if session is None:
            return
        if not delta.has_changes:
            self._notify_system(session_id, prompts.SYNC_UP_TO_DATE_NOTICE)
            return
        result = apply_delta(session, delta)
        history.append_message(session, _system_notice(result.notice()))
        LOGGER.info("Synced %s to %s", locator, delta.revision_marker)
        self._changed()

    # --- Side Features ---

    def summarize_session(self) -> asyncio.Task[None] | None:
        """Ask the backend for a one-shot summary of the active conversation."""
        session = self.active_session
        api_key = self.api_key
        if session is None or not api_key:
            return None
        conversation = "\n".join(f"{m.role}: {m.content}" for m in session.conversation())
        if not conversation:
            return None
        prompt = prompts.SUMMARY_PROMPT.format(conversation=conversation)
        return self._spawn(self._summarize(session.id, prompt, api_key))

    async def _summarize(self, session_id: str, prompt: str, api_key: str) -> None:
        try:
            summary = await self.backend.generate_once(prompt, self.model_id, api_key)
        except Exception as exc:
            LOGGER.exception("Summarizing %s failed", session_id)
            self._notify_system(session_id, prompts.SUMMARY_FAILED_NOTICE.format(error=exc))
            return
        self._notify_system(session_id, prompts.SUMMARY_NOTICE.format(summary=summary.strip()))

    # --- Task Bookkeeping ---

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every scheduled task (including follow-ups) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
