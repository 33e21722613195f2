"""Session data models."""

from __future__ import annotations

import base64
import mimetypes
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, Field

from repo_chat.constants import CONTEXT_WINDOW_LIMIT, DEFAULT_SESSION_TITLE

if TYPE_CHECKING:
    from pathlib import Path


def _now() -> str:
    return datetime.now(UTC).isoformat()


def new_message_id() -> str:
    """Return a fresh opaque message id."""
    return f"msg-{uuid4().hex[:12]}"


def new_session_id() -> str:
    """Return a fresh opaque session id."""
    return f"session-{uuid4().hex[:12]}"


class Role(StrEnum):
    """Author of a message."""

    USER = "user"
    MODEL = "model"
    SYSTEM = "system"
    """Out-of-band notices; never sent to the backend as a conversation turn."""


class Attachment(BaseModel):
    """A file attached to a user turn."""

    name: str
    mime_type: str = "application/octet-stream"
    data: str
    """Base64 data URL for images, raw text for everything else."""

    @property
    def is_image(self) -> bool:
        """Whether the attachment is sent as a binary part instead of inlined text."""
        return self.mime_type.startswith("image/")

    def inline_bytes(self) -> bytes:
        """Decode the base64 payload of an image data URL."""
        _, _, encoded = self.data.partition(",")
        return base64.b64decode(encoded or self.data)

    @classmethod
    def from_path(cls, path: Path) -> Attachment:
        """Read a local file; images become base64 data URLs, anything else text.

        Raises ``OSError`` when the file cannot be read.
        """
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        if mime_type.startswith("image/"):
            encoded = base64.b64encode(path.read_bytes()).decode("ascii")
            data = f"data:{mime_type};base64,{encoded}"
        else:
            data = path.read_text(encoding="utf-8", errors="replace")
        return cls(name=path.name, mime_type=mime_type, data=data)


class Message(BaseModel):
    """One conversation turn."""

    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str = ""
    """What the UI shows."""
    api_content: str | None = None
    """What was actually sent, when context injection changed it."""
    timestamp: str = Field(default_factory=_now)
    attachments: list[Attachment] = Field(default_factory=list)
    is_thinking: bool = False
    thinking_steps: list[str] = Field(default_factory=list)
    grounding_metadata: dict[str, Any] | None = None
    url_context_metadata: dict[str, Any] | None = None
    is_error: bool = False

    @property
    def sent_content(self) -> str:
        """Text the backend saw (or will see) for this turn."""
        return self.api_content if self.api_content is not None else self.content


class ProjectFile(BaseModel):
    """A repository file with decoded text content."""

    path: str
    content: str


class PendingContextUpdate(BaseModel):
    """Repository changes fetched but not yet sent to the backend."""

    added: list[ProjectFile] = Field(default_factory=list)
    modified: list[ProjectFile] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    revision_marker: str | None = None

    @property
    def is_empty(self) -> bool:
        """Whether the update carries no changes at all."""
        return not (self.added or self.modified or self.removed)


class ChatSession(BaseModel):
    """A conversation plus its bound project context and accounting."""

    id: str = Field(default_factory=new_session_id)
    title: str = DEFAULT_SESSION_TITLE
    created_at: str = Field(default_factory=_now)
    messages: list[Message] = Field(default_factory=list)

    billed_token_count: int = 0
    cost: float = 0.0

    project_files: list[ProjectFile] = Field(default_factory=list)
    project_token_count: int = 0
    history_token_count: int = 0
    repo_url: str | None = None
    revision_marker: str | None = None
    context_stale: bool = False
    pending_context_update: PendingContextUpdate | None = None

    def index_of(self, message_id: str) -> int | None:
        """Return the position of a message in the log, or None."""
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        return None

    def get_message(self, message_id: str) -> Message | None:
        """Return a message by id, or None."""
        index = self.index_of(message_id)
        return None if index is None else self.messages[index]

    def conversation(self) -> list[Message]:
        """Messages that take part in the conversation (no system notices)."""
        return [m for m in self.messages if m.role != Role.SYSTEM]

    @property
    def project_paths(self) -> list[str]:
        """Paths of the current project file set, in order."""
        return [f.path for f in self.project_files]

    @property
    def context_token_count(self) -> int:
        """Estimated tokens of project context plus conversation history."""
        return self.project_token_count + self.history_token_count

    @property
    def context_usage_ratio(self) -> float:
        """Share of the soft context window currently used."""
        return self.context_token_count / CONTEXT_WINDOW_LIMIT
