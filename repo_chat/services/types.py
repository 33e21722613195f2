"""Type definitions for services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    import asyncio

    from repo_chat.models import ProjectFile


@dataclass
class Part:
    """One piece of a turn: text or an inline binary blob."""

    text: str | None = None
    mime_type: str | None = None
    data: bytes | None = None


@dataclass
class Turn:
    """A conversation turn as the backend sees it."""

    role: Literal["user", "model"]
    parts: list[Part]


@dataclass
class GenerationOptions:
    """Per-request options for a streaming generation."""

    model_id: str
    api_key: str
    system_instruction: str | None = None
    use_search_tool: bool = False
    use_url_tool: bool = False
    cancel_event: asyncio.Event | None = None


@dataclass
class RepoSnapshot:
    """A full, already filtered file set at one revision."""

    files: list[ProjectFile]
    revision_marker: str


@dataclass
class RepoDelta:
    """Changes between two revisions."""

    revision_marker: str
    added: list[ProjectFile] = field(default_factory=list)
    modified: list[ProjectFile] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """Whether anything changed between the two revisions."""
        return bool(self.added or self.modified or self.removed)
