"""Abstract base classes for the external collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from repo_chat.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from repo_chat.services.types import GenerationOptions, Part, RepoDelta, RepoSnapshot, Turn
    from repo_chat.streaming import Fragment


class GenerationBackend(ABC):
    """Abstract base class for generative-model backends."""

    @abstractmethod
    def stream_generate(
        self,
        history: list[Turn],
        parts: list[Part],
        options: GenerationOptions,
    ) -> AsyncIterator[Fragment]:
        """Stream the response to ``parts`` given the prior ``history``.

        Implementations must stop producing once ``options.cancel_event`` is
        set and must tolerate being closed mid-stream.
        """
        ...

    async def count_tokens(self, text: str, model_id: str, api_key: str) -> int:  # noqa: ARG002
        """Count the tokens of ``text``; the default is the heuristic estimate."""
        return estimate_tokens(text)

    @abstractmethod
    async def generate_once(self, prompt: str, model_id: str, api_key: str) -> str:
        """Return a complete, non-streamed response to ``prompt``."""
        ...


class RepoSource(ABC):
    """Abstract base class for repository fetchers."""

    @abstractmethod
    async def fetch_all(self, locator: str) -> RepoSnapshot:
        """Fetch every relevant text file at the current head revision."""
        ...

    @abstractmethod
    async def fetch_delta(self, locator: str, since: str) -> RepoDelta:
        """Fetch the changes between ``since`` and the current head revision."""
        ...
