"""Accumulate streamed model output into a message.

A stream runs through ``SENDING -> STREAMING`` and then settles exactly once
in one of ``FINALIZING``, ``CANCELLED`` or ``ERRORED``. Answer text is
concatenated in arrival order; reasoning text and tool invocations go to a
separate thinking trace; grounding metadata is collected on the side and only
attached once the stream settles.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

LOGGER = logging.getLogger(__name__)


class StreamPhase(StrEnum):
    """Lifecycle of one streaming generation."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"
    ERRORED = "errored"


_TERMINAL_PHASES = frozenset({StreamPhase.FINALIZING, StreamPhase.CANCELLED, StreamPhase.ERRORED})


@dataclass
class Fragment:
    """One incremental unit of a streaming response."""

    text: str | None = None
    thought: str | None = None
    tool_name: str | None = None
    grounding_metadata: dict[str, Any] | None = None
    url_context_metadata: dict[str, Any] | None = None


def split_thinking(text: str) -> list[str]:
    """Split reasoning text into trimmed, non-empty lines."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def tool_step(tool_name: str) -> str:
    """Thinking-trace line for a tool invocation."""
    return f"Using tool: {tool_name}"


@dataclass
class StreamingAccumulator:
    """Running state of a streamed answer."""

    text_chunks: list[str] = field(default_factory=list)
    thinking_steps: list[str] = field(default_factory=list)
    grounding_metadata: dict[str, Any] | None = None
    url_context_metadata: dict[str, Any] | None = None
    fragment_count: int = 0

    @property
    def text(self) -> str:
        """The visible answer so far."""
        return "".join(self.text_chunks)

    def add(self, fragment: Fragment) -> None:
        """Fold one fragment into the accumulated state."""
        self.fragment_count += 1
        if fragment.thought:
            self.thinking_steps.extend(split_thinking(fragment.thought))
        if fragment.tool_name:
            self.thinking_steps.append(tool_step(fragment.tool_name))
        if fragment.text:
            self.text_chunks.append(fragment.text)
        if fragment.grounding_metadata:
            self.grounding_metadata = {
                **(self.grounding_metadata or {}),
                **fragment.grounding_metadata,
            }
        if fragment.url_context_metadata:
            self.url_context_metadata = fragment.url_context_metadata


@dataclass
class StreamHandle:
    """The one cancellable generation running for a session."""

    session_id: str
    message_id: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    phase: StreamPhase = StreamPhase.SENDING
    task: asyncio.Task[None] | None = None

    @property
    def cancel_requested(self) -> bool:
        """Whether the user asked to stop this stream."""
        return self.cancel_event.is_set()

    @property
    def settled(self) -> bool:
        """Whether the stream already reached a terminal phase."""
        return self.phase in _TERMINAL_PHASES

    def request_cancel(self) -> bool:
        """Signal the backend to stop and interrupt the consuming task.

        Returns False when the stream already settled, so a cancel racing
        the last fragment never reopens a finished message.
        """
        if self.settled:
            return False
        self.cancel_event.set()
        if self.task is not None and not self.task.done():
            self.task.cancel()
        return True

    def settle(self, phase: StreamPhase) -> bool:
        """Move to a terminal phase; only the first call wins."""
        if self.settled:
            LOGGER.debug("Stream for %s already settled as %s", self.message_id, self.phase)
            return False
        self.phase = phase
        return True


async def consume_stream(
    stream: AsyncIterator[Fragment],
    accumulator: StreamingAccumulator,
    handle: StreamHandle,
    on_fragment: Callable[[StreamingAccumulator], None],
) -> None:
    """Pull fragments into ``accumulator`` until the stream ends or is cancelled.

    ``on_fragment`` is called after every fragment, in arrival order. The
    stream is always closed on the way out.
    """
    handle.phase = StreamPhase.STREAMING
    try:
        async for fragment in stream:
            if handle.cancel_requested:
                break
            accumulator.add(fragment)
            on_fragment(accumulator)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
