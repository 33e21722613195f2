"""Tests for streaming accumulation and the stream handle."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from repo_chat.streaming import (
    Fragment,
    StreamHandle,
    StreamingAccumulator,
    StreamPhase,
    consume_stream,
    split_thinking,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class _FakeStream:
    """An async iterator over fragments that records whether it was closed."""

    def __init__(self, fragments: list[Fragment]) -> None:
        self.fragments = list(fragments)
        self.closed = False

    def __aiter__(self) -> AsyncIterator[Fragment]:
        return self

    async def __anext__(self) -> Fragment:
        if not self.fragments:
            raise StopAsyncIteration
        return self.fragments.pop(0)

    async def aclose(self) -> None:
        self.closed = True


def test_split_thinking_drops_blank_lines() -> None:
    assert split_thinking("  first\n\n second  \n") == ["first", "second"]


def test_accumulator_separates_text_thoughts_and_tools() -> None:
    acc = StreamingAccumulator()
    acc.add(Fragment(thought="Reading the tree\nFound main.py"))
    acc.add(Fragment(text="It "))
    acc.add(Fragment(tool_name="duckduckgo_search"))
    acc.add(Fragment(text="works."))
    assert acc.text == "It works."
    assert acc.thinking_steps == ["Reading the tree", "Found main.py", "Using tool: duckduckgo_search"]
    assert acc.fragment_count == 4


def test_accumulator_merges_grounding_and_keeps_latest_url_context() -> None:
    acc = StreamingAccumulator()
    acc.add(Fragment(grounding_metadata={"web_search_queries": ["a"]}))
    acc.add(Fragment(grounding_metadata={"grounding_chunks": [{"web": {"uri": "https://x"}}]}))
    acc.add(Fragment(url_context_metadata={"url_metadata": [{"retrieved_url": "https://1"}]}))
    acc.add(Fragment(url_context_metadata={"url_metadata": [{"retrieved_url": "https://1"}, {"retrieved_url": "https://2"}]}))
    assert acc.grounding_metadata == {
        "web_search_queries": ["a"],
        "grounding_chunks": [{"web": {"uri": "https://x"}}],
    }
    assert len(acc.url_context_metadata["url_metadata"]) == 2


def test_handle_settles_once() -> None:
    handle = StreamHandle(session_id="s", message_id="m")
    assert handle.settle(StreamPhase.FINALIZING)
    assert not handle.settle(StreamPhase.CANCELLED)
    assert handle.phase == StreamPhase.FINALIZING
    assert not handle.request_cancel()
    assert not handle.cancel_requested


@pytest.mark.asyncio
async def test_consume_stream_reports_every_fragment_and_closes() -> None:
    stream = _FakeStream([Fragment(text="Hel"), Fragment(text="lo")])
    acc = StreamingAccumulator()
    handle = StreamHandle(session_id="s", message_id="m")
    seen: list[str] = []
    await consume_stream(stream, acc, handle, lambda a: seen.append(a.text))
    assert seen == ["Hel", "Hello"]
    assert handle.phase == StreamPhase.STREAMING
    assert stream.closed


@pytest.mark.asyncio
async def test_consume_stream_stops_after_cancel_request() -> None:
    stream = _FakeStream([Fragment(text="Hel"), Fragment(text="lo"), Fragment(text="!")])
    acc = StreamingAccumulator()
    handle = StreamHandle(session_id="s", message_id="m")

    def on_fragment(a: StreamingAccumulator) -> None:
        if a.text == "Hello":
            handle.cancel_event.set()

    await consume_stream(stream, acc, handle, on_fragment)
    assert acc.text == "Hello"
    assert stream.closed


@pytest.mark.asyncio
async def test_request_cancel_interrupts_the_task() -> None:
    handle = StreamHandle(session_id="s", message_id="m")
    handle.task = asyncio.create_task(asyncio.sleep(10))
    await asyncio.sleep(0)
    assert handle.request_cancel()
    with pytest.raises(asyncio.CancelledError):
        await handle.task
    assert handle.cancel_requested
