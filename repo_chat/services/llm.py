"""Generation backend built on a PydanticAI agent.

The agent talks to Gemini through its OpenAI-compatible endpoint. Model
events are translated into :class:`~repo_chat.streaming.Fragment` objects:
text deltas become answer text, thinking deltas become reasoning lines, tool
calls become tool markers, and the results of the search and URL tools become
grounding and url-context metadata.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic_ai import Agent
from pydantic_ai.common_tools.duckduckgo import duckduckgo_search_tool
from pydantic_ai.messages import (
    BinaryContent,
    FunctionToolCallEvent,
    FunctionToolResultEvent,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.tools import Tool

from repo_chat import constants
from repo_chat.errors import MissingCredentialError
from repo_chat.services.base import GenerationBackend
from repo_chat.streaming import Fragment
from repo_chat.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from repo_chat.config import ProviderSettings
    from repo_chat.services.types import GenerationOptions, Part, Turn

LOGGER = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "duckduckgo_search"
URL_TOOL_NAME = "fetch_url"
_URL_FETCH_TIMEOUT = 20.0
_URL_MAX_CHARS = 20_000
_URL_SUCCESS = "URL_RETRIEVAL_STATUS_SUCCESS"
_URL_ERROR = "URL_RETRIEVAL_STATUS_ERROR"

# Ask Gemini to return its reasoning alongside the answer
_THINKING_SETTINGS: dict[str, Any] = {
    "extra_body": {"extra_body": {"google": {"thinking_config": {"include_thoughts": True}}}},
}


def build_agent(
    provider_settings: ProviderSettings,
    *,
    api_key: str | None,
    model_id: str | None = None,
    instructions: str | None = None,
    tools: list[Tool] | None = None,
) -> Agent:
    """Construct and return a PydanticAI agent."""
    if not api_key:
        msg = "Gemini API key is not set."
        raise MissingCredentialError(msg)
    provider = OpenAIProvider(base_url=provider_settings.base_url, api_key=api_key)
    llm_model = OpenAIChatModel(
        model_name=model_id or provider_settings.model,
        provider=provider,
    )
    return Agent(model=llm_model, instructions=instructions, tools=tools or [])


def _user_content(parts: Sequence[Part]) -> list[str | BinaryContent]:
    content: list[str | BinaryContent] = []
    for part in parts:
        if part.text:
            content.append(part.text)
        elif part.data is not None and part.mime_type:
            content.append(BinaryContent(data=part.data, media_type=part.mime_type))
    return content


def convert_history(history: Sequence[Turn]) -> list[ModelRequest | ModelResponse]:
    """Convert backend turns to PydanticAI messages."""
    messages: list[ModelRequest | ModelResponse] = []
    for turn in history:
        if turn.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=_user_content(turn.parts))]))
        else:
            text = "".join(p.text or "" for p in turn.parts)
            messages.append(ModelResponse(parts=[TextPart(content=text)]))
    return messages


class _ThoughtBuffer:
    """Collect reasoning deltas and release them as complete lines."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> str | None:
        self._pending += text
        if "\n" not in self._pending:
            return None
        complete, _, self._pending = self._pending.rpartition("\n")
        return complete or None

    def flush(self) -> str | None:
        text, self._pending = self._pending, ""
        return text if text.strip() else None


def _search_grounding(queries: list[str], results: Any) -> dict[str, Any]:
    chunks = []
    if isinstance(results, list):
        for item in results:
            if isinstance(item, dict) and item.get("href"):
                chunks.append({"web": {"uri": item["href"], "title": item.get("title", "")}})
    return {"web_search_queries": list(queries), "grounding_chunks": chunks}


class _UrlFetcher:
    """The ``fetch_url`` tool; remembers what it retrieved for url-context metadata."""

    def __init__(self) -> None:
        self.url_metadata: list[dict[str, str]] = []

    async def fetch_url(self, url: str) -> str:
        """Fetch the text content of a web page.

        Args:
            url: The http(s) URL to retrieve.

        """
        try:
            async with httpx.AsyncClient(timeout=_URL_FETCH_TIMEOUT, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.url_metadata.append({"retrieved_url": url, "url_retrieval_status": _URL_ERROR})
            return f"Error: could not retrieve {url}: {e}"
        self.url_metadata.append({"retrieved_url": url, "url_retrieval_status": _URL_SUCCESS})
        return response.text[:_URL_MAX_CHARS]


class PydanticAIBackend(GenerationBackend):
    """Streams responses from a PydanticAI agent."""

    def __init__(self, provider_settings: ProviderSettings) -> None:
        """Initialize the backend."""
        self.provider_settings = provider_settings

    async def stream_generate(
        self,
        history: list[Turn],
        parts: list[Part],
        options: GenerationOptions,
    ) -> AsyncIterator[Fragment]:
        """Stream the agent's response as fragments."""
        tools: list[Tool] = []
        fetcher = _UrlFetcher()
        if options.use_search_tool:
            tools.append(duckduckgo_search_tool())
        if options.use_url_tool:
            tools.append(Tool(fetcher.fetch_url, name=URL_TOOL_NAME))
        agent = build_agent(
            self.provider_settings,
            api_key=options.api_key,
            model_id=options.model_id,
            instructions=options.system_instruction,
            tools=tools,
        )

        def cancelled() -> bool:
            return options.cancel_event is not None and options.cancel_event.is_set()

        thoughts = _ThoughtBuffer()
        search_queries: list[str] = []
        async with agent.iter(
            _user_content(parts),
            message_history=convert_history(history),
            model_settings=_THINKING_SETTINGS,
        ) as run:
            async for node in run:
                if cancelled():
                    return
                if Agent.is_model_request_node(node):
                    async with node.stream(run.ctx) as request_stream:
                        async for event in request_stream:
                            for fragment in _model_event_fragments(event, thoughts):
                                yield fragment
                            if cancelled():
                                return
                    remainder = thoughts.flush()
                    if remainder:
                        yield Fragment(thought=remainder)
                elif Agent.is_call_tools_node(node):
                    async with node.stream(run.ctx) as tool_stream:
                        async for event in tool_stream:
                            if isinstance(event, FunctionToolCallEvent):
                                name = event.part.tool_name
                                if name == SEARCH_TOOL_NAME:
                                    query = event.part.args_as_dict().get("query")
                                    if query:
                                        search_queries.append(str(query))
                                yield Fragment(tool_name=name)
                            elif isinstance(event, FunctionToolResultEvent):
                                fragment = _tool_result_fragment(event, search_queries, fetcher)
                                if fragment is not None:
                                    yield fragment
                            if cancelled():
                                return

    async def count_tokens(self, text: str, model_id: str, api_key: str) -> int:
        """Count tokens with Gemini's native endpoint, falling back to the estimate."""
        url = f"{constants.NATIVE_API_URL}/models/{model_id}:countTokens"
        payload = {"contents": [{"role": "user", "parts": [{"text": text}]}]}
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(url, params={"key": api_key}, json=payload)
                response.raise_for_status()
                total = response.json().get("totalTokens")
        except (httpx.HTTPError, ValueError):
            LOGGER.warning("Token counting failed, falling back to the estimate", exc_info=True)
            return estimate_tokens(text)
        if isinstance(total, int):
            return total
        return estimate_tokens(text)

    async def generate_once(self, prompt: str, model_id: str, api_key: str) -> str:
        """Run the agent once without streaming."""
        agent = build_agent(self.provider_settings, api_key=api_key, model_id=model_id)
        result = await agent.run(prompt)
        return result.output


def _model_event_fragments(event: Any, thoughts: _ThoughtBuffer) -> list[Fragment]:
    if isinstance(event, PartStartEvent):
        if isinstance(event.part, TextPart) and event.part.content:
            return [Fragment(text=event.part.content)]
        if isinstance(event.part, ThinkingPart) and event.part.content:
            lines = thoughts.feed(event.part.content)
            return [Fragment(thought=lines)] if lines else []
    elif isinstance(event, PartDeltaEvent):
        if isinstance(event.delta, TextPartDelta) and event.delta.content_delta:
            return [Fragment(text=event.delta.content_delta)]
        if isinstance(event.delta, ThinkingPartDelta) and event.delta.content_delta:
            lines = thoughts.feed(event.delta.content_delta)
            return [Fragment(thought=lines)] if lines else []
    return []


def _tool_result_fragment(
    event: FunctionToolResultEvent,
    search_queries: list[str],
    fetcher: _UrlFetcher,
) -> Fragment | None:
    # Older pydantic-ai releases expose the return part as ``result``
    part = getattr(event, "part", None) or getattr(event, "result", None)
    name = getattr(part, "tool_name", None)
    if name == SEARCH_TOOL_NAME:
        return Fragment(
            grounding_metadata=_search_grounding(search_queries, getattr(part, "content", None)),
        )
    if name == URL_TOOL_NAME and fetcher.url_metadata:
        return Fragment(url_context_metadata={"url_metadata": list(fetcher.url_metadata)})
    return None
