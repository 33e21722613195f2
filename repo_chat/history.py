"""Ordered message log operations and the history token counter.

Every function here keeps ``session.history_token_count`` equal to the sum
of :func:`message_tokens` over the log.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from repo_chat.models import Role
from repo_chat.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Iterable

    from repo_chat.models import ChatSession, Message

LOGGER = logging.getLogger(__name__)


def message_tokens(message: Message) -> int:
    """Estimated tokens a message contributes to the history (system notices count 0)."""
    if message.role == Role.SYSTEM:
        return 0
    return estimate_tokens(message.sent_content)


def count_history_tokens(messages: Iterable[Message]) -> int:
    """Sum the history tokens of ``messages``."""
    return sum(message_tokens(m) for m in messages)


def append_message(session: ChatSession, message: Message) -> None:
    """Add ``message`` to the tail of the log."""
    session.messages.append(message)
    session.history_token_count += message_tokens(message)


def set_message_content(session: ChatSession, message_id: str, content: str) -> Message | None:
    """Replace a message's display content, keeping the counter consistent."""
    message = session.get_message(message_id)
    if message is None:
        return None
    before = message_tokens(message)
    message.content = content
    session.history_token_count += message_tokens(message) - before
    return message


def delete_message(session: ChatSession, message_id: str) -> list[Message]:
    """Delete a user message together with the model response right after it.

    Returns the removed messages; an unknown id or a non-user message removes
    nothing.
    """
    index = session.index_of(message_id)
    if index is None or session.messages[index].role != Role.USER:
        LOGGER.debug("Ignoring delete of %s: not a user message in this session", message_id)
        return []

    end = index + 1
    if end < len(session.messages) and session.messages[end].role == Role.MODEL:
        end += 1
    removed = session.messages[index:end]
    del session.messages[index:end]
    session.history_token_count = count_history_tokens(session.messages)
    return removed


def truncate_before(session: ChatSession, message_id: str) -> Message | None:
    """Drop a user message and everything after it.

    Returns the dropped user message (its attachments are needed for the
    resend), or None when the id is unknown or not a user message.
    """
    index = session.index_of(message_id)
    if index is None or session.messages[index].role != Role.USER:
        LOGGER.debug("Ignoring edit of %s: not a user message in this session", message_id)
        return None

    edited = session.messages[index]
    del session.messages[index:]
    session.history_token_count = count_history_tokens(session.messages)
    return edited
