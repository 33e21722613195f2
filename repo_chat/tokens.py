"""Heuristic token estimation and cost accounting."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from repo_chat.constants import TOKEN_ESTIMATE_FACTOR

if TYPE_CHECKING:
    from collections.abc import Iterable

    from repo_chat.models import ChatSession, ProjectFile


def estimate_tokens(text: str | None) -> int:
    """Estimate the token count of ``text`` as ``ceil(len / K)``."""
    if not text:
        return 0
    return math.ceil(len(text) / TOKEN_ESTIMATE_FACTOR)


def estimate_file_tokens(files: Iterable[ProjectFile]) -> int:
    """Estimate the tokens of a project file set."""
    return sum(estimate_tokens(f.content) for f in files)


def token_cost(tokens: int, price_per_million: float) -> float:
    """Return the monetary cost of ``tokens`` at ``price_per_million``."""
    return tokens / 1_000_000 * price_per_million


def charge(session: ChatSession, tokens: int, price_per_million: float) -> float:
    """Add ``tokens`` to the session's running totals and return the cost added.

    Running totals only ever grow; nothing here is recomputed retroactively.
    """
    tokens = max(tokens, 0)
    cost = token_cost(tokens, price_per_million)
    session.billed_token_count += tokens
    session.cost += cost
    return cost
