"""Command implementations for repo-chat."""

from . import chat

__all__ = ["chat"]
