"""External collaborators: generation backend and repository source."""

from repo_chat.services.base import GenerationBackend, RepoSource

__all__ = ["GenerationBackend", "RepoSource"]
