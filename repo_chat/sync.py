"""Merge repository deltas into a session.

A sync updates the project file set right away but only records the change
as a pending context update. The session's revision marker is left alone
until a send actually delivers that update to the backend, so successive
syncs chain off the pending update's marker instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from repo_chat import prompts
from repo_chat.models import PendingContextUpdate, ProjectFile
from repo_chat.tokens import estimate_file_tokens

if TYPE_CHECKING:
    from repo_chat.models import ChatSession
    from repo_chat.services.types import RepoDelta


@dataclass
class SyncResult:
    """What applying a delta changed."""

    added: int
    modified: int
    removed: int
    token_diff: int

    def notice(self) -> str:
        """Human readable summary of the sync."""
        parts = []
        if self.added:
            parts.append(f"{self.added} files added")
        if self.modified:
            parts.append(f"{self.modified} files modified")
        if self.removed:
            parts.append(f"{self.removed} files removed")
        return prompts.SYNC_APPLIED_NOTICE.format(
            summary=", ".join(parts),
            sign="+" if self.token_diff >= 0 else "",
            diff=self.token_diff,
        )


def sync_base_marker(session: ChatSession) -> str | None:
    """Revision to diff against: the last fetched point, not the last sent one."""
    pending = session.pending_context_update
    if pending is not None and pending.revision_marker:
        return pending.revision_marker
    return session.revision_marker


def _upsert(files: list[ProjectFile], new: ProjectFile) -> None:
    for i, existing in enumerate(files):
        if existing.path == new.path:
            files[i] = new
            return
    files.append(new)


def _drop(files: list[ProjectFile], path: str) -> list[ProjectFile]:
    return [f for f in files if f.path != path]


def merge_project_files(files: list[ProjectFile], delta: RepoDelta) -> list[ProjectFile]:
    """Return ``files`` with the delta applied; the input list is not modified."""
    removed = set(delta.removed)
    merged = [f for f in files if f.path not in removed]
    for new in [*delta.modified, *delta.added]:
        _upsert(merged, new.model_copy())
    return merged


def merge_pending_update(
    pending: PendingContextUpdate | None,
    delta: RepoDelta,
) -> PendingContextUpdate:
    """Fold ``delta`` into an existing pending update.

    - an add cancels an earlier pending removal of the same path,
    - a modify of a path that is still pending as added stays an add,
    - a removal cancels any pending add or modify and is recorded as removed.
    """
    added = list(pending.added) if pending else []
    modified = list(pending.modified) if pending else []
    removed = list(pending.removed) if pending else []

    for new in delta.added:
        if new.path in removed:
            removed.remove(new.path)
        modified = _drop(modified, new.path)
        _upsert(added, new.model_copy())

    for new in delta.modified:
        if new.path in removed:
            removed.remove(new.path)
        if any(f.path == new.path for f in added):
            _upsert(added, new.model_copy())
        else:
            _upsert(modified, new.model_copy())

    for path in delta.removed:
        added = _drop(added, path)
        modified = _drop(modified, path)
        if path not in removed:
            removed.append(path)

    return PendingContextUpdate(
        added=added,
        modified=modified,
        removed=removed,
        revision_marker=delta.revision_marker,
    )


def apply_delta(session: ChatSession, delta: RepoDelta) -> SyncResult:
    """Merge ``delta`` into the session's files and pending update."""
    before = session.project_token_count
    session.project_files = merge_project_files(session.project_files, delta)
    session.project_token_count = estimate_file_tokens(session.project_files)
    session.pending_context_update = merge_pending_update(session.pending_context_update, delta)
    return SyncResult(
        added=len(delta.added),
        modified=len(delta.modified),
        removed=len(delta.removed),
        token_diff=session.project_token_count - before,
    )
