"""Build the outgoing payload for a new user turn.

Exactly one injection rule fires per turn, in priority order:

1. explicit ``@path`` references that resolve to known project files,
2. the full project context right after a project was loaded,
3. the pending repository delta,
4. the plain text.

Text attachments are appended to whatever the rule produced; images are
never inlined and travel as separate binary parts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from repo_chat import prompts
from repo_chat.references import resolve_references, strip_references

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_chat.models import Attachment, ChatSession, PendingContextUpdate, ProjectFile


class ContextRule(StrEnum):
    """Which injection rule produced a payload."""

    REFERENCE = "reference"
    FULL = "full"
    DELTA = "delta"
    PLAIN = "plain"


@dataclass
class ContextPayload:
    """The text sent for a turn plus the images sent beside it."""

    text: str
    rule: ContextRule
    images: list[Attachment] = field(default_factory=list)
    referenced_paths: list[str] = field(default_factory=list)


def format_files(files: Sequence[ProjectFile]) -> str:
    """Render files as path-headed blocks."""
    return "\n\n".join(
        prompts.FILE_BLOCK_TEMPLATE.format(path=f.path, content=f.content) for f in files
    )


def format_delta(pending: PendingContextUpdate, question: str) -> str:
    """Render a pending update as a change summary followed by the question."""
    lines = [prompts.DELTA_CONTEXT_HEADER]
    if pending.added:
        lines.append(prompts.DELTA_ADDED_LINE.format(paths=", ".join(f.path for f in pending.added)))
    if pending.modified:
        lines.append(
            prompts.DELTA_MODIFIED_LINE.format(paths=", ".join(f.path for f in pending.modified)),
        )
    if pending.removed:
        lines.append(prompts.DELTA_REMOVED_LINE.format(paths=", ".join(pending.removed)))
    text = "\n".join(lines)

    changed = [*pending.added, *pending.modified]
    if changed:
        text += f"\n\n{prompts.DELTA_CONTENTS_HEADER}\n\n{format_files(changed)}"
    return f"{text}\n\n{prompts.DELTA_QUESTION_TEMPLATE.format(question=question)}"


def build_payload(
    text: str,
    *,
    project_files: Sequence[ProjectFile],
    pending: PendingContextUpdate | None,
    context_stale: bool,
    attachments: Sequence[Attachment] = (),
) -> ContextPayload:
    """Compute the API content for a new user turn."""
    payload = _apply_rules(
        text,
        project_files=project_files,
        pending=pending,
        context_stale=context_stale,
    )
    for attachment in attachments:
        if attachment.is_image:
            payload.images.append(attachment)
        else:
            payload.text += prompts.ATTACHMENT_TEMPLATE.format(
                name=attachment.name,
                content=attachment.data,
            )
    return payload


def _apply_rules(
    text: str,
    *,
    project_files: Sequence[ProjectFile],
    pending: PendingContextUpdate | None,
    context_stale: bool,
) -> ContextPayload:
    referenced = resolve_references(text, [f.path for f in project_files])
    if referenced:
        by_path = {f.path: f for f in project_files}
        return ContextPayload(
            text=prompts.REFERENCE_CONTEXT_TEMPLATE.format(
                files=format_files([by_path[p] for p in referenced]),
                question=strip_references(text),
            ),
            rule=ContextRule.REFERENCE,
            referenced_paths=referenced,
        )

    if context_stale and project_files:
        return ContextPayload(
            text=prompts.FULL_CONTEXT_TEMPLATE.format(
                files=format_files(project_files),
                question=text,
            ),
            rule=ContextRule.FULL,
        )

    if pending is not None and not pending.is_empty:
        return ContextPayload(text=format_delta(pending, text), rule=ContextRule.DELTA)

    return ContextPayload(text=text, rule=ContextRule.PLAIN)


def consume_context(session: ChatSession, payload: ContextPayload) -> None:
    """Clear whatever residue the fired rule consumed.

    The full project dump and the delta both bring the backend up to date with
    the pending update, so either one advances the session's revision marker.
    A reference-only turn leaves the stale flag and the pending update in
    place for the next send.
    """
    if payload.rule == ContextRule.REFERENCE:
        return
    if payload.rule in (ContextRule.FULL, ContextRule.DELTA):
        pending = session.pending_context_update
        if pending is not None and pending.revision_marker:
            session.revision_marker = pending.revision_marker
        session.pending_context_update = None
    # A stale flag with no files to send has nothing left to deliver
    session.context_stale = False
