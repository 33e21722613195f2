"""Tests for payload construction and context consumption."""

from __future__ import annotations

from repo_chat.context import ContextRule, build_payload, consume_context
from repo_chat.models import Attachment, ChatSession, PendingContextUpdate, ProjectFile


def _pending() -> PendingContextUpdate:
    return PendingContextUpdate(
        added=[ProjectFile(path="c.ts", content="export const c=3;")],
        modified=[ProjectFile(path="a.ts", content="export const a=10;")],
        removed=["old.ts"],
        revision_marker="sha2",
    )


def test_reference_beats_stale_context_and_pending_delta(project_files: list[ProjectFile]) -> None:
    payload = build_payload(
        "@a.ts what does this do?",
        project_files=project_files,
        pending=_pending(),
        context_stale=True,
    )
    assert payload.rule == ContextRule.REFERENCE
    assert "export const a=1;" in payload.text
    assert "export const b=2;" not in payload.text
    assert payload.text.endswith("what does this do?")
    assert payload.referenced_paths == ["a.ts"]


def test_unresolvable_reference_falls_through(project_files: list[ProjectFile]) -> None:
    payload = build_payload(
        "@nope.ts hi",
        project_files=project_files,
        pending=None,
        context_stale=True,
    )
    assert payload.rule == ContextRule.FULL


def test_full_context_includes_every_file(project_files: list[ProjectFile]) -> None:
    payload = build_payload("overview?", project_files=project_files, pending=None, context_stale=True)
    assert payload.rule == ContextRule.FULL
    assert "--- FILE: a.ts ---" in payload.text
    assert "--- FILE: b.ts ---" in payload.text
    assert payload.text.endswith("overview?")


def test_delta_lists_changes_and_new_contents(project_files: list[ProjectFile]) -> None:
    payload = build_payload("what changed?", project_files=project_files, pending=_pending(), context_stale=False)
    assert payload.rule == ContextRule.DELTA
    assert "ADDED FILES: c.ts" in payload.text
    assert "MODIFIED FILES: a.ts" in payload.text
    assert "REMOVED FILES: old.ts" in payload.text
    assert "export const a=10;" in payload.text
    assert "export const b=2;" not in payload.text
    assert payload.text.endswith("what changed?")


def test_plain_text_when_nothing_is_pending(project_files: list[ProjectFile]) -> None:
    payload = build_payload("hello", project_files=project_files, pending=None, context_stale=False)
    assert payload.rule == ContextRule.PLAIN
    assert payload.text == "hello"


def test_empty_pending_update_is_ignored(project_files: list[ProjectFile]) -> None:
    payload = build_payload(
        "hello",
        project_files=project_files,
        pending=PendingContextUpdate(revision_marker="sha3"),
        context_stale=False,
    )
    assert payload.rule == ContextRule.PLAIN


def test_attachments_text_inlined_images_separate() -> None:
    note = Attachment(name="notes.txt", mime_type="text/plain", data="remember this")
    image = Attachment(name="shot.png", mime_type="image/png", data="data:image/png;base64,iVBORw0KGgo=")
    payload = build_payload("look", project_files=[], pending=None, context_stale=False, attachments=[note, image])
    assert payload.rule == ContextRule.PLAIN
    assert payload.text.startswith("look")
    assert "--- ATTACHED FILE: notes.txt ---" in payload.text
    assert "remember this" in payload.text
    assert "shot.png" not in payload.text
    assert payload.images == [image]


def test_reference_turn_consumes_nothing(project_files: list[ProjectFile]) -> None:
    session = ChatSession(project_files=project_files, context_stale=True, pending_context_update=_pending())
    payload = build_payload(
        "@a.ts ?",
        project_files=session.project_files,
        pending=session.pending_context_update,
        context_stale=True,
    )
    consume_context(session, payload)
    assert session.context_stale
    assert session.pending_context_update is not None


def test_delta_turn_advances_revision_marker(project_files: list[ProjectFile]) -> None:
    session = ChatSession(project_files=project_files, revision_marker="sha1", pending_context_update=_pending())
    payload = build_payload(
        "q",
        project_files=session.project_files,
        pending=session.pending_context_update,
        context_stale=False,
    )
    consume_context(session, payload)
    assert session.revision_marker == "sha2"
    assert session.pending_context_update is None


def test_full_turn_clears_stale_flag(project_files: list[ProjectFile]) -> None:
    session = ChatSession(project_files=project_files, revision_marker="sha1", context_stale=True)
    payload = build_payload("q", project_files=session.project_files, pending=None, context_stale=True)
    consume_context(session, payload)
    assert not session.context_stale
    assert session.revision_marker == "sha1"
