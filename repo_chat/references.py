"""Parse ``@path`` file references out of user input.

A reference is an ``@`` at the start of a word followed by a path. A bare
path names a single file; a trailing slash turns it into a directory prefix
that matches every known path below it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

_REFERENCE_PATTERN = re.compile(r"(?<!\S)@(\S+)")
_TRAILING_PUNCTUATION = ".,;:!?)]\"'"
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class FileReference:
    """One ``@`` token found in the text and the known paths it resolves to."""

    token: str
    path: str
    is_directory: bool
    matches: tuple[str, ...]


def _resolve(path: str, known_paths: Sequence[str]) -> tuple[str, tuple[str, ...]]:
    if path.endswith("/"):
        return path, tuple(p for p in known_paths if p.startswith(path))
    if path in known_paths:
        return path, (path,)
    # "see @a.ts." ends a sentence, not a filename
    stripped = path.rstrip(_TRAILING_PUNCTUATION)
    if stripped and stripped != path:
        return _resolve(stripped, known_paths)
    return path, ()


def parse_references(text: str, known_paths: Sequence[str]) -> list[FileReference]:
    """Return every reference token in ``text`` with the paths it resolves to."""
    references = []
    for match in _REFERENCE_PATTERN.finditer(text):
        path, matches = _resolve(match.group(1), known_paths)
        references.append(
            FileReference(
                token=match.group(0),
                path=path,
                is_directory=path.endswith("/"),
                matches=matches,
            ),
        )
    return references


def resolve_references(text: str, known_paths: Sequence[str]) -> list[str]:
    """Return the unique known paths referenced by ``text``, in reference order."""
    seen: dict[str, None] = {}
    for reference in parse_references(text, known_paths):
        for path in reference.matches:
            seen.setdefault(path, None)
    return list(seen)


def strip_references(text: str) -> str:
    """Remove every reference token and collapse whitespace."""
    return _WHITESPACE.sub(" ", _REFERENCE_PATTERN.sub(" ", text)).strip()
