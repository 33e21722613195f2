"""gitignore-style path filtering for fetched repositories."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from repo_chat import constants


@dataclass(frozen=True)
class IgnoreRule:
    """One compiled ignore pattern."""

    regex: re.Pattern[str]
    negated: bool = False


def compile_rule(pattern: str, base_path: str = "") -> IgnoreRule:
    """Compile a gitignore ``pattern`` found in the directory ``base_path``.

    Patterns are anchored at ``base_path``. A pattern also matches everything
    below the path it names, so ``build`` ignores ``build/out.js``.
    """
    negated = pattern.startswith("!")
    if negated:
        pattern = pattern[1:]
    # A trailing slash names a directory; it still matches everything inside
    full = "/".join(p for p in (base_path, pattern) if p).strip("/")

    out = []
    i = 0
    while i < len(full):
        char = full[i]
        if full.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(char))
        i += 1
    body = "".join(out)
    return IgnoreRule(re.compile(f"^{body}(/.*)?$"), negated)


@dataclass
class IgnoreMatcher:
    """Ordered ignore rules; the last matching rule decides."""

    rules: list[IgnoreRule] = field(default_factory=list)

    @classmethod
    def with_defaults(cls) -> IgnoreMatcher:
        """A matcher preloaded with the always-ignored paths."""
        return cls([compile_rule(p) for p in constants.DEFAULT_IGNORES])

    def add_gitignore(self, content: str, base_path: str = "") -> None:
        """Append the rules of a ``.gitignore`` file located in ``base_path``."""
        for raw in content.splitlines():
            line = raw.strip()
            if line and not line.startswith("#"):
                self.rules.append(compile_rule(line, base_path))

    def is_ignored(self, path: str) -> bool:
        """Whether ``path`` is excluded by the rules."""
        ignored = False
        for rule in self.rules:
            if rule.regex.match(path):
                ignored = not rule.negated
        return ignored


def is_binary_path(path: str) -> bool:
    """Guess from the extension whether ``path`` is a non-text file."""
    return PurePosixPath(path).suffix.lower() in constants.BINARY_EXTENSIONS


def is_wanted(path: str, matcher: IgnoreMatcher) -> bool:
    """Whether ``path`` should end up in the project file set."""
    return not matcher.is_ignored(path) and not is_binary_path(path)
