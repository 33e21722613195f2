"""Tests for gitignore-style filtering."""

from __future__ import annotations

import pytest

from repo_chat.services.ignore import IgnoreMatcher, compile_rule, is_binary_path, is_wanted


@pytest.mark.parametrize(
    ("path", "ignored"),
    [
        (".git/config", True),
        (".env", True),
        (".env.local", True),
        ("node_modules/react/index.js", True),
        ("src/.env.example", False),
        ("src/app.py", False),
    ],
)
def test_default_ignores(path: str, ignored: bool) -> None:
    assert IgnoreMatcher.with_defaults().is_ignored(path) is ignored


def test_pattern_matches_directory_contents() -> None:
    rule = compile_rule("build")
    assert rule.regex.match("build")
    assert rule.regex.match("build/out.js")
    assert not rule.regex.match("builder.js")


def test_single_star_stays_within_a_segment() -> None:
    rule = compile_rule("*.log")
    assert rule.regex.match("debug.log")
    assert not rule.regex.match("logs/debug.log")


def test_double_star_crosses_segments() -> None:
    rule = compile_rule("**/*.log")
    assert rule.regex.match("logs/deep/debug.log")


def test_nested_gitignore_is_anchored_at_its_directory() -> None:
    matcher = IgnoreMatcher()
    matcher.add_gitignore("dist/\n", "web")
    assert matcher.is_ignored("web/dist/bundle.js")
    assert not matcher.is_ignored("dist/bundle.js")


def test_later_negation_wins() -> None:
    matcher = IgnoreMatcher()
    matcher.add_gitignore("# comment\n*.md\n\n!README.md\n")
    assert matcher.is_ignored("CHANGES.md")
    assert not matcher.is_ignored("README.md")


def test_deeper_rules_override_shallower_ones() -> None:
    matcher = IgnoreMatcher()
    matcher.add_gitignore("app/\n")
    matcher.add_gitignore("!config.json\n", "app")
    assert matcher.is_ignored("app/data.json")
    assert not matcher.is_ignored("app/config.json")


def test_binary_extensions_are_skipped() -> None:
    assert is_binary_path("assets/logo.PNG")
    assert is_binary_path("uv.lock")
    assert not is_binary_path("Makefile")
    assert not is_wanted("img/a.jpg", IgnoreMatcher())
    assert is_wanted("src/a.ts", IgnoreMatcher())
