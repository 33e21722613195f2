"""Repository source backed by the GitHub REST API."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote

import httpx

from repo_chat import constants
from repo_chat.errors import RepoSourceError
from repo_chat.models import ProjectFile
from repo_chat.services.base import RepoSource
from repo_chat.services.ignore import IgnoreMatcher, is_wanted
from repo_chat.services.types import RepoDelta, RepoSnapshot

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

LOGGER = logging.getLogger(__name__)

_REPO_URL = re.compile(r"github\.com/([^/\s]+)/([^/\s#?]+)")

T = TypeVar("T")
R = TypeVar("R")


def parse_repo_url(locator: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a GitHub repository URL."""
    match = _REPO_URL.search(locator)
    if not match:
        msg = f"Invalid GitHub repository URL: {locator!r}. Expected https://github.com/owner/repo"
        raise RepoSourceError(msg)
    owner, repo = match.groups()
    repo = repo.removesuffix(".git")
    return owner, repo


def decode_content(encoded: str | None) -> str:
    """Decode base64 file content as strict UTF-8.

    Content that is not valid UTF-8 yields a fixed placeholder text instead of
    a partially garbled file.
    """
    if not encoded:
        return ""
    try:
        return base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        LOGGER.warning("Could not decode file content as UTF-8, probably a binary file")
        return constants.UNDECODABLE_FILE_CONTENT


async def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    delay: float,
    process: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run ``process`` over ``items`` in concurrent batches with a pause in between."""
    results: list[R] = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(process(item) for item in batch)))
        if start + batch_size < len(items) and delay > 0:
            await asyncio.sleep(delay)
    return results


class GitHubRepoSource(RepoSource):
    """Fetch repository files and changes from GitHub."""

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str = constants.GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        snapshot_delay: float = constants.SNAPSHOT_BATCH_DELAY,
        delta_delay: float = constants.DELTA_BATCH_DELAY,
    ) -> None:
        """Initialize the source; ``transport`` is for tests."""
        self.token = token
        self.api_url = api_url
        self.transport = transport
        self.snapshot_delay = snapshot_delay
        self.delta_delay = delta_delay

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            transport=self.transport,
            timeout=30.0,
        )

    async def _get_json(self, client: httpx.AsyncClient, path: str, what: str) -> Any:
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            msg = f"Could not fetch {what}: {e}"
            raise RepoSourceError(msg) from e
        if response.status_code != httpx.codes.OK:
            msg = f"Could not fetch {what} (status {response.status_code})"
            raise RepoSourceError(msg)
        return response.json()

    async def _head_commit(self, client: httpx.AsyncClient, owner: str, repo: str) -> dict[str, Any]:
        repo_data = await self._get_json(
            client,
            f"/repos/{owner}/{repo}",
            "repository (not found or rate limited)",
        )
        branch = repo_data["default_branch"]
        branch_data = await self._get_json(
            client,
            f"/repos/{owner}/{repo}/branches/{quote(branch, safe='')}",
            "default branch",
        )
        return branch_data["commit"]

    async def _read_blob(self, client: httpx.AsyncClient, owner: str, repo: str, sha: str) -> str:
        data = await self._get_json(client, f"/repos/{owner}/{repo}/git/blobs/{sha}", "blob")
        return decode_content(data.get("content"))

    async def _load_ignore_rules(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        tree: list[dict[str, Any]],
    ) -> IgnoreMatcher:
        matcher = IgnoreMatcher.with_defaults()
        gitignores = [
            entry
            for entry in tree
            if entry.get("type") == "blob" and entry["path"].rsplit("/", 1)[-1] == ".gitignore"
        ]
        contents = await asyncio.gather(
            *(self._read_blob(client, owner, repo, entry["sha"]) for entry in gitignores),
        )
        # Shallower files first so rules from deeper directories win
        located = sorted(
            ((entry["path"].rpartition("/")[0], content) for entry, content in zip(gitignores, contents, strict=True)),
            key=lambda item: len(item[0]),
        )
        for base_path, content in located:
            matcher.add_gitignore(content, base_path)
        return matcher

    async def _tree(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        tree_sha: str,
    ) -> list[dict[str, Any]]:
        data = await self._get_json(
            client,
            f"/repos/{owner}/{repo}/git/trees/{tree_sha}?recursive=1",
            "file tree",
        )
        if data.get("truncated"):
            LOGGER.warning("File tree of %s/%s is truncated, some files may be missing", owner, repo)
        return data.get("tree", [])

    async def fetch_all(self, locator: str) -> RepoSnapshot:
        """Fetch every text file at the head of the default branch."""
        owner, repo = parse_repo_url(locator)
        async with self._client() as client:
            commit = await self._head_commit(client, owner, repo)
            tree = await self._tree(client, owner, repo, commit["commit"]["tree"]["sha"])
            matcher = await self._load_ignore_rules(client, owner, repo, tree)
            wanted = [
                entry for entry in tree if entry.get("type") == "blob" and is_wanted(entry["path"], matcher)
            ]
            LOGGER.info("Fetching %d files from %s/%s", len(wanted), owner, repo)

            async def fetch(entry: dict[str, Any]) -> ProjectFile:
                try:
                    content = await self._read_blob(client, owner, repo, entry["sha"])
                except RepoSourceError as e:
                    LOGGER.warning("Failed to fetch %s: %s", entry["path"], e)
                    content = f"Error: content could not be fetched ({e})."
                return ProjectFile(path=entry["path"], content=content)

            files = await process_in_batches(
                wanted,
                constants.SNAPSHOT_BATCH_SIZE,
                self.snapshot_delay,
                fetch,
            )
        return RepoSnapshot(files=files, revision_marker=commit["sha"])

    async def fetch_delta(self, locator: str, since: str) -> RepoDelta:
        """Fetch the files that changed between ``since`` and the current head."""
        owner, repo = parse_repo_url(locator)
        async with self._client() as client:
            commit = await self._head_commit(client, owner, repo)
            head = commit["sha"]
            if head == since:
                return RepoDelta(revision_marker=head)
            comparison = await self._get_json(
                client,
                f"/repos/{owner}/{repo}/compare/{since}...{head}",
                "commit comparison",
            )
            tree = await self._tree(client, owner, repo, commit["commit"]["tree"]["sha"])
            matcher = await self._load_ignore_rules(client, owner, repo, tree)

            added: list[str] = []
            modified: list[str] = []
            removed: list[str] = []
            for entry in comparison.get("files") or []:
                status = entry.get("status")
                name = entry["filename"]
                if status in ("added", "copied"):
                    added.append(name)
                elif status in ("modified", "changed"):
                    modified.append(name)
                elif status == "removed":
                    removed.append(name)
                elif status == "renamed":
                    if entry.get("previous_filename"):
                        removed.append(entry["previous_filename"])
                    added.append(name)
            added = [p for p in added if is_wanted(p, matcher)]
            modified = [p for p in modified if is_wanted(p, matcher)]

            async def fetch(path: str) -> ProjectFile:
                try:
                    data = await self._get_json(
                        client,
                        f"/repos/{owner}/{repo}/contents/{quote(path)}?ref={head}",
                        f"content of {path}",
                    )
                    content = decode_content(data.get("content"))
                except RepoSourceError as e:
                    LOGGER.warning("Failed to fetch %s: %s", path, e)
                    content = f"Error: content could not be fetched ({e})."
                return ProjectFile(path=path, content=content)

            fetched = await process_in_batches(
                [*added, *modified],
                constants.DELTA_BATCH_SIZE,
                self.delta_delay,
                fetch,
            )
        return RepoDelta(
            revision_marker=head,
            added=fetched[: len(added)],
            modified=fetched[len(added) :],
            removed=removed,
        )
