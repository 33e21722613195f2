"""Local key-value persistence for the session store."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

STATE_BASE = Path.home() / ".config" / "repo-chat" / "state"


def _key_filename(key: str) -> str:
    """Convert a key to a filesystem-safe file name."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", key) + ".json"


class JsonStateStore:
    """One JSON document per key inside a directory."""

    def __init__(self, root: Path | None = None) -> None:
        """Initialize the store rooted at ``root``."""
        self.root = (root or STATE_BASE).expanduser()

    def _path(self, key: str) -> Path:
        return self.root / _key_filename(key)

    def read(self, key: str) -> Any:
        """Return the value stored under ``key``, or None when absent.

        Raises ``ValueError`` (``json.JSONDecodeError``) for corrupt content so
        callers can decide how to recover.
        """
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def write(self, key: str, value: Any) -> None:
        """Atomically write ``value`` under ``key``."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to temp file then rename for atomicity
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(value, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(path)
        LOGGER.debug("Persisted %s", path)

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed."""
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True
