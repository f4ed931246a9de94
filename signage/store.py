"""File-backed settings store.

Holds the single authoritative settings snapshot (key → arbitrary JSON) in
memory and mirrors it to ``settings.json`` in the data directory.

Every write follows the same commit discipline:

  validate → persist (temp file + fsync + rename) → swap in-memory map →
  ``on_commit(snapshot)``

all under one :class:`asyncio.Lock`, so writers are serialized and nothing
downstream ever observes a value that is not on disk.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from signage.schema import validate_setting, validate_snapshot

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]
CommitCallback = Callable[[Snapshot], Any]


class StoreError(Exception):
    """Raised when the settings file cannot be read or written."""


class SettingsStore:
    """Authoritative settings map with durable, serialized writes."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._settings: Snapshot = {}
        self._lock = asyncio.Lock()

    # ── Loading ───────────────────────────────────────────────────

    def load(self) -> Snapshot:
        """Read the settings file; a missing file means empty settings."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No settings file at %s — starting empty", self.path)
            self._settings = {}
            return self.get_all()
        except OSError as exc:
            raise StoreError(f"Cannot read {self.path}: {exc}") from exc

        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt settings file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Settings file {self.path} does not hold a JSON object")

        self._settings = data
        logger.info("Loaded %d settings from %s", len(data), self.path)
        return self.get_all()

    # ── Reads ─────────────────────────────────────────────────────

    def get(self, key: str) -> Any:
        """Return a copy of one value, or ``None`` if the key is unset."""
        if key not in self._settings:
            return None
        return copy.deepcopy(self._settings[key])

    def get_all(self) -> Snapshot:
        """Return a deep copy of the committed snapshot."""
        return copy.deepcopy(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    def __contains__(self, key: object) -> bool:
        return key in self._settings

    # ── Writes ────────────────────────────────────────────────────

    async def set(self, key: str, value: Any, on_commit: CommitCallback | None = None) -> Snapshot:
        """Set one key and commit; returns the committed snapshot."""
        validate_setting(key, value)
        async with self._lock:
            updated = dict(self._settings)
            updated[key] = copy.deepcopy(value)
            return await self._commit(updated, on_commit)

    async def set_all(self, snapshot: Snapshot, on_commit: CommitCallback | None = None) -> Snapshot:
        """Merge a settings object into the store (top-level keys).

        Keys missing from *snapshot* keep their current value; settings are
        never removed implicitly.
        """
        validate_snapshot(snapshot)
        async with self._lock:
            updated = dict(self._settings)
            updated.update(copy.deepcopy(snapshot))
            return await self._commit(updated, on_commit)

    async def _commit(self, updated: Snapshot, on_commit: CommitCallback | None) -> Snapshot:
        text = json.dumps(updated, indent=2, ensure_ascii=False)
        try:
            await asyncio.to_thread(_write_atomic, self.path, text)
        except OSError as exc:
            logger.error("Failed to persist settings to %s: %s", self.path, exc)
            raise StoreError(f"Cannot write {self.path}: {exc}") from exc

        self._settings = updated
        committed = self.get_all()
        logger.debug("Committed %d settings", len(committed))
        if on_commit is not None:
            on_commit(committed)
        return committed


def _write_atomic(path: Path, text: str) -> None:
    """Write *text* to *path* so readers see either the old or new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".settings-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
