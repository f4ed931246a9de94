"""Last-known-good settings cache.

Every snapshot the display applies from the server is written here, so a
display that boots (or loses the server) while offline still has something
to show.  Cache failures are logged and never raised: the display keeps
running on whatever it already has in memory.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CachedSnapshot:
    settings: dict[str, Any]
    tags: list[str] = field(default_factory=list)
    saved_at: float = 0.0


class SnapshotCache:
    """Single JSON file holding the latest settings snapshot and display tags."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> CachedSnapshot | None:
        """Return the cached snapshot, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Settings cache at %s is unreadable, ignoring it", self.path)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("settings"), dict):
            logger.warning("Settings cache at %s has an unexpected shape, ignoring it", self.path)
            return None
        tags = data.get("tags")
        return CachedSnapshot(
            settings=data["settings"],
            tags=list(tags) if isinstance(tags, list) else [],
            saved_at=float(data.get("saved_at", 0.0)),
        )

    def save(self, settings: dict[str, Any], tags: list[str] | None = None) -> bool:
        """Write *settings* and *tags*; returns False (after logging) on failure."""
        payload = {"settings": settings, "tags": list(tags or []), "saved_at": time.time()}
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(payload, f)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to write settings cache %s", self.path)
            return False
        logger.debug("Cached %d settings keys to %s", len(settings), self.path)
        return True
