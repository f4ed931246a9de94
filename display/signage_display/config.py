"""Configuration for the signage display agent."""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class DisplayConfig:
    """Display agent configuration — loaded from config.json."""

    display_id: str = ""
    server_url: str = "http://localhost:3000"
    name: str = ""
    location: str = ""
    resolution: str = ""
    page: str = "index"

    # Provisioning tags: only honoured by the server on first connection
    tags: list[str] = field(default_factory=list)

    # Push channel
    reconnect_delay: float = 5.0
    request_timeout: float = 10.0

    # Last-known-good settings
    cache_path: str = "~/.signage-display/settings-cache.json"

    # Pollers (seconds)
    dismissal_poll_interval: float = 5.0
    bell_tick_interval: float = 10.0

    # Weather feed (any JSON endpoint, usually a server-side proxy); empty disables it
    weather_url: str = ""
    weather_poll_interval: float = 600.0

    @classmethod
    def load(cls, path: str | Path) -> DisplayConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {}
        for k, v in self.__dict__.items():
            data[k] = v
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    @property
    def cache_file(self) -> Path:
        return Path(self.cache_path).expanduser()

    def generate_id(self) -> str:
        """Generate a display ID from hostname."""
        hostname = socket.gethostname()
        return f"display_{hostname}"
