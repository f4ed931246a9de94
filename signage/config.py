"""Server configuration, read from ``SIGNAGE_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_KEY = "change-this-in-production"


@dataclass
class ServerConfig:
    """Runtime settings for the signage server."""

    data_dir: Path = Path("./data")
    api_key: str = DEFAULT_API_KEY
    host: str = "0.0.0.0"
    port: int = 3000

    # Sessions: sliding idle window and sweep cadence
    session_idle_seconds: float = 24 * 60 * 60
    session_sweep_seconds: float = 60 * 60

    # Failed logins allowed per client address within the window
    login_max_failures: int = 10
    login_window_seconds: float = 15 * 60

    # Push channel
    keepalive_seconds: float = 30.0
    channel_queue_size: int = 100

    @classmethod
    def from_env(cls) -> ServerConfig:
        cfg = cls(
            data_dir=Path(os.environ.get("SIGNAGE_DATA_DIR", "./data")),
            api_key=os.environ.get("SIGNAGE_API_KEY", DEFAULT_API_KEY),
            host=os.environ.get("SIGNAGE_HOST", "0.0.0.0"),
            port=int(os.environ.get("SIGNAGE_PORT", "3000")),
            session_idle_seconds=float(
                os.environ.get("SIGNAGE_SESSION_IDLE_SECONDS", str(24 * 60 * 60))
            ),
            session_sweep_seconds=float(
                os.environ.get("SIGNAGE_SESSION_SWEEP_SECONDS", str(60 * 60))
            ),
            login_max_failures=int(os.environ.get("SIGNAGE_LOGIN_MAX_FAILURES", "10")),
            login_window_seconds=float(
                os.environ.get("SIGNAGE_LOGIN_WINDOW_SECONDS", str(15 * 60))
            ),
            keepalive_seconds=float(os.environ.get("SIGNAGE_KEEPALIVE_SECONDS", "30")),
        )
        if cfg.api_key == DEFAULT_API_KEY:
            logger.warning("Using the default API key — set SIGNAGE_API_KEY in production")
        return cfg

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"
