"""The signage service object.

Owns the settings store, session table, display registry and broadcast hub,
with explicit :meth:`start` / :meth:`stop`.  The FastAPI app holds exactly
one instance on ``app.state.service``; nothing else keeps global state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable

from signage.auth import LoginRateLimiter, SessionManager
from signage.config import ServerConfig
from signage.hub import BroadcastHub
from signage.messages import KEEPALIVE_FRAME, encode_sse
from signage.registry import DisplayRegistry
from signage.store import SettingsStore

logger = logging.getLogger(__name__)


class SignageService:
    """Settings distribution service: store + sessions + registry + hub."""

    def __init__(self, config: ServerConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or ServerConfig.from_env()
        self.store = SettingsStore(self.config.settings_file)
        self.sessions = SessionManager(
            self.config.api_key,
            idle_seconds=self.config.session_idle_seconds,
            sweep_interval=self.config.session_sweep_seconds,
            clock=clock,
            limiter=LoginRateLimiter(
                self.config.login_max_failures,
                self.config.login_window_seconds,
                clock=clock,
            ),
        )
        self.registry = DisplayRegistry(queue_size=self.config.channel_queue_size)
        self.hub = BroadcastHub(self.store, self.registry)
        self.started_at: float | None = None

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        self.store.load()
        await self.sessions.start()
        self.started_at = time.time()
        logger.info("Signage service started (settings: %s)", self.store.path)

    async def stop(self) -> None:
        sent = self.hub.shutdown()
        await self.sessions.stop()
        logger.info("Signage service stopped (notified %d display(s))", sent)

    # ── Push channel ──────────────────────────────────────────────

    async def display_stream(self, display_id: str, **metadata: Any) -> AsyncIterator[str]:
        """SSE frames for one display, from ``initial`` until the channel closes.

        The channel is registered when iteration starts and released in
        ``finally``: client disconnect, network drop and server shutdown
        all end here.
        """
        conn = self.hub.open_channel(display_id, **metadata)
        try:
            while True:
                try:
                    message = await conn.receive(timeout=self.config.keepalive_seconds)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
                if message is None:
                    break
                yield encode_sse(message)
        finally:
            self.hub.close_channel(conn)

    # ── Health ────────────────────────────────────────────────────

    def health(self) -> dict[str, Any]:
        uptime = int(time.time() - self.started_at) if self.started_at else 0
        return {
            "status": "ok",
            "uptime": uptime,
            "connections": {
                "sse_clients": self.registry.count(),
                "active_sessions": len(self.sessions),
            },
            "settings": {"count": len(self.store)},
            "emergency": self.hub.emergency.active,
            "dismissal": self.hub.dismissal.active,
        }
