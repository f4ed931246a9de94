"""Display sync agent — keeps one display's state in step with the server.

States: CONNECTING → CONNECTED ⇄ RECONNECTING → CONNECTED | FAILED_FALLBACK

  The push channel is opened with the display's identity
  ``initial`` / ``settings_update`` → apply the full snapshot and cache it
  Channel error or close → RECONNECTING, one plain settings fetch
  Fetch fails too → cached snapshot (FAILED_FALLBACK); retries continue
  ``server_shutdown`` → expected close, reconnect quietly

Retries use a fixed delay and never give up.  Rendering is delegated to a
:class:`DisplayHooks` object; a failing hook is logged and never stops the
agent.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import aclosing
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from signage.messages import BroadcastMessage
from signage.targeting import normalize_tags

from .bell import BellStatus, bell_status
from .cache import SnapshotCache
from .config import DisplayConfig
from .pollers import SequencedPoller
from .state import DisplayState
from .stream_client import SignageClient, StreamClosed

logger = logging.getLogger(__name__)


class ConnState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED_FALLBACK = "failed_fallback"


class DisplayHooks:
    """Rendering collaborators.  The default implementation only logs."""

    def render(self, state: DisplayState) -> None:
        logger.info("Render: %d slide(s), theme vars %s", len(state.slides), sorted(state.theme))

    def show_emergency(self, alert: dict[str, Any]) -> None:
        logger.warning("EMERGENCY ALERT: %s", alert.get("message"))

    def hide_emergency(self) -> None:
        logger.info("Emergency alert cleared")

    def show_dismissal(self) -> None:
        logger.info("Dismissal mode started")

    def hide_dismissal(self) -> None:
        logger.info("Dismissal mode ended")

    def update_dismissal(self, students: list[Any]) -> None:
        logger.info("Dismissal students updated: %d", len(students))

    def update_bell(self, status: Optional[BellStatus]) -> None:
        if status is not None:
            logger.debug("Bell: %s (%s), next %s at %s", status.current_label,
                         status.remaining_label, status.next_label, status.next_time_label)

    def set_livestream(self, url: Optional[str]) -> None:
        logger.info("Livestream %s", f"live at {url}" if url else "hidden")

    def update_weather(self, data: dict[str, Any]) -> None:
        logger.debug("Weather updated: %s", sorted(data))

    def handle_command(self, command: str, params: dict[str, Any]) -> None:
        logger.info("Command received: %s %s", command, params)

    def connection_changed(self, state: ConnState) -> None:
        logger.debug("Connection state: %s", state.value)


class DisplayAgent:
    """Client side of the settings push channel, with reconnect and fallback."""

    def __init__(
        self,
        config: DisplayConfig,
        hooks: Optional[DisplayHooks] = None,
        client: Optional[SignageClient] = None,
        cache: Optional[SnapshotCache] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.hooks = hooks or DisplayHooks()
        self.client = client or SignageClient(config.server_url, timeout=config.request_timeout)
        self.cache = cache or SnapshotCache(config.cache_file)
        self.state = DisplayState(display_id=config.display_id, tags=normalize_tags(config.tags))
        self.conn_state = ConnState.CONNECTING
        self._clock = clock
        self._running = False
        self._stopped = False
        self._initial_applied = False
        self._livestream_url: Optional[str] = None
        self._background: set[asyncio.Task] = set()

        self.dismissal_poller: SequencedPoller[dict] = SequencedPoller(
            "dismissal", self.client.fetch_dismissal_status,
            self._apply_dismissal_status, config.dismissal_poll_interval,
        )
        self.bell_poller: SequencedPoller[Optional[BellStatus]] = SequencedPoller(
            "bell", self._evaluate_bell,
            lambda status: self._hook("update_bell", status), config.bell_tick_interval,
        )
        self.livestream_poller: SequencedPoller[bool] = SequencedPoller(
            "livestream", self._probe_livestream, self._apply_livestream,
            self.state.livestream["checkInterval"] / 1000,
        )
        self.weather_poller: SequencedPoller[Any] = SequencedPoller(
            "weather", lambda: self.client.fetch_json(config.weather_url),
            self._apply_weather, config.weather_poll_interval,
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Run the push-channel loop until stopped."""
        logger.info("=== Signage Display Agent ===")
        logger.info("ID: %s | Server: %s | Tags: %s",
                    self.state.display_id, self.config.server_url, self.state.tags or "-")
        self._running = True
        if self.config.weather_url:
            self.weather_poller.start()
        try:
            await self._stream_loop()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down display agent...")
        self._running = False
        for poller in (self.dismissal_poller, self.bell_poller,
                       self.livestream_poller, self.weather_poller):
            await poller.stop()
        await self.client.aclose()

    @property
    def running(self) -> bool:
        return self._running

    # ── Push channel ──────────────────────────────────────────────

    def stream_params(self) -> dict[str, str]:
        params = {
            "displayId": self.state.display_id,
            "name": self.config.name,
            "location": self.config.location,
            "resolution": self.config.resolution,
            "page": self.config.page,
        }
        if self.config.tags:
            params["tags"] = ",".join(self.config.tags)
        return {k: v for k, v in params.items() if v}

    async def _stream_loop(self) -> None:
        while self._running:
            expected = False
            try:
                expected = await self._consume_stream()
            except (httpx.HTTPError, StreamClosed) as exc:
                logger.warning("Settings stream lost: %s", exc)
            except Exception:
                logger.exception("Settings stream failed")

            if not self._running:
                break
            self._set_conn_state(ConnState.RECONNECTING)
            if not expected or not self._initial_applied:
                try:
                    await self._fallback()
                except Exception:
                    logger.exception("Settings fallback failed")
            logger.info("Reconnecting in %.0fs...", self.config.reconnect_delay)
            await asyncio.sleep(self.config.reconnect_delay)

    async def _consume_stream(self) -> bool:
        """Read the channel until it ends; True if the server announced shutdown."""
        async with aclosing(self.client.stream(self.stream_params())) as messages:
            async for message in messages:
                if message.type == "server_shutdown":
                    logger.info("Server is shutting down, will reconnect...")
                    return True
                await self.handle_message(message)
        return False

    async def handle_message(self, message: BroadcastMessage) -> None:
        msg_type = message.type
        if msg_type == "initial":
            if message.displayId:
                self.state.display_id = message.displayId
            retagged = self.state.set_tags(message.displayTags)
            await self._apply(message.settings, "stream", retagged=retagged)
            self._initial_applied = True
            self._set_conn_state(ConnState.CONNECTED)
            logger.info("Received initial settings (tags: %s)", self.state.tags or "-")
        elif msg_type == "settings_update":
            logger.info("Settings updated from server (%s)", message.key or "all settings")
            await self._apply(message.settings, "stream")
        elif msg_type == "emergency_alert":
            self.state.emergency_alert = message.alert
            self._hook("show_emergency", message.alert)
        elif msg_type == "emergency_cancel":
            self.state.emergency_alert = None
            self._hook("hide_emergency")
        elif msg_type == "dismissal_start":
            self.state.dismissal_active = True
            self._hook("show_dismissal")
            self.dismissal_poller.start()
        elif msg_type == "dismissal_end":
            await self._end_dismissal()
        elif msg_type == "dismissal_update":
            self.state.dismissal_students = list(message.students)
            self._hook("update_dismissal", self.state.dismissal_students)
        elif msg_type == "command":
            if message.targetDisplay not in ("*", self.state.display_id):
                return
            if message.command == "refresh_settings":
                await self.refresh_settings()
            else:
                self._hook("handle_command", message.command, message.params)
        else:
            logger.debug("Unhandled message type: %s", msg_type)

    # ── Settings ──────────────────────────────────────────────────

    async def refresh_settings(self) -> bool:
        """One plain GET /api/settings; True if it was applied."""
        try:
            settings = await self.client.fetch_settings()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Settings fetch failed: %s", exc)
            return False
        return await self._apply(settings, "fetch")

    async def _fallback(self) -> None:
        if await self.refresh_settings():
            await self._check_emergency()
            return

        cached = self.cache.load()
        if cached is not None:
            retagged = False
            if not self.state.tags and cached.tags:
                retagged = self.state.set_tags(cached.tags)
            if await self._apply(cached.settings, "cache", retagged=retagged):
                logger.warning("Server unreachable, showing cached settings")
        else:
            logger.error("Server unreachable and no cached settings, keeping current display")
        self._set_conn_state(ConnState.FAILED_FALLBACK)

    async def _apply(self, settings: Any, source: str, retagged: bool = False) -> bool:
        """Apply a full snapshot; False (current view kept) if it cannot be applied."""
        first = self.state.source is None
        try:
            changed = self.state.apply_settings(settings, source)
        except Exception:
            logger.exception("Could not apply settings from %s, keeping current display", source)
            if retagged:
                self._hook("render", self.state)
            return False
        if source != "cache":
            self.cache.save(self.state.settings, self.state.tags)
        if changed or retagged or first:
            self._hook("render", self.state)
        try:
            await self._sync_pollers(changed or retagged)
        except Exception:
            logger.exception("Could not update pollers after settings from %s", source)
        return True

    async def _check_emergency(self) -> None:
        try:
            status = await self.client.fetch_emergency_status()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Emergency status check failed: %s", exc)
            return
        if not isinstance(status, dict):
            logger.warning("Ignoring emergency status that is not an object")
            return
        if status.get("active") and status.get("alert"):
            self.state.emergency_alert = status["alert"]
            self._hook("show_emergency", status["alert"])
        elif self.state.emergency_alert is not None:
            self.state.emergency_alert = None
            self._hook("hide_emergency")

    # ── Pollers ───────────────────────────────────────────────────

    async def _sync_pollers(self, changed: bool) -> None:
        bell = self.state.bell_schedule
        if bell and bell.get("enabled"):
            if self.bell_poller.running:
                if changed:
                    await self.bell_poller.refresh()
            else:
                self.bell_poller.start()
        elif self.bell_poller.running:
            await self.bell_poller.stop()
            self._hook("update_bell", None)

        live = self.state.livestream
        if live["enabled"] and live["autoDetect"] and live["url"]:
            await self.livestream_poller.set_interval(live["checkInterval"] / 1000)
            self.livestream_poller.start()
        else:
            if self.livestream_poller.running:
                await self.livestream_poller.stop()
            # A fixed URL is shown as-is; disabled hides it
            self._set_livestream(live["url"] if live["enabled"] else None)

    async def _evaluate_bell(self) -> Optional[BellStatus]:
        return bell_status(self.state.bell_schedule, self._clock())

    async def _probe_livestream(self) -> bool:
        url = self.state.livestream["url"]
        return bool(url) and await self.client.probe(url)

    def _apply_livestream(self, live: bool) -> None:
        self._set_livestream(self.state.livestream["url"] if live else None)

    def _set_livestream(self, url: Optional[str]) -> None:
        if url == self._livestream_url:
            return
        self._livestream_url = url
        self._hook("set_livestream", url)

    def _apply_weather(self, data: Any) -> None:
        if isinstance(data, dict):
            self._hook("update_weather", data)
        else:
            logger.warning("Ignoring weather response that is not an object")

    def _apply_dismissal_status(self, status: dict[str, Any]) -> None:
        if not status.get("active"):
            if self.state.dismissal_active:
                # Missed dismissal_end while disconnected
                task = asyncio.get_running_loop().create_task(self._end_dismissal())
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            return
        students = status.get("students") or []
        if students != self.state.dismissal_students:
            self.state.dismissal_students = list(students)
            self._hook("update_dismissal", self.state.dismissal_students)

    async def _end_dismissal(self) -> None:
        self.state.dismissal_active = False
        self.state.dismissal_students = []
        self._hook("hide_dismissal")
        await self.dismissal_poller.stop()

    # ── Helpers ───────────────────────────────────────────────────

    def _set_conn_state(self, state: ConnState) -> None:
        if state == self.conn_state:
            return
        logger.info("Connection: %s → %s", self.conn_state.value, state.value)
        self.conn_state = state
        self._hook("connection_changed", state)

    def _hook(self, name: str, *args: Any) -> None:
        try:
            getattr(self.hooks, name)(*args)
        except Exception:
            logger.exception("Display hook error for %s", name)
