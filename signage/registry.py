"""Display registry — every display with an open push channel.

Each connected display gets a :class:`DisplayConnection` holding its
metadata and a bounded outbound queue; the SSE response for that display
drains the queue.  The registry is mutated only from the event loop and
fan-out always iterates a snapshot of the recipients, so a display joining
or leaving mid-broadcast never disturbs the iteration.

The registry also remembers each display's tag set for the life of the
process: provisioning tags supplied on a display's first connection are
kept, and later connections reuse them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable

from signage.messages import Message
from signage.targeting import normalize_tags

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Unnamed Display"
DEFAULT_LOCATION = "Unknown"


class DisplayConnection:
    """One open push channel and the display behind it."""

    def __init__(
        self,
        display_id: str,
        name: str = DEFAULT_NAME,
        location: str = DEFAULT_LOCATION,
        resolution: str = "unknown",
        page: str = "index",
        tags: list[str] | None = None,
        client_ip: str | None = None,
        queue_size: int = 100,
    ) -> None:
        self.display_id = display_id
        self.name = name
        self.location = location
        self.resolution = resolution
        self.page = page
        self.tags: list[str] = list(tags or [])
        self.client_ip = client_ip
        self.connected_at = time.time()
        self.closed = False
        # None is the end-of-stream sentinel
        self._queue: asyncio.Queue[Message | None] = asyncio.Queue(maxsize=queue_size)

    def send(self, message: Message) -> bool:
        """Queue *message* without blocking.  A full queue closes the channel."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Display %s is not draining its channel — dropping it", self.display_id
            )
            self.close()
            return False
        return True

    def close(self) -> None:
        """End the stream after any frames already queued."""
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def receive(self, timeout: float | None = None) -> Message | None:
        """Next queued message, or ``None`` once closed.

        Raises :class:`asyncio.TimeoutError` if nothing arrives within
        *timeout* seconds (used for keep-alives).
        """
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.display_id,
            "name": self.name,
            "location": self.location,
            "tags": list(self.tags),
            "resolution": self.resolution,
            "page": self.page,
            "ipAddress": self.client_ip,
            "connectedAt": int(self.connected_at * 1000),
        }


class DisplayRegistry:
    """Connected displays keyed by ``display_id``."""

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._connections: dict[str, DisplayConnection] = {}
        self._known_tags: dict[str, list[str]] = {}

    # ── Membership ────────────────────────────────────────────────

    def connect(
        self,
        display_id: str,
        name: str | None = None,
        location: str | None = None,
        resolution: str | None = None,
        page: str | None = None,
        tags: Iterable[str] | str | None = None,
        client_ip: str | None = None,
    ) -> DisplayConnection:
        """Register an open channel for *display_id* and return it.

        Provisioning *tags* only count the first time a display is seen;
        after that the remembered (or admin-assigned) set wins.  An older
        channel still registered under the same id is closed and replaced.
        """
        if display_id not in self._known_tags:
            self._known_tags[display_id] = normalize_tags(tags)

        conn = DisplayConnection(
            display_id,
            name=name or DEFAULT_NAME,
            location=location or DEFAULT_LOCATION,
            resolution=resolution or "unknown",
            page=page or "index",
            tags=self._known_tags[display_id],
            client_ip=client_ip,
            queue_size=self.queue_size,
        )

        previous = self._connections.get(display_id)
        if previous is not None:
            logger.info("Display %s reconnected — closing its previous channel", display_id)
            previous.close()
        self._connections[display_id] = conn

        logger.info(
            "Display connected: %s (%s). Total: %d",
            display_id, conn.name, len(self._connections),
        )
        return conn

    def disconnect(self, conn: DisplayConnection) -> bool:
        """Remove *conn* if it is still the registered channel for its id."""
        conn.close()
        if self._connections.get(conn.display_id) is not conn:
            return False
        del self._connections[conn.display_id]
        logger.info(
            "Display disconnected: %s. Total: %d", conn.display_id, len(self._connections)
        )
        return True

    def get(self, display_id: str) -> DisplayConnection | None:
        return self._connections.get(display_id)

    def count(self) -> int:
        return len(self._connections)

    def connections(self) -> list[DisplayConnection]:
        """Snapshot of the current channels."""
        return list(self._connections.values())

    # ── Tags ──────────────────────────────────────────────────────

    def known(self, display_id: str) -> bool:
        """True once *display_id* has connected at least once."""
        return display_id in self._known_tags

    def tags_for(self, display_id: str) -> list[str]:
        return list(self._known_tags.get(display_id, []))

    def set_tags(self, display_id: str, tags: Iterable[str] | str | None) -> list[str]:
        """Assign a new tag set; applies to the open channel too."""
        normalized = normalize_tags(tags)
        self._known_tags[display_id] = normalized
        conn = self._connections.get(display_id)
        if conn is not None:
            conn.tags = list(normalized)
        return list(normalized)

    # ── Delivery ──────────────────────────────────────────────────

    def broadcast(self, message: Message) -> int:
        """Deliver *message* to every open channel; returns recipients reached."""
        sent = 0
        for conn in self.connections():
            if conn.send(message):
                sent += 1
            elif conn.closed:
                self.disconnect(conn)
        logger.debug("Broadcast %s to %d display(s)", getattr(message, "type", "?"), sent)
        return sent

    def send_to(self, display_id: str, message: Message) -> bool:
        conn = self._connections.get(display_id)
        if conn is None:
            return False
        return conn.send(message)

    def close_all(self) -> None:
        """Close every channel (server shutdown)."""
        for conn in self.connections():
            self.disconnect(conn)
