"""Broadcast hub — turns committed writes and operator actions into frames.

Settings writes go through the store with a commit callback, so the
``settings_update`` carrying the new snapshot is fanned out while the store's
write lock is still held: broadcast order always equals commit order.

Emergency alerts, dismissal mode and operator commands bypass the store and
use the same registry fan-out.  Their current state is kept in memory so a
display that connects mid-alert is told straight away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from signage.messages import (
    CommandMessage,
    DismissalEndMessage,
    DismissalStartMessage,
    DismissalUpdateMessage,
    EmergencyAlertMessage,
    EmergencyCancelMessage,
    InitialMessage,
    ServerShutdownMessage,
    SettingsUpdateMessage,
    now_ms,
)
from signage.registry import DisplayConnection, DisplayRegistry
from signage.store import SettingsStore, Snapshot

logger = logging.getLogger(__name__)


@dataclass
class EmergencyState:
    active: bool = False
    alert: dict[str, Any] | None = None


@dataclass
class DismissalState:
    active: bool = False
    students: list[Any] = field(default_factory=list)
    start_time: str | None = None


class BroadcastHub:
    """Fan-out of settings snapshots and side-channel events."""

    def __init__(self, store: SettingsStore, registry: DisplayRegistry) -> None:
        self.store = store
        self.registry = registry
        self.emergency = EmergencyState()
        self.dismissal = DismissalState()

    # ── Channels ──────────────────────────────────────────────────

    def open_channel(self, display_id: str, **metadata: Any) -> DisplayConnection:
        """Register a display and queue its ``initial`` frame.

        Registration and the snapshot read happen without yielding to the
        event loop, so the display either sees a write in ``initial`` or
        receives its ``settings_update``, never neither.
        """
        conn = self.registry.connect(display_id, **metadata)
        conn.send(self._initial_for(conn))

        if self.emergency.active and self.emergency.alert is not None:
            conn.send(EmergencyAlertMessage(alert=self.emergency.alert))
        if self.dismissal.active:
            conn.send(DismissalStartMessage())
            conn.send(DismissalUpdateMessage(students=self.dismissal.students))
        return conn

    def close_channel(self, conn: DisplayConnection) -> None:
        self.registry.disconnect(conn)

    def _initial_for(self, conn: DisplayConnection) -> InitialMessage:
        return InitialMessage(
            displayId=conn.display_id,
            displayTags=list(conn.tags),
            settings=self.store.get_all(),
        )

    # ── Settings writes ───────────────────────────────────────────

    async def set_setting(self, key: str, value: Any) -> int:
        """Commit one key and broadcast the full snapshot; returns recipients."""
        sent = 0

        def fan_out(snapshot: Snapshot) -> None:
            nonlocal sent
            sent = self.registry.broadcast(SettingsUpdateMessage(settings=snapshot, key=key))

        await self.store.set(key, value, on_commit=fan_out)
        logger.info("Setting '%s' updated and broadcast to %d display(s)", key, sent)
        return sent

    async def set_settings(self, snapshot: Snapshot) -> int:
        """Commit a settings object and broadcast the full snapshot."""
        sent = 0

        def fan_out(committed: Snapshot) -> None:
            nonlocal sent
            sent = self.registry.broadcast(SettingsUpdateMessage(settings=committed))

        await self.store.set_all(snapshot, on_commit=fan_out)
        logger.info("Settings saved (%d keys) and broadcast to %d display(s)", len(snapshot), sent)
        return sent

    def retag(self, display_id: str, tags: Any) -> list[str]:
        """Assign tags; a connected display gets a fresh ``initial`` at once."""
        normalized = self.registry.set_tags(display_id, tags)
        conn = self.registry.get(display_id)
        if conn is not None:
            conn.send(self._initial_for(conn))
        logger.info("Display %s tags set to %s", display_id, normalized)
        return normalized

    # ── Side channels ─────────────────────────────────────────────

    def emergency_alert(self, alert: dict[str, Any]) -> int:
        self.emergency.active = True
        self.emergency.alert = {**alert, "timestamp": now_ms()}
        logger.warning("EMERGENCY ALERT SENT: %s", alert.get("message"))
        return self.registry.broadcast(EmergencyAlertMessage(alert=self.emergency.alert))

    def emergency_cancel(self) -> int:
        self.emergency.active = False
        self.emergency.alert = None
        logger.info("Emergency alert cancelled")
        return self.registry.broadcast(EmergencyCancelMessage())

    def dismissal_start(self) -> int:
        self.dismissal = DismissalState(
            active=True, start_time=datetime.now(timezone.utc).isoformat()
        )
        logger.info("Dismissal mode activated")
        return self.registry.broadcast(DismissalStartMessage())

    def dismissal_end(self) -> int:
        self.dismissal = DismissalState()
        logger.info("Dismissal mode deactivated")
        return self.registry.broadcast(DismissalEndMessage())

    def dismissal_update(self, students: list[Any]) -> int:
        self.dismissal.students = list(students)
        logger.info("Dismissal batch updated: %d students", len(students))
        return self.registry.broadcast(DismissalUpdateMessage(students=self.dismissal.students))

    def command(
        self, command: str, params: dict[str, Any] | None = None, target: str | None = None
    ) -> int:
        """Send an operator command to one display (*target*) or all of them."""
        if target is None:
            return self.registry.broadcast(CommandMessage(command=command, params=params or {}))
        message = CommandMessage(command=command, params=params or {}, targetDisplay=target)
        return 1 if self.registry.send_to(target, message) else 0

    def shutdown(self) -> int:
        """Tell every display the server is going away, then close channels."""
        sent = self.registry.broadcast(ServerShutdownMessage())
        self.registry.close_all()
        return sent
