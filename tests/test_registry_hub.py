"""Tests for the display registry and the broadcast hub."""

from __future__ import annotations

import pytest

from signage.hub import BroadcastHub
from signage.messages import SettingsUpdateMessage
from signage.registry import DisplayRegistry
from signage.store import SettingsStore


def drain(conn) -> list:
    out = []
    while conn.pending:
        out.append(conn._queue.get_nowait())
    return out


@pytest.fixture()
def registry():
    return DisplayRegistry(queue_size=10)


@pytest.fixture()
def hub(tmp_path, registry):
    store = SettingsStore(tmp_path / "settings.json")
    store.load()
    return BroadcastHub(store, registry)


# ── Registry ──────────────────────────────────────────────────────

class TestRegistry:
    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, registry):
        conn = registry.connect("d1", name="Lobby")
        assert registry.count() == 1
        assert registry.get("d1") is conn
        assert registry.disconnect(conn)
        assert registry.count() == 0
        assert conn.closed

    @pytest.mark.asyncio
    async def test_defaults(self, registry):
        conn = registry.connect("d1")
        summary = conn.summary()
        assert summary["name"] == "Unnamed Display"
        assert summary["location"] == "Unknown"
        assert summary["tags"] == []

    @pytest.mark.asyncio
    async def test_provisioning_tags_first_connection_only(self, registry):
        first = registry.connect("d1", tags="Gym, Sports")
        assert first.tags == ["gym", "sports"]
        registry.disconnect(first)
        second = registry.connect("d1", tags=["library"])
        assert second.tags == ["gym", "sports"]

    @pytest.mark.asyncio
    async def test_admin_tags_survive_reconnect(self, registry):
        conn = registry.connect("d1", tags=["gym"])
        registry.set_tags("d1", ["Office"])
        assert conn.tags == ["office"]
        registry.disconnect(conn)
        assert registry.connect("d1").tags == ["office"]

    @pytest.mark.asyncio
    async def test_reconnect_replaces_stale_channel(self, registry):
        old = registry.connect("d1")
        new = registry.connect("d1")
        assert old.closed
        assert registry.get("d1") is new
        # The stale generator's cleanup must not evict the new channel
        assert not registry.disconnect(old)
        assert registry.get("d1") is new
        assert registry.count() == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_recipient(self):
        registry = DisplayRegistry(queue_size=2)
        slow = registry.connect("slow")
        fast = registry.connect("fast")
        msg = SettingsUpdateMessage(settings={})
        assert registry.broadcast(msg) == 2
        drain(fast)
        assert registry.broadcast(msg) == 2
        drain(fast)
        # slow never drained: third frame overflows
        assert registry.broadcast(msg) == 1
        assert slow.closed
        assert registry.get("slow") is None
        assert registry.get("fast") is fast

    @pytest.mark.asyncio
    async def test_known(self, registry):
        assert not registry.known("d1")
        registry.disconnect(registry.connect("d1"))
        assert registry.known("d1")


# ── Hub ───────────────────────────────────────────────────────────

class TestHub:
    @pytest.mark.asyncio
    async def test_initial_is_first_frame(self, hub):
        await hub.set_setting("generalConfig", {"schoolName": "Lincoln"})
        conn = hub.open_channel("d1", tags="gym")
        frames = drain(conn)
        assert frames[0].type == "initial"
        assert frames[0].displayId == "d1"
        assert frames[0].displayTags == ["gym"]
        assert frames[0].settings == {"generalConfig": {"schoolName": "Lincoln"}}

    @pytest.mark.asyncio
    async def test_fan_out_completeness(self, hub):
        conns = [hub.open_channel(f"d{i}") for i in range(5)]
        for c in conns:
            drain(c)
        sent = await hub.set_setting("announcement", "Snow day")
        assert sent == 5
        for c in conns:
            (frame,) = drain(c)
            assert frame.type == "settings_update"
            assert frame.key == "announcement"
            assert frame.settings == {"announcement": "Snow day"}

    @pytest.mark.asyncio
    async def test_updates_carry_full_snapshot(self, hub):
        await hub.set_setting("a", 1)
        conn = hub.open_channel("d1")
        drain(conn)
        await hub.set_settings({"b": 2})
        (frame,) = drain(conn)
        assert frame.settings == {"a": 1, "b": 2}
        assert frame.key is None

    @pytest.mark.asyncio
    async def test_broadcast_order_matches_commit_order(self, hub):
        conn = hub.open_channel("d1")
        drain(conn)
        for i in range(5):
            await hub.set_setting("counter", i)
        assert [f.settings["counter"] for f in drain(conn)] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_retag_sends_fresh_initial(self, hub):
        conn = hub.open_channel("d1", tags=["gym"])
        drain(conn)
        assert hub.retag("d1", ["Library"]) == ["library"]
        (frame,) = drain(conn)
        assert frame.type == "initial"
        assert frame.displayTags == ["library"]

    @pytest.mark.asyncio
    async def test_emergency_replayed_to_new_display(self, hub):
        hub.emergency_alert({"message": "Lockdown", "severity": "critical"})
        conn = hub.open_channel("late")
        types = [f.type for f in drain(conn)]
        assert types == ["initial", "emergency_alert"]
        hub.emergency_cancel()
        assert not hub.emergency.active
        assert hub.emergency.alert is None

    @pytest.mark.asyncio
    async def test_dismissal_state(self, hub):
        conn = hub.open_channel("d1")
        drain(conn)
        hub.dismissal_start()
        hub.dismissal_update([{"name": "Ana", "grade": 3}])
        assert [f.type for f in drain(conn)] == ["dismissal_start", "dismissal_update"]

        late = hub.open_channel("d2")
        frames = drain(late)
        assert [f.type for f in frames] == ["initial", "dismissal_start", "dismissal_update"]
        assert frames[-1].students == [{"name": "Ana", "grade": 3}]

        hub.dismissal_end()
        assert not hub.dismissal.active
        assert hub.dismissal.students == []

    @pytest.mark.asyncio
    async def test_targeted_command(self, hub):
        a = hub.open_channel("a")
        b = hub.open_channel("b")
        drain(a)
        drain(b)
        assert hub.command("reload", target="b") == 1
        assert drain(a) == []
        (frame,) = drain(b)
        assert frame.command == "reload"
        assert frame.targetDisplay == "b"
        assert hub.command("reload", target="missing") == 0

    @pytest.mark.asyncio
    async def test_shutdown_notifies_and_closes(self, hub, registry):
        conn = hub.open_channel("d1")
        drain(conn)
        assert hub.shutdown() == 1
        assert registry.count() == 0
        frames = drain(conn)
        assert frames[0].type == "server_shutdown"
        assert frames[-1] is None
