"""Tests for the Signage Sync HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from signage.server import create_app


@pytest.fixture()
def client(service):
    with TestClient(create_app(service)) as c:
        yield c


@pytest.fixture()
def auth_header(client, api_key):
    resp = client.post("/api/auth/login", json={"apiKey": api_key})
    return {"X-Session-Token": resp.json()["sessionToken"]}


# ── Auth ──────────────────────────────────────────────────────────

class TestAuthEndpoints:
    def test_login_success(self, client, api_key):
        resp = client.post("/api/auth/login", json={"apiKey": api_key})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert len(data["sessionToken"]) == 64
        assert data["expiresIn"] == 24 * 60 * 60 * 1000

    def test_login_failure(self, client):
        resp = client.post("/api/auth/login", json={"apiKey": "wrong"})
        assert resp.status_code == 401

    def test_validate(self, client, auth_header):
        resp = client.get("/api/auth/validate", headers=auth_header)
        assert resp.status_code == 200
        assert resp.json()["valid"] is True

    def test_validate_without_token(self, client):
        assert client.get("/api/auth/validate").status_code == 401

    def test_logout_invalidates_token(self, client, auth_header):
        assert client.post("/api/auth/logout", headers=auth_header).status_code == 200
        assert client.get("/api/auth/validate", headers=auth_header).status_code == 401

    @pytest.mark.parametrize("body", [{}, {"apiKey": ""}, {"apiKey": 42}])
    def test_login_bad_body_is_400(self, client, body):
        assert client.post("/api/auth/login", json=body).status_code == 400

    def test_repeated_failures_lock_out_the_client(self, client, service, api_key):
        limit = service.config.login_max_failures
        for _ in range(limit):
            assert client.post("/api/auth/login", json={"apiKey": "wrong"}).status_code == 401

        resp = client.post("/api/auth/login", json={"apiKey": api_key})
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0

        # Other addresses are unaffected
        other = {"X-Forwarded-For": "10.1.2.3"}
        assert client.post("/api/auth/login", json={"apiKey": api_key}, headers=other).status_code == 200

    def test_successful_login_resets_failures(self, client, service, api_key):
        for _ in range(service.config.login_max_failures - 1):
            client.post("/api/auth/login", json={"apiKey": "wrong"})
        assert client.post("/api/auth/login", json={"apiKey": api_key}).status_code == 200
        assert client.post("/api/auth/login", json={"apiKey": "wrong"}).status_code == 401
        assert client.post("/api/auth/login", json={"apiKey": api_key}).status_code == 200


class TestAuthBoundary:
    @pytest.mark.parametrize("path,body", [
        ("/api/settings", {"a": 1}),
        ("/api/settings/a", {"value": 1}),
        ("/api/emergency/alert", {"message": "x"}),
        ("/api/emergency/cancel", None),
        ("/api/dismissal/start", None),
        ("/api/dismissal/batch", {"students": []}),
        ("/api/displays/broadcast", {"command": "reload"}),
    ])
    def test_mutations_require_session(self, client, path, body):
        assert client.post(path, json=body).status_code == 401
        bad = {"X-Session-Token": "f" * 64}
        assert client.post(path, json=body, headers=bad).status_code == 401

    @pytest.mark.parametrize("path", [
        "/api/settings",
        "/api/displays",
        "/api/emergency/status",
        "/api/dismissal/status",
        "/api/health",
    ])
    def test_reads_are_public(self, client, path):
        assert client.get(path).status_code == 200

    @pytest.mark.parametrize("path,content", [
        ("/api/settings", "{not json"),
        ("/api/settings/a", "{}"),
        ("/api/settings/a", ""),
        ("/api/displays/broadcast", "[]"),
    ])
    def test_bad_body_without_session_is_401(self, client, path, content):
        headers = {"Content-Type": "application/json"}
        assert client.post(path, content=content, headers=headers).status_code == 401

    def test_rejected_write_changes_nothing(self, client, service):
        client.post("/api/settings", json={"a": 1})
        assert client.get("/api/settings").json() == {}
        assert not service.config.settings_file.exists()


# ── Settings ──────────────────────────────────────────────────────

class TestSettingsEndpoints:
    def test_read_after_write(self, client, auth_header):
        theme = {"accentColor": "#ffd700", "mainContentOpacity": 85, "custom": [1, 2]}
        resp = client.post("/api/settings/customTheme", json={"value": theme}, headers=auth_header)
        assert resp.status_code == 200
        assert client.get("/api/settings/customTheme").json() == {"key": "customTheme", "value": theme}
        assert client.get("/api/settings").json() == {"customTheme": theme}

    def test_save_all_merges(self, client, auth_header):
        client.post("/api/settings", json={"a": 1, "b": 2}, headers=auth_header)
        resp = client.post("/api/settings", json={"b": 3}, headers=auth_header)
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert client.get("/api/settings").json() == {"a": 1, "b": 3}

    def test_unknown_key_404(self, client):
        assert client.get("/api/settings/missing").status_code == 404

    def test_validation_error(self, client, auth_header):
        resp = client.post(
            "/api/settings/customTheme",
            json={"value": {"accentColor": "gold"}},
            headers=auth_header,
        )
        assert resp.status_code == 400
        assert "customTheme" in resp.json()["detail"]

    def test_body_must_be_object(self, client, auth_header):
        resp = client.post("/api/settings", json=[1, 2], headers=auth_header)
        assert resp.status_code == 400

    @pytest.mark.parametrize("path,content", [
        ("/api/settings", "{not json"),
        ("/api/settings/a", "{}"),
        ("/api/settings/a", '{"val": 1}'),
        ("/api/displays/broadcast", '{"command": ""}'),
        ("/api/emergency/alert", "[1]"),
    ])
    def test_malformed_body_is_400(self, client, auth_header, path, content):
        headers = {**auth_header, "Content-Type": "application/json"}
        assert client.post(path, content=content, headers=headers).status_code == 400

    def test_livestream_types_rejected(self, client, auth_header):
        value = {"enabled": "false", "url": "https://live.example.org", "checkInterval": "5000"}
        resp = client.post("/api/settings/livestreamConfig", json={"value": value}, headers=auth_header)
        assert resp.status_code == 400
        assert client.get("/api/settings").json() == {}

    def test_null_value_is_readable(self, client, auth_header):
        client.post("/api/settings/customTheme", json={"value": None}, headers=auth_header)
        resp = client.get("/api/settings/customTheme")
        assert resp.status_code == 200
        assert resp.json() == {"key": "customTheme", "value": None}

    def test_clients_count(self, client, service, auth_header):
        conns = [service.hub.open_channel(f"d{i}") for i in range(3)]
        resp = client.post("/api/settings/announcement", json={"value": "Hi"}, headers=auth_header)
        assert resp.json()["clients"] == 3
        for conn in conns:
            service.hub.close_channel(conn)


# ── Displays ──────────────────────────────────────────────────────

class TestDisplayEndpoints:
    def test_list_displays(self, client, service):
        a = service.hub.open_channel("b-id", name="Gym", location="East", tags="gym")
        b = service.hub.open_channel("a-id", name="Cafeteria")
        resp = client.get("/api/displays")
        data = resp.json()
        assert data["total"] == 2
        assert [d["name"] for d in data["displays"]] == ["Cafeteria", "Gym"]
        assert data["displays"][1]["tags"] == ["gym"]
        service.hub.close_channel(a)
        service.hub.close_channel(b)

    def test_retag_unknown_display(self, client, auth_header):
        resp = client.post("/api/displays/nope/tags", json={"tags": ["gym"]}, headers=auth_header)
        assert resp.status_code == 404

    def test_retag(self, client, service, auth_header):
        conn = service.hub.open_channel("d1")
        resp = client.post("/api/displays/d1/tags", json={"tags": ["Gym", "gym"]}, headers=auth_header)
        assert resp.status_code == 200
        assert resp.json()["tags"] == ["gym"]
        assert service.registry.tags_for("d1") == ["gym"]
        service.hub.close_channel(conn)

    def test_command_to_missing_display(self, client, auth_header):
        resp = client.post("/api/displays/ghost/command", json={"command": "reload"}, headers=auth_header)
        assert resp.status_code == 404

    def test_broadcast_command(self, client, service, auth_header):
        conn = service.hub.open_channel("d1")
        resp = client.post("/api/displays/broadcast", json={"command": "reload"}, headers=auth_header)
        assert resp.json()["clients"] == 1
        service.hub.close_channel(conn)


# ── Emergency / dismissal ─────────────────────────────────────────

class TestEmergencyEndpoints:
    def test_alert_requires_message(self, client, auth_header):
        resp = client.post("/api/emergency/alert", json={"severity": "high"}, headers=auth_header)
        assert resp.status_code == 400

    def test_alert_and_cancel(self, client, auth_header):
        resp = client.post(
            "/api/emergency/alert",
            json={"message": "Shelter in place", "severity": "critical"},
            headers=auth_header,
        )
        assert resp.status_code == 200
        status = client.get("/api/emergency/status").json()
        assert status["active"] is True
        assert status["alert"]["message"] == "Shelter in place"
        assert "timestamp" in status["alert"]

        resp = client.post("/api/emergency/cancel", headers=auth_header)
        assert resp.json()["message"] == "Emergency alert cancelled"
        assert client.get("/api/emergency/status").json() == {"active": False, "alert": None}


class TestDismissalEndpoints:
    def test_batch_requires_list(self, client, auth_header):
        resp = client.post("/api/dismissal/batch", json={"students": "Ana"}, headers=auth_header)
        assert resp.status_code == 400

    def test_dismissal_flow(self, client, auth_header):
        client.post("/api/dismissal/start", headers=auth_header)
        client.post("/api/dismissal/batch", json={"students": [{"name": "Ana"}]}, headers=auth_header)
        status = client.get("/api/dismissal/status").json()
        assert status["active"] is True
        assert status["students"] == [{"name": "Ana"}]
        assert status["startTime"]

        client.post("/api/dismissal/end", headers=auth_header)
        assert client.get("/api/dismissal/status").json()["active"] is False


class TestHealth:
    def test_health(self, client, auth_header):
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["connections"] == {"sse_clients": 0, "active_sessions": 1}
        assert data["settings"] == {"count": 0}
