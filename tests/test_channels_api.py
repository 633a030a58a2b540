import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from switchboard.config import Settings
from switchboard.container import build_container
from switchboard.main import app
from switchboard.services.cache_store import InMemoryCacheStore


@pytest.fixture
def container(repositories, driver_factory, tmp_path):
    settings = Settings(
        cache_backend="memory",
        openai_api_key="",
        qr_public_dir=str(tmp_path),
        restart_pause_seconds=0,
        debounce_seconds=0,
    )
    return build_container(
        settings,
        repositories=repositories,
        cache=InMemoryCacheStore(),
        driver_factory=driver_factory,
    )


@pytest.fixture
def client(container):
    app.state.container = container
    with TestClient(app) as client:
        yield client
    app.state.container = None


class TestChannelLifecycle:
    def test_start_and_status(self, client):
        started = client.post("/channels/ch-1/start")
        status = client.get("/channels/ch-1/status")

        assert started.status_code == 200
        assert started.json() == {"success": True, "channel_id": "ch-1", "message": "started"}
        body = status.json()
        assert body["is_active"] is True
        assert body["is_connected"] is True
        assert body["provider"] == "whatsapp_web"
        assert client.get("/channels/active").json() == {"channel_ids": ["ch-1"], "count": 1}

    def test_status_of_stopped_channel(self, client):
        body = client.get("/channels/ch-1/status").json()

        assert body["is_active"] is False
        assert body["is_authenticated"] is False

    def test_unknown_channel(self, client):
        assert client.post("/channels/nope/start").status_code == 404
        assert client.get("/channels/nope/status").status_code == 404

    def test_startup_failure_is_reported(self, client, driver_factory):
        driver_factory.behaviour["ch-1"] = {"init_error": RuntimeError("bridge unreachable")}

        with pytest.raises(RuntimeError):
            client.post("/channels/ch-1/start")
        assert client.get("/channels/active").json()["count"] == 0

    def test_stop(self, client, driver_factory):
        client.post("/channels/ch-1/start")

        first = client.post("/channels/ch-1/stop").json()
        second = client.post("/channels/ch-1/stop").json()

        assert first["message"] == "stopped"
        assert second["message"] == "not running"
        assert driver_factory.created[0].destroyed is True

    def test_restart_replaces_driver(self, client, driver_factory):
        client.post("/channels/ch-1/start")

        response = client.post("/channels/ch-1/restart")

        assert response.json()["message"] == "restarted"
        assert len(driver_factory.created) == 2
        assert driver_factory.created[0].destroyed is True
        assert client.get("/channels/active").json()["channel_ids"] == ["ch-1"]


class TestSendMessage:
    def test_send_records_outgoing_message(self, client, driver_factory, repositories):
        client.post("/channels/ch-1/start")

        response = client.post(
            "/channels/ch-1/messages",
            json={"to": "77010001122@c.us", "text": "Your table is booked", "conversation_id": "conv-1"},
        )

        assert response.json() == {"success": True, "message_id": "wamid.1", "error": None}
        assert driver_factory.created[0].sent[0].text == "Your table is booked"
        stored = repositories.messages.messages[0]
        assert stored.conversation_id == "conv-1"
        assert stored.provider_message_id == "wamid.1"

    def test_accepts_provider_field_names(self, client, driver_factory):
        client.post("/channels/ch-1/start")

        response = client.post("/channels/ch-1/messages", json={"chatId": "77010001122@c.us", "body": "Hi"})

        assert response.status_code == 200
        assert driver_factory.created[0].sent[0].to == "77010001122@c.us"

    def test_empty_text_rejected(self, client):
        client.post("/channels/ch-1/start")

        response = client.post("/channels/ch-1/messages", json={"to": "77010001122@c.us", "text": ""})

        assert response.status_code == 422

    def test_channel_must_be_running(self, client):
        response = client.post("/channels/ch-1/messages", json={"to": "77010001122@c.us", "text": "Hi"})

        assert response.status_code == 404


class TestWebhook:
    def test_inactive_channel_is_acknowledged(self, client):
        response = client.post("/channels/ch-1/webhook", json={"messages": []})

        assert response.status_code == 200
        assert response.json() == {"success": False, "accepted": 0}

    def test_messages_are_accepted(self, client):
        client.post("/channels/ch-1/start")

        response = client.post(
            "/channels/ch-1/webhook",
            json={"messages": [{"id": "wamid.in.1", "from": "77010001122@c.us", "body": "Hello"}]},
        )

        assert response.json() == {"success": True, "accepted": 1}

    def test_malformed_payload_is_still_acknowledged(self, client):
        client.post("/channels/ch-1/start")

        response = client.post("/channels/ch-1/webhook", json={"messages": [{"id": "wamid.in.2"}]})

        assert response.status_code == 200
        assert response.json() == {"success": False, "accepted": 0}


class TestPairing:
    def test_authenticated_channel_needs_no_qr(self, client):
        client.post("/channels/ch-1/start")

        body = client.get("/channels/ch-1/qr").json()

        assert body["already_authenticated"] is True
        assert body["qr_code"] == ""

    def test_qr_issued_for_unpaired_channel(self, client, driver_factory, tmp_path, container):
        driver_factory.behaviour["ch-1"] = {"authenticated": False}

        body = client.get("/channels/ch-1/qr").json()

        assert body["already_authenticated"] is False
        assert body["qr_code"] == "2@fake-pairing-code"
        assert body["qr_code_url"].startswith("/public/qr-images/qr-ch-1-")
        assert body["session_id"]
        assert len(list(tmp_path.glob("qr-*.svg"))) == 1
        assert container.auth_sessions.get_stats()["by_status"]["pending"] == 1

    def test_session_expiring_mid_request_is_replaced(self, client, driver_factory, container):
        driver_factory.behaviour["ch-1"] = {"authenticated": False}
        client.post("/channels/ch-1/start")
        original = asyncio.run(container.auth_sessions.get_active_session_by_channel("ch-1"))
        container.auth_sessions.update_session = AsyncMock(return_value=None)

        response = client.get("/channels/ch-1/qr")

        assert response.status_code == 200
        assert response.json()["session_id"] not in ("", None, original.id)
        assert container.auth_sessions.get_stats()["by_status"]["pending"] == 1

    def test_unknown_channel(self, client):
        assert client.get("/channels/nope/qr").status_code == 404


class TestFirewallApi:
    def test_stats(self, client):
        body = client.get("/firewall/stats").json()

        assert body["total_checked"] == 0
        assert body["violations_by_type"] == {}

    def test_sender_report_and_unblock(self, client, container):
        report = client.get("/firewall/senders/77010001122@c.us").json()
        unblocked = client.post("/firewall/senders/77010001122@c.us/unblock").json()

        assert report["block"]["is_blocked"] is False
        assert unblocked == {"success": True, "sender_id": "77010001122@c.us", "message": "unblocked"}

    def test_clear_sender_forgets_block(self, client, container):
        asyncio.run(container.firewall.penalties.block_sender("77010001122@c.us", 600))
        assert client.get("/firewall/senders/77010001122@c.us").json()["block"]["is_blocked"] is True

        cleared = client.delete("/firewall/senders/77010001122@c.us").json()
        report = client.get("/firewall/senders/77010001122@c.us").json()

        assert cleared == {"success": True, "sender_id": "77010001122@c.us", "message": "cleared"}
        assert report["block"]["is_blocked"] is False


class TestHealth:
    def test_health(self, client):
        client.post("/channels/ch-1/start")

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["active_channels"] == 1
        assert body["flows"] == ["reception"]


class TestRealtime:
    def test_events_stream_and_disconnect_unsubscribes(self, client, container):
        baseline = container.events.subscriber_count

        with client.websocket_connect("/ws/companies/company-1") as websocket:
            client.post("/channels/ch-1/start")
            event = websocket.receive_json()

        assert event["event"] == "channel.started"
        assert event["channelId"] == "ch-1"
        assert container.events.subscriber_count == baseline
