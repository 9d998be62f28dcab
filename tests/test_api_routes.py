"""End-to-end tests of the HTTP and WebSocket surface against a fake broker."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from trainflow.app import create_app

from conftest import FakeTransport, sample_payload, wait_until


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(app_config, transport):
    app = create_app(config=app_config, transport=transport)
    with TestClient(app) as test_client:
        yield test_client


def _runtime(client: TestClient):
    return client.app.state.runtime


def _ingest(client: TestClient, topic: str, value) -> None:
    payload = json.dumps(value).encode("utf-8")
    client.portal.call(_runtime(client).ingest.handle_message, topic, payload)


def test_health(client: TestClient, transport: FakeTransport) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "message": "TrainFlow API is running",
        "mqtt": "connected",
    }
    transport.connected = False
    assert client.get("/api/health").json()["mqtt"] == "disconnected"


def test_status_reflects_liveness(client: TestClient) -> None:
    body = client.get("/api/mqtt/status").json()
    assert body["connected"] is True
    assert body["esp32Status"] == "offline"
    assert body["lastActivityAgeS"] is None

    _ingest(client, "trainflow/sensor/A", sample_payload(1, x=1))

    body = client.get("/api/mqtt/status").json()
    assert body["esp32Status"] == "online"
    assert body["ingest"]["samples_buffered"] == 1


def test_last_values(client: TestClient) -> None:
    _ingest(client, "trainflow/sensor/A", sample_payload(1, x=1))
    _ingest(client, "trainflow/trainState", {"speed": 4})

    body = client.get("/api/mqtt/data").json()
    assert body["success"] is True
    assert body["data"]["trainflow/sensor/A"]["data"]["x"] == 1
    assert body["trainState"]["data"] == {"speed": 4}

    one = client.get("/api/mqtt/data/trainflow/trainState")
    assert one.status_code == 200
    assert one.json()["data"] == {"speed": 4}
    assert client.get("/api/mqtt/data/trainflow/nothing").status_code == 404


def test_fft_not_ready_then_ready(client: TestClient) -> None:
    body = client.get("/api/mqtt/fft").json()
    assert body == {"success": False, "data": {"sensorA": None, "sensorB": None}}

    for i in range(256):
        _ingest(client, "trainflow/sensor/A", sample_payload(i, x=(-1) ** i * 2000, magnitude=2000))

    body = client.get("/api/mqtt/fft").json()
    assert body["success"] is True
    spectrum = body["data"]["sensorA"]
    assert spectrum["gated"] is False
    assert spectrum["x"]
    assert all(10 <= b["frequency"] <= 250 for b in spectrum["x"])
    assert body["data"]["sensorB"] is None


def test_fft_quiet_window_is_gated(client: TestClient) -> None:
    for i in range(256):
        _ingest(client, "trainflow/sensor/B", sample_payload(i, x=1, magnitude=5))
    spectrum = client.get("/api/mqtt/fft").json()["data"]["sensorB"]
    assert spectrum["gated"] is True
    assert spectrum["x"] == [] and spectrum["y"] == [] and spectrum["z"] == []


def test_publish(client: TestClient, transport: FakeTransport) -> None:
    resp = client.post("/api/mqtt/publish", json={"topic": "trainflow/command", "message": {"a": 1}})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert transport.published == [("trainflow/command", b'{"a":1}')]


def test_publish_while_disconnected_returns_503(client: TestClient, transport) -> None:
    transport.connected = False
    resp = client.post("/api/mqtt/publish", json={"topic": "x", "message": "hi"})
    assert resp.status_code == 503
    assert transport.published == []


def test_publish_validates_topic(client: TestClient) -> None:
    assert client.post("/api/mqtt/publish", json={"topic": "", "message": 1}).status_code == 422


def test_trigger_train(client: TestClient, transport: FakeTransport) -> None:
    resp = client.post("/api/mqtt/trigger-train", json={"direction": "reverse"})
    assert resp.status_code == 200
    topic, payload = transport.published[-1]
    assert topic == "trainflow/command"
    assert json.loads(payload) == {"command": "trigger_train", "direction": "reverse"}


def test_subscribe(client: TestClient, transport: FakeTransport) -> None:
    resp = client.post("/api/mqtt/subscribe", json={"topic": "extra/#"})
    assert resp.status_code == 200
    assert transport.subscribed == ["extra/#"]


def _receive_until(ws, event_type: str, limit: int = 100) -> dict:
    for _ in range(limit):
        event = ws.receive_json()
        if event["type"] == event_type:
            return event
    raise AssertionError(f"no {event_type} event received")


def test_websocket_receives_status_then_data(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first == {"type": "status", "connected": True, "esp32Status": "offline"}

        _ingest(client, "trainflow/sensor/A", sample_payload(7, x=3))
        event = _receive_until(ws, "data")
        assert event["topic"] == "trainflow/sensor/A"
        assert event["data"]["x"] == 3

        periodic = _receive_until(ws, "periodicStatus")
        assert periodic["status"] == "online"
        assert periodic["connected"] is True


def test_websocket_commands_are_published(client: TestClient, transport) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"no": "topic"})
        ws.send_json({"topic": "trainflow/command", "message": {"command": "stop"}})
        assert wait_until(lambda: len(transport.published) == 1)
        # Still attached after the malformed messages.
        _receive_until(ws, "periodicStatus")
    assert transport.published == [("trainflow/command", b'{"command":"stop"}')]


def test_websocket_detaches_on_disconnect(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        assert len(_runtime(client).hub) == 1
    assert wait_until(lambda: len(_runtime(client).hub) == 0)
