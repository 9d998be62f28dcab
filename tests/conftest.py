"""Shared test helpers for the trainflow test suite."""

from __future__ import annotations

import asyncio
import json
import os
import time
from typing import Any

import pytest

os.environ.setdefault("TRAINFLOW_DISABLE_AUTO_APP", "1")

from trainflow.config import AppConfig, config_from_dict  # noqa: E402
from trainflow.mqtt_transport import TransportUnavailableError  # noqa: E402


def wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step_s)
    return False


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Async version of :func:`wait_until`; yields to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In-memory stand-in for :class:`trainflow.mqtt_transport.MqttTransport`."""

    def __init__(self, *, connected: bool = True):
        self.connected = connected
        self.started = False
        self.closed = False
        self.published: list[tuple[str, bytes]] = []
        self.subscribed: list[str] = []
        self._queue: asyncio.Queue[tuple[str, bytes]] | None = None

    async def start(self) -> None:
        self.started = True
        self._queue = asyncio.Queue()

    async def wait_connected(self, timeout_s: float) -> bool:
        return self.connected

    async def messages(self):
        assert self._queue is not None
        while True:
            yield await self._queue.get()

    def inject(self, topic: str, payload: Any) -> None:
        """Queue an inbound message; dicts and lists are JSON-encoded."""
        assert self._queue is not None
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload).encode("utf-8")
        elif isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._queue.put_nowait((topic, payload))

    def publish(self, topic: str, payload: bytes) -> None:
        if not self.connected:
            raise TransportUnavailableError("not connected")
        self.published.append((topic, payload))

    def subscribe(self, topic: str) -> None:
        if not self.connected:
            raise TransportUnavailableError("not connected")
        self.subscribed.append(topic)

    def close(self) -> None:
        self.closed = True
        self.connected = False


@pytest.fixture
def app_config() -> AppConfig:
    return config_from_dict(
        {"broadcast": {"status_interval_ms": 50}},
        environ={},
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


def sample_payload(ts: int, x: float = 0.0, y: float = 0.0, z: float = 0.0, magnitude=None):
    return {
        "timestamp": ts,
        "x": x,
        "y": y,
        "z": z,
        "magnitude": magnitude if magnitude is not None else abs(x) + abs(y) + abs(z),
    }
