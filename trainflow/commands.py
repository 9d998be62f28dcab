"""Outbound commands to the sensor source.

Publishing is fire-and-forget: a failed publish is reported to the caller
and dropped, never queued or retried.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .mqtt_transport import TransportUnavailableError

LOGGER = logging.getLogger(__name__)

TRIGGER_TRAIN_COMMAND = "trigger_train"


class OutboundTransport(Protocol):
    @property
    def connected(self) -> bool: ...

    def publish(self, topic: str, payload: bytes) -> None: ...

    def subscribe(self, topic: str) -> None: ...


@dataclass(frozen=True, slots=True)
class PublishResult:
    ok: bool
    reason: str | None = None


def encode_payload(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, bytearray):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class CommandPublisher:
    def __init__(self, transport: OutboundTransport | None, command_topic: str):
        self.transport = transport
        self.command_topic = command_topic

    @property
    def connected(self) -> bool:
        return self.transport is not None and self.transport.connected

    def publish(self, topic: str, payload: Any) -> PublishResult:
        if not topic:
            return PublishResult(False, "topic is required")
        if self.transport is None:
            LOGGER.error("MQTT client not connected; dropping publish to %s", topic)
            return PublishResult(False, "not connected")
        try:
            data = encode_payload(payload)
        except (TypeError, ValueError) as exc:
            return PublishResult(False, f"payload not serialisable: {exc}")
        try:
            self.transport.publish(topic, data)
        except TransportUnavailableError as exc:
            LOGGER.error("Publish to %s failed: %s", topic, exc)
            return PublishResult(False, str(exc))
        LOGGER.info("Published to %s: %s", topic, data.decode("utf-8", errors="replace"))
        return PublishResult(True)

    def subscribe(self, topic: str) -> PublishResult:
        if not topic:
            return PublishResult(False, "topic is required")
        if self.transport is None:
            return PublishResult(False, "not connected")
        try:
            self.transport.subscribe(topic)
        except TransportUnavailableError as exc:
            LOGGER.error("Subscribe to %s failed: %s", topic, exc)
            return PublishResult(False, str(exc))
        LOGGER.info("Subscribed to %s", topic)
        return PublishResult(True)

    def trigger_train(self, direction: str | None = None) -> PublishResult:
        message: dict[str, Any] = {"command": TRIGGER_TRAIN_COMMAND}
        if direction is not None:
            message["direction"] = direction
        return self.publish(self.command_topic, message)
