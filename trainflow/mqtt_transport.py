"""Bridge between a paho-mqtt client and the asyncio ingestion path.

paho runs its network loop on its own thread.  Inbound messages are handed to
the event loop with ``call_soon_threadsafe`` and land in a bounded queue that
:meth:`MqttTransport.messages` drains in arrival order.  When the queue is
full the newest message is dropped and a rate-limited warning is logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import paho.mqtt.client as mqtt

from .config import MQTTConfig

LOGGER = logging.getLogger(__name__)

_QUEUE_DROP_LOG_INTERVAL_S: float = 10.0
_RECONNECT_MIN_DELAY_S = 1
_RECONNECT_MAX_DELAY_S = 30


class TransportUnavailableError(RuntimeError):
    """Raised when an outbound operation needs a broker connection that is down."""


class MqttTransport:
    def __init__(
        self,
        config: MQTTConfig,
        *,
        client: Any | None = None,
        queue_drop_log_interval_s: float = _QUEUE_DROP_LOG_INTERVAL_S,
    ):
        self.config = config
        self._client = client
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[str, bytes]] = asyncio.Queue(
            maxsize=max(1, config.queue_maxsize)
        )
        self._connected = False
        self._connected_event: asyncio.Event | None = None
        self._queue_drop_log_interval_s = max(0.0, float(queue_drop_log_interval_s))
        self._last_queue_drop_log_ts = 0.0
        self._suppressed_queue_drop_warnings = 0
        self._dropped = 0
        self._extra_topics: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    def _build_client(self) -> Any:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            protocol=mqtt.MQTTv311,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.tls:
            client.tls_set()
        client.reconnect_delay_set(
            min_delay=_RECONNECT_MIN_DELAY_S,
            max_delay=_RECONNECT_MAX_DELAY_S,
        )
        return client

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        if self._client is None:
            self._client = self._build_client()
        client = self._client
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        LOGGER.info(
            "Connecting to MQTT broker %s:%d (tls=%s)",
            self.config.host,
            self.config.port,
            self.config.tls,
        )
        client.connect_async(self.config.host, self.config.port, keepalive=self.config.keepalive_s)
        client.loop_start()

    async def wait_connected(self, timeout_s: float) -> bool:
        """Wait up to *timeout_s* for the first connection; paho keeps retrying after."""
        if self._connected:
            return True
        if self._connected_event is None:
            return False
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout_s)
        except TimeoutError:
            LOGGER.warning(
                "MQTT connection timeout after %.1fs - will keep trying in background",
                timeout_s,
            )
            return False
        return True

    def close(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            client.disconnect()
            client.loop_stop()
        except Exception:
            LOGGER.warning("Error stopping MQTT client", exc_info=True)
        self._connected = False
        LOGGER.info("Disconnected from MQTT broker")

    # -- paho callbacks (network thread) ------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            self._connected = False
            LOGGER.error("MQTT connection refused: %s", reason_code)
            return
        self._connected = True
        topics = [self.config.subscribe_topic, *sorted(self._extra_topics)]
        for topic in topics:
            client.subscribe(topic)
        LOGGER.info("Connected to MQTT broker; subscribed to %s", ", ".join(topics))
        if self._loop is not None and self._connected_event is not None:
            self._loop.call_soon_threadsafe(self._connected_event.set)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected = False
        if self._loop is not None and self._connected_event is not None:
            self._loop.call_soon_threadsafe(self._connected_event.clear)
        LOGGER.warning("MQTT connection closed (reason=%s); paho will reconnect", reason_code)

    def _on_message(self, client, userdata, msg) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._enqueue, msg.topic, bytes(msg.payload))

    # -- event loop side ------------------------------------------------------

    def _enqueue(self, topic: str, payload: bytes) -> None:
        try:
            self._queue.put_nowait((topic, payload))
        except asyncio.QueueFull:
            self._dropped += 1
            now = time.monotonic()
            if (now - self._last_queue_drop_log_ts) >= self._queue_drop_log_interval_s:
                suppressed = self._suppressed_queue_drop_warnings
                self._suppressed_queue_drop_warnings = 0
                self._last_queue_drop_log_ts = now
                if suppressed > 0:
                    LOGGER.warning(
                        "MQTT ingest queue full; dropping message on %s; "
                        "suppressed %d additional drop warnings",
                        topic,
                        suppressed,
                    )
                else:
                    LOGGER.warning("MQTT ingest queue full; dropping message on %s", topic)
            else:
                self._suppressed_queue_drop_warnings += 1

    async def messages(self) -> AsyncIterator[tuple[str, bytes]]:
        while True:
            item = await self._queue.get()
            try:
                yield item
            finally:
                self._queue.task_done()

    # -- outbound ---------------------------------------------------------------

    def publish(self, topic: str, payload: bytes) -> None:
        if self._client is None or not self._connected:
            raise TransportUnavailableError("not connected")
        info = self._client.publish(topic, payload)
        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc == mqtt.MQTT_ERR_NO_CONN:
            raise TransportUnavailableError("not connected")
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportUnavailableError(f"publish failed (rc={rc})")

    def subscribe(self, topic: str) -> None:
        if self._client is None or not self._connected:
            raise TransportUnavailableError("not connected")
        result, _mid = self._client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportUnavailableError(f"subscribe failed (rc={result})")
        # Re-subscribed automatically after a reconnect.
        self._extra_topics.add(topic)

    def stats(self) -> dict[str, Any]:
        return {
            "connected": self._connected,
            "queued": self._queue.qsize(),
            "dropped": self._dropped,
        }
