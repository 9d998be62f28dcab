from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterable, Callable, Mapping
from typing import Any

from .domain_models import Sample
from .event_bus import MessageBus
from .last_values import LastValueStore
from .liveness import LivenessTracker
from .processing.buffers import SensorBuffers
from .topics import RouteKind, TopicRoutes

LOGGER = logging.getLogger(__name__)

_REJECT_LOG_INTERVAL_S: float = 10.0


def _epoch_ms() -> float:
    return time.time() * 1000.0


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _is_present(value: Any) -> bool:
    """JSON truthiness: null, false, 0 and "" are absent; objects and arrays never are."""
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


class IngestionAdapter:
    """Decode inbound ``(topic, payload)`` messages and route them.

    ``handle_message`` is synchronous and does O(1) work per message, so it
    can run directly on the event loop between transport reads.  Messages are
    applied strictly in arrival order.
    """

    def __init__(
        self,
        routes: TopicRoutes,
        buffers: SensorBuffers,
        liveness: LivenessTracker,
        last_values: LastValueStore,
        bus: MessageBus,
        *,
        clock_ms: Callable[[], float] = _epoch_ms,
        reject_log_interval_s: float = _REJECT_LOG_INTERVAL_S,
    ):
        self.routes = routes
        self.buffers = buffers
        self.liveness = liveness
        self.last_values = last_values
        self.bus = bus
        self._clock_ms = clock_ms
        self._reject_log_interval_s = max(0.0, float(reject_log_interval_s))
        self._last_reject_log_ts = 0.0
        self._suppressed_reject_warnings = 0
        self._received = 0
        self._decode_failures = 0
        self._samples_buffered = 0
        self._samples_rejected = 0

    def handle_message(self, topic: str, payload: bytes | str) -> bool:
        """Apply one message; returns whether it decoded and was routed."""
        self._received += 1
        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
            data = json.loads(text, parse_constant=_reject_constant)
        except (UnicodeDecodeError, ValueError):
            raw = (
                payload.decode("utf-8", errors="replace")
                if isinstance(payload, (bytes, bytearray))
                else str(payload)
            )
            self._decode_failures += 1
            self.last_values.set(topic, raw)
            LOGGER.debug("Stored undecodable payload on %s as raw text", topic)
            return False

        self.last_values.set(topic, data)
        route = self.routes.classify(topic)
        if route.kind is RouteKind.SAMPLE and route.sensor_id is not None:
            self._buffer_sample(topic, route.sensor_id, data)
        elif route.kind is RouteKind.TRAIN_STATE:
            self.last_values.set_train_state(data)
        self.bus.publish(topic, data)
        return True

    def _buffer_sample(self, topic: str, sensor_id: str, data: Any) -> None:
        if not _is_present(data):
            return
        # Any present value counts as a heartbeat, even one that cannot be buffered.
        self.liveness.record_activity()
        try:
            if not isinstance(data, Mapping):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            sample = Sample.from_payload(data, received_at_ms=self._clock_ms())
        except ValueError as exc:
            self._samples_rejected += 1
            self._log_rejected(topic, exc)
            return
        self.buffers.push(sensor_id, sample)
        self._samples_buffered += 1

    def _log_rejected(self, topic: str, exc: Exception) -> None:
        now = time.monotonic()
        if (now - self._last_reject_log_ts) < self._reject_log_interval_s:
            self._suppressed_reject_warnings += 1
            return
        suppressed = self._suppressed_reject_warnings
        self._suppressed_reject_warnings = 0
        self._last_reject_log_ts = now
        if suppressed > 0:
            LOGGER.warning(
                "Rejected sample on %s: %s; suppressed %d additional reject warnings",
                topic,
                exc,
                suppressed,
            )
        else:
            LOGGER.warning("Rejected sample on %s: %s", topic, exc)

    async def consume(self, stream: AsyncIterable[tuple[str, bytes]]) -> None:
        async for topic, payload in stream:
            try:
                self.handle_message(topic, payload)
            except Exception:
                LOGGER.warning("Error ingesting message on %s", topic, exc_info=True)

    def stats(self) -> dict[str, int]:
        return {
            "received": self._received,
            "decode_failures": self._decode_failures,
            "samples_buffered": self._samples_buffered,
            "samples_rejected": self._samples_rejected,
        }
