"""Runtime orchestration: broker ingest -> buffers/last values -> observers/API.

Boundary note for maintainers:
- Keep this module focused on wiring and lifecycle, not algorithm details.
- Spectrum math belongs in `processing/`.
- API schemas belong in `api_models.py` and `ws_models.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import uvicorn
from fastapi import FastAPI

from .commands import CommandPublisher
from .config import AppConfig, load_config
from .event_bus import MessageBus
from .ingest import IngestionAdapter
from .last_values import LastValueStore
from .liveness import LivenessTracker
from .mqtt_transport import MqttTransport
from .observer_hub import ObserverHub
from .processing import SensorBuffers, SpectralAnalyzer
from .routes import create_router
from .topics import TopicRoutes
from .ws_models import PeriodicStatusEvent, StatusEvent

LOGGER = logging.getLogger(__name__)


class BrokerTransport(Protocol):
    @property
    def connected(self) -> bool: ...

    async def start(self) -> None: ...

    async def wait_connected(self, timeout_s: float) -> bool: ...

    def messages(self) -> AsyncIterator[tuple[str, bytes]]: ...

    def publish(self, topic: str, payload: bytes) -> None: ...

    def subscribe(self, topic: str) -> None: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    routes: TopicRoutes
    buffers: SensorBuffers
    liveness: LivenessTracker
    last_values: LastValueStore
    bus: MessageBus
    analyzer: SpectralAnalyzer
    ingest: IngestionAdapter
    hub: ObserverHub
    publisher: CommandPublisher
    transport: BrokerTransport
    tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return self.transport.connected

    def status_event(self) -> StatusEvent:
        return StatusEvent(connected=self.connected, esp32Status=self.liveness.status())

    def periodic_status_event(self) -> PeriodicStatusEvent:
        return PeriodicStatusEvent(connected=self.connected, status=self.liveness.status())

    def stats(self) -> dict[str, Any]:
        return {
            "ingest": self.ingest.stats(),
            "observers": self.hub.stats(),
            "analyzer": self.analyzer.stats(),
            "buffers": self.buffers.counts(),
        }


def build_runtime(config: AppConfig, transport: BrokerTransport | None = None) -> RuntimeState:
    routes = TopicRoutes.from_config(config.topics)
    buffers = SensorBuffers(routes.sensor_ids, config.processing.buffer_capacity)
    liveness = LivenessTracker(config.liveness.timeout_s)
    last_values = LastValueStore()
    bus = MessageBus()
    analyzer = SpectralAnalyzer(
        buffers,
        window_size=config.processing.fft_window,
        sample_rate_hz=config.processing.sample_rate_hz,
        min_hz=config.processing.spectrum_min_hz,
        max_hz=config.processing.spectrum_max_hz,
        signal_threshold=config.processing.signal_threshold,
    )
    ingest = IngestionAdapter(routes, buffers, liveness, last_values, bus)
    hub = ObserverHub(
        routes,
        send_timeout_s=config.broadcast.send_timeout_s,
        queue_maxsize=config.broadcast.observer_queue_maxsize,
    )
    bus.subscribe(hub.on_message)
    if transport is None:
        transport = MqttTransport(config.mqtt)
    publisher = CommandPublisher(transport, routes.command_topic)
    return RuntimeState(
        config=config,
        routes=routes,
        buffers=buffers,
        liveness=liveness,
        last_values=last_values,
        bus=bus,
        analyzer=analyzer,
        ingest=ingest,
        hub=hub,
        publisher=publisher,
        transport=transport,
    )


async def start_runtime(runtime: RuntimeState) -> None:
    config = runtime.config
    await runtime.transport.start()

    async def watch_connection() -> None:
        # Startup never blocks on the broker; paho keeps retrying after a timeout.
        if await runtime.transport.wait_connected(config.mqtt.connect_timeout_s):
            LOGGER.info("MQTT broker connection established")

    runtime.tasks = [
        asyncio.create_task(
            runtime.ingest.consume(runtime.transport.messages()),
            name="mqtt-ingest",
        ),
        asyncio.create_task(
            runtime.hub.run_status_ticker(
                config.broadcast.status_interval_s,
                runtime.periodic_status_event,
            ),
            name="status-ticker",
        ),
        asyncio.create_task(watch_connection(), name="mqtt-connect-watch"),
    ]


async def stop_runtime(runtime: RuntimeState) -> None:
    for task in runtime.tasks:
        task.cancel()
    await asyncio.gather(*runtime.tasks, return_exceptions=True)
    runtime.tasks.clear()
    try:
        await runtime.hub.close()
    except Exception:
        LOGGER.warning("Error closing observer hub", exc_info=True)
    try:
        runtime.transport.close()
    except Exception:
        LOGGER.warning("Error closing MQTT transport", exc_info=True)


def create_app(
    config_path: Path | None = None,
    *,
    config: AppConfig | None = None,
    transport: BrokerTransport | None = None,
) -> FastAPI:
    if config is None:
        config = load_config(config_path)
    runtime = build_runtime(config, transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime(runtime)
        try:
            yield
        finally:
            await stop_runtime(runtime)

    app = FastAPI(title="TrainFlow", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("TRAINFLOW_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run TrainFlow server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Log level for the server and uvicorn",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    try:
        uvicorn.run(
            runtime_app,
            host=runtime.config.server.host,
            port=runtime.config.server.port,
            log_level=args.log_level,
        )
    except OSError:
        LOGGER.error(
            "Failed to bind to %s:%d.",
            runtime.config.server.host,
            runtime.config.server.port,
            exc_info=True,
        )
        raise


if __name__ == "__main__":
    main()
