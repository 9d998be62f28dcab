from __future__ import annotations

import logging
import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .domain_models import normalize_sensor_id

PACKAGE_DIR = Path(__file__).resolve().parent
"""Directory holding the ``trainflow`` package."""

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 5000},
    "mqtt": {
        "host": "localhost",
        "port": 8883,
        "username": None,
        "password": None,
        "tls": True,
        "client_id": "trainflow-server",
        "subscribe_topic": "trainflow/#",
        "connect_timeout_s": 10.0,
        "queue_maxsize": 1024,
        "keepalive_s": 60,
    },
    "topics": {
        "sensor_prefix": "trainflow/sensor/",
        "sensor_ids": ["A", "B"],
        "train_state": "trainflow/trainState",
        "command": "trainflow/command",
    },
    "processing": {
        "sample_rate_hz": 50,
        "buffer_capacity": 512,
        "fft_window": 256,
        "spectrum_min_hz": 10.0,
        "spectrum_max_hz": 250.0,
        "signal_threshold": 1500.0,
    },
    "liveness": {"timeout_ms": 5000},
    "broadcast": {
        "status_interval_ms": 1000,
        "send_timeout_s": 0.5,
        "observer_queue_maxsize": 256,
    },
}

# Broker settings that may come from the environment instead of the YAML file.
_MQTT_ENV_OVERRIDES: dict[str, str] = {
    "host": "TRAINFLOW_MQTT_HOST",
    "port": "TRAINFLOW_MQTT_PORT",
    "username": "TRAINFLOW_MQTT_USERNAME",
    "password": "TRAINFLOW_MQTT_PASSWORD",
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"ServerConfig.port must be 1–65535, got {self.port!r}")


@dataclass(slots=True)
class MQTTConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    tls: bool
    client_id: str
    subscribe_topic: str
    connect_timeout_s: float
    queue_maxsize: int
    keepalive_s: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"MQTTConfig.port must be 1–65535, got {self.port!r}")
        if not self.subscribe_topic:
            raise ValueError("mqtt.subscribe_topic must not be empty")
        if self.connect_timeout_s < 0:
            LOGGER.warning(
                "mqtt.connect_timeout_s=%s is negative — clamped to 0",
                self.connect_timeout_s,
            )
            self.connect_timeout_s = 0.0
        if self.queue_maxsize < 1:
            LOGGER.warning("mqtt.queue_maxsize=%s is below 1 — clamped to 1", self.queue_maxsize)
            self.queue_maxsize = 1
        if self.keepalive_s < 1:
            self.keepalive_s = 60


@dataclass(slots=True)
class TopicsConfig:
    sensor_prefix: str
    sensor_ids: tuple[str, ...]
    train_state: str
    command: str

    def __post_init__(self) -> None:
        if not self.sensor_ids:
            raise ValueError("topics.sensor_ids must list at least one sensor")
        try:
            self.sensor_ids = tuple(normalize_sensor_id(s) for s in self.sensor_ids)
        except ValueError as exc:
            raise ValueError(f"topics.sensor_ids: {exc}") from None
        if len(set(self.sensor_ids)) != len(self.sensor_ids):
            raise ValueError(f"topics.sensor_ids contains duplicates: {list(self.sensor_ids)!r}")

    def sensor_topic(self, sensor_id: str) -> str:
        return f"{self.sensor_prefix}{sensor_id}"


@dataclass(slots=True)
class ProcessingConfig:
    sample_rate_hz: int
    buffer_capacity: int
    fft_window: int
    spectrum_min_hz: float
    spectrum_max_hz: float
    signal_threshold: float

    def __post_init__(self) -> None:
        if self.sample_rate_hz < 1:
            LOGGER.warning(
                "processing.sample_rate_hz=%s is below minimum 1 — clamped to 1",
                self.sample_rate_hz,
            )
            self.sample_rate_hz = 1

        # The transform needs at least 16 points to produce anything.
        if self.fft_window < 16:
            LOGGER.warning(
                "processing.fft_window=%s is below minimum 16 — clamped to 16",
                self.fft_window,
            )
            self.fft_window = 16

        if self.buffer_capacity < self.fft_window:
            LOGGER.warning(
                "processing.buffer_capacity=%s is smaller than fft_window=%s — raised to match",
                self.buffer_capacity,
                self.fft_window,
            )
            self.buffer_capacity = self.fft_window

        if self.spectrum_min_hz < 0:
            LOGGER.warning(
                "processing.spectrum_min_hz=%s is negative — clamped to 0",
                self.spectrum_min_hz,
            )
            self.spectrum_min_hz = 0.0
        if self.spectrum_max_hz < self.spectrum_min_hz:
            raise ValueError(
                "processing.spectrum_max_hz must be >= spectrum_min_hz, got "
                f"{self.spectrum_max_hz!r} < {self.spectrum_min_hz!r}"
            )
        if self.signal_threshold < 0:
            LOGGER.warning(
                "processing.signal_threshold=%s is negative — clamped to 0",
                self.signal_threshold,
            )
            self.signal_threshold = 0.0


@dataclass(slots=True)
class LivenessConfig:
    timeout_ms: int

    def __post_init__(self) -> None:
        if self.timeout_ms < 1:
            LOGGER.warning(
                "liveness.timeout_ms=%s is below minimum 1 — reset to 5000",
                self.timeout_ms,
            )
            self.timeout_ms = 5000

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(slots=True)
class BroadcastConfig:
    status_interval_ms: int
    send_timeout_s: float
    observer_queue_maxsize: int

    def __post_init__(self) -> None:
        if self.status_interval_ms < 10:
            LOGGER.warning(
                "broadcast.status_interval_ms=%s is below minimum 10 — clamped to 10",
                self.status_interval_ms,
            )
            self.status_interval_ms = 10
        if self.send_timeout_s <= 0:
            self.send_timeout_s = 0.5
        if self.observer_queue_maxsize < 1:
            self.observer_queue_maxsize = 1

    @property
    def status_interval_s(self) -> float:
        return self.status_interval_ms / 1000.0


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    mqtt: MQTTConfig
    topics: TopicsConfig
    processing: ProcessingConfig
    liveness: LivenessConfig
    broadcast: BroadcastConfig
    config_path: Path | None = None


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def _apply_env_overrides(mqtt_cfg: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    out = dict(mqtt_cfg)
    for key, env_name in _MQTT_ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if key == "port":
            try:
                out[key] = int(raw)
            except ValueError:
                raise ValueError(f"{env_name} must be an integer, got {raw!r}") from None
        else:
            out[key] = raw
    return out


def config_from_dict(
    override: dict[str, Any] | None = None,
    *,
    environ: dict[str, str] | None = None,
    config_path: Path | None = None,
) -> AppConfig:
    """Build an :class:`AppConfig` from defaults merged with *override*."""
    merged = _deep_merge(deepcopy(DEFAULT_CONFIG), override or {})
    env = dict(os.environ) if environ is None else environ
    mqtt_cfg = _apply_env_overrides(merged["mqtt"], env)
    topics_cfg = merged["topics"]
    processing_cfg = merged["processing"]

    sensor_ids_raw = topics_cfg.get("sensor_ids") or []
    if isinstance(sensor_ids_raw, str):
        sensor_ids_raw = [sensor_ids_raw]

    return AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=int(merged["server"]["port"]),
        ),
        mqtt=MQTTConfig(
            host=str(mqtt_cfg["host"]),
            port=int(mqtt_cfg["port"]),
            username=_optional_str(mqtt_cfg.get("username")),
            password=_optional_str(mqtt_cfg.get("password")),
            tls=bool(mqtt_cfg.get("tls", True)),
            client_id=str(mqtt_cfg.get("client_id") or "trainflow-server"),
            subscribe_topic=str(mqtt_cfg.get("subscribe_topic") or ""),
            connect_timeout_s=float(mqtt_cfg.get("connect_timeout_s", 10.0)),
            queue_maxsize=int(mqtt_cfg.get("queue_maxsize", 1024)),
            keepalive_s=int(mqtt_cfg.get("keepalive_s", 60)),
        ),
        topics=TopicsConfig(
            sensor_prefix=str(topics_cfg["sensor_prefix"]),
            sensor_ids=tuple(str(s) for s in sensor_ids_raw),
            train_state=str(topics_cfg["train_state"]),
            command=str(topics_cfg["command"]),
        ),
        processing=ProcessingConfig(
            sample_rate_hz=int(processing_cfg["sample_rate_hz"]),
            buffer_capacity=int(processing_cfg["buffer_capacity"]),
            fft_window=int(processing_cfg["fft_window"]),
            spectrum_min_hz=float(processing_cfg["spectrum_min_hz"]),
            spectrum_max_hz=float(processing_cfg["spectrum_max_hz"]),
            signal_threshold=float(processing_cfg["signal_threshold"]),
        ),
        liveness=LivenessConfig(timeout_ms=int(merged["liveness"]["timeout_ms"])),
        broadcast=BroadcastConfig(
            status_interval_ms=int(merged["broadcast"]["status_interval_ms"]),
            send_timeout_s=float(merged["broadcast"]["send_timeout_s"]),
            observer_queue_maxsize=int(merged["broadcast"]["observer_queue_maxsize"]),
        ),
        config_path=config_path,
    )


def load_config(config_path: Path | None = None) -> AppConfig:
    path = (config_path or (PACKAGE_DIR.parent / "config.yaml")).resolve()
    override = _read_config_file(path)
    app_config = config_from_dict(override, config_path=path)
    LOGGER.info(
        "Loaded config=%s mqtt=%s:%s sensors=%s",
        path if path.exists() else "<defaults>",
        app_config.mqtt.host,
        app_config.mqtt.port,
        ",".join(app_config.topics.sensor_ids),
    )
    return app_config
