"""Pydantic request/response models for the TrainFlow HTTP API.

Observer stream events live in ``ws_models``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .liveness import LivenessStatus

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PublishRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=256)
    message: Any = None


class SubscribeRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=256)


class TriggerTrainRequest(BaseModel):
    direction: str | None = Field(default=None, max_length=32)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    message: str
    mqtt: str


class MqttStatusResponse(BaseModel):
    connected: bool
    esp32Status: LivenessStatus
    lastActivityAgeS: float | None = None
    observers: int = 0
    ingest: dict[str, int] = {}


class CommandResponse(BaseModel):
    success: bool
    message: str


class LastValueResponse(BaseModel):
    data: Any = None
    timestamp: str


class LastValuesResponse(BaseModel):
    success: bool = True
    data: dict[str, LastValueResponse]
    trainState: LastValueResponse | None = None


class SpectrumBinModel(BaseModel):
    frequency: int
    magnitude: float


class SensorSpectrumModel(BaseModel):
    x: list[SpectrumBinModel]
    y: list[SpectrumBinModel]
    z: list[SpectrumBinModel]
    peak_magnitude: float
    axis_peaks: dict[str, float]
    dominant_hz: dict[str, int | None]
    gated: bool


class FftResponse(BaseModel):
    success: bool
    data: dict[str, SensorSpectrumModel | None]
