"""Pydantic models for the live observer stream.

Every message pushed to an observer (WebSocket or SSE) is one of these
events, discriminated by ``type``.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .liveness import LivenessStatus


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class DataEvent(BaseModel):
    """A routed message on a sensor or train-state topic."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["data"] = "data"
    topic: str
    data: Any = None
    timestamp: int = Field(default_factory=_epoch_ms)


class StatusEvent(BaseModel):
    """Initial snapshot sent to an observer right after it attaches."""

    type: Literal["status"] = "status"
    connected: bool
    esp32Status: LivenessStatus


class PeriodicStatusEvent(BaseModel):
    """Heartbeat broadcast by the status ticker."""

    type: Literal["periodicStatus"] = "periodicStatus"
    connected: bool
    status: LivenessStatus
    timestamp: int = Field(default_factory=_epoch_ms)


ObserverEvent = DataEvent | StatusEvent | PeriodicStatusEvent


def encode_event(event: ObserverEvent) -> str:
    return event.model_dump_json()
