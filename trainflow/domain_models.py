"""Domain value objects shared by ingestion, buffering and analysis."""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

AXES: tuple[str, str, str] = ("x", "y", "z")

_SAMPLE_FIELDS = frozenset(("timestamp", "x", "y", "z", "magnitude"))


def _coerce_float(payload: Mapping[str, Any], key: str) -> float:
    raw = payload.get(key)
    # Missing, null, false and empty values count as zero.
    if raw is None or raw is False or raw == "":
        return 0.0
    if isinstance(raw, bool):
        return 1.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Sample field {key!r} is not numeric: {raw!r}") from None
    if not math.isfinite(value):
        raise ValueError(f"Sample field {key!r} is not finite: {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class Sample:
    """One accelerometer reading from a sensor.

    ``timestamp`` is the sensor-reported time in epoch milliseconds (or the
    server receive time when the sensor did not send one).  ``extra`` carries
    pass-through fields such as ``voltage`` that the core stores but never
    interprets.
    """

    timestamp: float
    x: float
    y: float
    z: float
    magnitude: float
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        received_at_ms: float | None = None,
    ) -> Sample:
        if not isinstance(payload, Mapping):
            raise ValueError(f"Sample payload must be an object, got {type(payload).__name__}")
        if payload.get("timestamp") in (None, ""):
            timestamp = received_at_ms if received_at_ms is not None else time.time() * 1000.0
        else:
            timestamp = _coerce_float(payload, "timestamp")
        return cls(
            timestamp=timestamp,
            x=_coerce_float(payload, "x"),
            y=_coerce_float(payload, "y"),
            z=_coerce_float(payload, "z"),
            magnitude=_coerce_float(payload, "magnitude"),
            extra={k: v for k, v in payload.items() if k not in _SAMPLE_FIELDS},
        )


def normalize_sensor_id(value: str) -> str:
    """Normalize a sensor id as used in sample topics (``"a"`` → ``"A"``).

    Raises ``ValueError`` for empty or non-alphanumeric ids.
    """
    text = str(value or "").strip()
    if not text or not text.isalnum():
        raise ValueError(f"Invalid sensor id: {value!r}")
    return text.upper()
