"""On-demand spectral analysis of the buffered sensor windows.

``SpectralAnalyzer.analyze`` distinguishes three outcomes:

- ``None``: fewer than ``window_size`` samples buffered ("not ready");
- a :class:`SensorSpectrum` with ``gated=True`` and empty axes: the peak
  ``magnitude`` over the window is below the significance threshold ("quiet");
- a :class:`SensorSpectrum` with per-axis bins in the configured band.

The window is copied out of the buffer under its lock; the transform itself
runs on the copy, so analysis never holds up ingestion.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..domain_models import AXES, Sample
from .buffers import SensorBuffers
from .fft import SpectrumBin, compute_spectrum, dominant_bin

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SensorSpectrum:
    x: list[SpectrumBin] = field(default_factory=list)
    y: list[SpectrumBin] = field(default_factory=list)
    z: list[SpectrumBin] = field(default_factory=list)
    peak_magnitude: float = 0.0
    axis_peaks: dict[str, float] = field(default_factory=dict)
    gated: bool = False

    def axis(self, name: str) -> list[SpectrumBin]:
        return getattr(self, name)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            axis: [b.as_dict() for b in self.axis(axis)] for axis in AXES
        }
        dominant: dict[str, int | None] = {}
        for axis in AXES:
            peak = dominant_bin(self.axis(axis))
            dominant[axis] = peak.frequency if peak is not None else None
        out["peak_magnitude"] = self.peak_magnitude
        out["axis_peaks"] = dict(self.axis_peaks)
        out["dominant_hz"] = dominant
        out["gated"] = self.gated
        return out


class SpectralAnalyzer:
    def __init__(
        self,
        buffers: SensorBuffers,
        *,
        window_size: int = 256,
        sample_rate_hz: float = 50.0,
        min_hz: float = 10.0,
        max_hz: float = 250.0,
        signal_threshold: float = 1500.0,
    ):
        if window_size > buffers.capacity:
            raise ValueError(
                f"window_size={window_size} exceeds buffer capacity={buffers.capacity}"
            )
        self.buffers = buffers
        self.window_size = int(window_size)
        self.sample_rate_hz = float(sample_rate_hz)
        self.min_hz = float(min_hz)
        self.max_hz = float(max_hz)
        self.signal_threshold = float(signal_threshold)
        self._last_duration_s: float = 0.0
        self._total_calls: int = 0

    def window(self, sensor_id: str) -> tuple[Sample, ...] | None:
        """Copy of the latest analysis window, or ``None`` if not yet full.

        Sensors without a buffer never fill a window and also yield ``None``.
        """
        if sensor_id not in self.buffers.sensor_ids:
            return None
        samples = self.buffers.get(sensor_id).snapshot(self.window_size)
        if len(samples) < self.window_size:
            return None
        return samples

    def analyze(self, sensor_id: str) -> SensorSpectrum | None:
        samples = self.window(sensor_id)
        if samples is None:
            return None
        t_start = time.monotonic()
        block = np.array(
            [[s.x, s.y, s.z, s.magnitude] for s in samples],
            dtype=np.float64,
        ).T
        axis_peaks = {axis: float(np.max(np.abs(block[idx]))) for idx, axis in enumerate(AXES)}
        peak_magnitude = float(np.max(np.abs(block[3])))
        if peak_magnitude < self.signal_threshold:
            return SensorSpectrum(
                peak_magnitude=peak_magnitude,
                axis_peaks=axis_peaks,
                gated=True,
            )
        spectra = {
            axis: compute_spectrum(
                block[idx],
                self.sample_rate_hz,
                min_hz=self.min_hz,
                max_hz=self.max_hz,
            )
            for idx, axis in enumerate(AXES)
        }
        self._last_duration_s = time.monotonic() - t_start
        self._total_calls += 1
        return SensorSpectrum(
            x=spectra["x"],
            y=spectra["y"],
            z=spectra["z"],
            peak_magnitude=peak_magnitude,
            axis_peaks=axis_peaks,
        )

    def analyze_all(self) -> dict[str, SensorSpectrum | None]:
        results: dict[str, SensorSpectrum | None] = {}
        for sensor_id in self.buffers.sensor_ids:
            try:
                results[sensor_id] = self.analyze(sensor_id)
            except Exception:
                LOGGER.warning("Spectral analysis failed for sensor %s", sensor_id, exc_info=True)
                results[sensor_id] = None
        return results

    def stats(self) -> dict[str, float | int]:
        return {
            "total_compute_calls": self._total_calls,
            "last_compute_duration_s": self._last_duration_s,
        }
