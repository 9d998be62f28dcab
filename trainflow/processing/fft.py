"""Pure spectral-analysis functions used by the spectral analyzer.

All functions in this module are stateless: they take arrays (and scalar
parameters) and return results without touching shared state, so they can be
called outside any buffer lock and tested in isolation.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

MIN_SIGNAL_SAMPLES = 16
"""Signals shorter than this produce an empty spectrum."""


@dataclass(frozen=True, slots=True)
class SpectrumBin:
    frequency: int
    magnitude: float

    def as_dict(self) -> dict[str, float]:
        return {"frequency": self.frequency, "magnitude": self.magnitude}


def next_pow2(n: int) -> int:
    """Smallest power of two that is >= *n* (``1`` for ``n <= 1``)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero for positive values.

    Python's ``round`` uses banker's rounding; bin labels need 12.5 → 13.
    """
    return int(math.floor(value + 0.5))


def compute_spectrum(
    signal: Sequence[float] | np.ndarray,
    sample_rate_hz: float,
    *,
    min_hz: float = 10.0,
    max_hz: float = 250.0,
) -> list[SpectrumBin]:
    """Magnitude spectrum of *signal* restricted to ``[min_hz, max_hz]``.

    The signal is zero-padded to the next power of two ``P``.  For each bin
    ``k`` in ``[0, P/2)`` the magnitude is ``|X_k| / P`` and the frequency is
    ``k * sample_rate_hz / P``.  Bins are selected on the exact frequency and
    labelled with the frequency rounded to whole Hz, so adjacent bins can share
    a label when the resolution is finer than 1 Hz; those stay separate entries.
    """
    samples = np.asarray(signal, dtype=np.float64).ravel()
    n = samples.size
    if n < MIN_SIGNAL_SAMPLES or sample_rate_hz <= 0:
        return []

    padded_len = next_pow2(n)
    half = padded_len // 2
    # np.fft.fft zero-pads to ``n`` itself; same values as direct summation.
    spectrum = np.fft.fft(samples, n=padded_len)[:half]
    magnitudes = np.abs(spectrum) / padded_len
    freqs = np.arange(half, dtype=np.float64) * float(sample_rate_hz) / padded_len

    selected = np.nonzero((freqs >= min_hz) & (freqs <= max_hz))[0]
    return [
        SpectrumBin(frequency=round_half_up(float(freqs[k])), magnitude=float(magnitudes[k]))
        for k in selected
    ]


def dominant_bin(bins: Sequence[SpectrumBin]) -> SpectrumBin | None:
    """Highest-magnitude bin, or ``None`` for an empty spectrum."""
    if not bins:
        return None
    return max(bins, key=lambda b: b.magnitude)


def weighted_peak_frequency(bins: Sequence[SpectrumBin], *, neighbours: int = 1) -> float | None:
    """Magnitude-weighted centre of the dominant peak.

    Averages the labelled frequencies of the strongest bin and its
    *neighbours* on each side, weighted by magnitude.
    """
    if not bins:
        return None
    peak_idx = max(range(len(bins)), key=lambda i: bins[i].magnitude)
    lo = max(0, peak_idx - neighbours)
    hi = min(len(bins), peak_idx + neighbours + 1)
    window = bins[lo:hi]
    total = sum(b.magnitude for b in window)
    if total <= 0:
        return float(bins[peak_idx].frequency)
    return sum(b.frequency * b.magnitude for b in window) / total
