from __future__ import annotations

import math

import numpy as np
import pytest

from trainflow.processing.fft import (
    SpectrumBin,
    compute_spectrum,
    dominant_bin,
    next_pow2,
    round_half_up,
    weighted_peak_frequency,
)


@pytest.mark.parametrize(
    ("n", "expected"),
    [(0, 1), (1, 1), (2, 2), (16, 16), (17, 32), (256, 256), (300, 512)],
)
def test_next_pow2(n: int, expected: int) -> None:
    assert next_pow2(n) == expected


def test_round_half_up_rounds_ties_up() -> None:
    assert round_half_up(12.5) == 13
    assert round_half_up(13.5) == 14
    assert round_half_up(12.49) == 12


def test_short_signal_yields_empty_spectrum() -> None:
    assert compute_spectrum([1.0] * 15, 50.0) == []
    assert compute_spectrum([], 50.0) == []


def test_non_positive_sample_rate_yields_empty_spectrum() -> None:
    assert compute_spectrum([1.0] * 32, 0.0) == []


def test_sinusoid_peak_lands_on_its_bin() -> None:
    rate = 512.0
    n = 256
    amplitude = 3.0
    t = np.arange(n)
    signal = amplitude * np.sin(2 * math.pi * 64.0 * t / rate)

    bins = compute_spectrum(signal, rate, min_hz=10, max_hz=250)
    peak = dominant_bin(bins)

    assert peak is not None
    assert peak.frequency == 64
    # |X_k| = A * N / 2, normalised by the padded length.
    assert peak.magnitude == pytest.approx(amplitude / 2, rel=1e-6)


def test_bins_stay_inside_band() -> None:
    rate = 512.0
    signal = np.random.default_rng(1).normal(size=256)
    bins = compute_spectrum(signal, rate, min_hz=20, max_hz=100)
    assert bins
    assert min(b.frequency for b in bins) >= 20
    assert max(b.frequency for b in bins) <= 100


def test_sub_hertz_resolution_keeps_duplicate_labels() -> None:
    # 50 Hz over 256 points gives ~0.195 Hz per bin: bins 52..127 fall in [10, 25).
    signal = np.random.default_rng(2).normal(size=256)
    bins = compute_spectrum(signal, 50.0, min_hz=10, max_hz=250)
    labels = [b.frequency for b in bins]

    assert len(bins) == 76
    assert labels[0] == 10
    assert labels[-1] == 25
    assert labels == sorted(labels)
    assert len(set(labels)) < len(labels)


def test_zero_padding_matches_direct_summation() -> None:
    rng = np.random.default_rng(3)
    signal = rng.normal(size=20)
    rate = 100.0
    padded = 32

    bins = compute_spectrum(signal, rate, min_hz=0, max_hz=rate)

    expected = []
    for k in range(padded // 2):
        re = sum(signal[t] * math.cos(2 * math.pi * k * t / padded) for t in range(20))
        im = -sum(signal[t] * math.sin(2 * math.pi * k * t / padded) for t in range(20))
        expected.append(math.sqrt(re * re + im * im) / padded)

    assert len(bins) == padded // 2
    assert [b.magnitude for b in bins] == pytest.approx(expected, abs=1e-9)
    assert [b.frequency for b in bins] == [round_half_up(k * rate / padded) for k in range(16)]


def test_dominant_bin_of_empty_spectrum() -> None:
    assert dominant_bin([]) is None


def test_weighted_peak_frequency_balances_neighbours() -> None:
    bins = [
        SpectrumBin(10, 1.0),
        SpectrumBin(11, 4.0),
        SpectrumBin(12, 1.0),
        SpectrumBin(13, 0.5),
    ]
    assert weighted_peak_frequency(bins) == pytest.approx(11.0)
    assert weighted_peak_frequency([]) is None


def test_spectrum_bin_as_dict() -> None:
    assert SpectrumBin(12, 0.25).as_dict() == {"frequency": 12, "magnitude": 0.25}
