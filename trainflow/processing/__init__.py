"""Signal processing package.

- :mod:`~trainflow.processing.buffers`: per-sensor ring buffer storage.
- :mod:`~trainflow.processing.fft`: pure spectral-analysis functions.
- :mod:`~trainflow.processing.analyzer`: the :class:`SpectralAnalyzer` that
  gates and transforms the latest buffered window on demand.
"""

from .analyzer import SensorSpectrum, SpectralAnalyzer
from .buffers import SampleBuffer, SensorBuffers
from .fft import SpectrumBin, compute_spectrum

__all__ = [
    "SampleBuffer",
    "SensorBuffers",
    "SensorSpectrum",
    "SpectralAnalyzer",
    "SpectrumBin",
    "compute_spectrum",
]
