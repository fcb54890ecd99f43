"""
Dominant-frequency search restricted to the heart-rate band.

The window is short (tens of samples), so the DFT is evaluated directly for
the handful of candidate bins instead of running a full FFT.  Zero-padding to
a power of two and the Hanning taper must both be kept: without the band
restriction the search locks onto DC drift, without the taper onto leakage
from the dicrotic harmonic.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pulse_monitor.config import MAX_FREQUENCY_HZ, MIN_FREQUENCY_HZ

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DominantFrequency:
    frequency: float   # Hz, sub-bin refined
    magnitude: float   # DFT magnitude of the peak bin
    bin: int           # index of the peak bin in the padded spectrum


def next_power_of_two(n: int) -> int:
    """Smallest power of two ``>= n`` (``n >= 1``)."""
    return 1 << max(0, math.ceil(math.log2(n)))


def hanning(signal: np.ndarray) -> np.ndarray:
    """Taper *signal* with ``0.5 * (1 - cos(2πi / (n - 1)))``."""
    x = np.asarray(signal, dtype=np.float64)
    n = x.size
    i = np.arange(n)
    return x * 0.5 * (1.0 - np.cos(2.0 * np.pi * i / (n - 1)))


def band_bins(padded_length: int, sample_rate: float,
              min_hz: float = MIN_FREQUENCY_HZ,
              max_hz: float = MAX_FREQUENCY_HZ) -> np.ndarray:
    """Candidate DFT bins covering ``[min_hz, max_hz]`` below Nyquist."""
    first = math.floor(min_hz * padded_length / sample_rate)
    last = math.ceil(max_hz * padded_length / sample_rate)
    last = min(last, padded_length // 2 - 1)
    if last < first:
        return np.array([], dtype=np.int64)
    return np.arange(first, last + 1)


def dft_magnitudes(padded: np.ndarray, bins: np.ndarray) -> np.ndarray:
    """Direct DFT magnitude of *padded* at each of *bins*."""
    size = padded.size
    angles = -2.0 * np.pi * np.outer(bins, np.arange(size)) / size
    real = np.cos(angles) @ padded
    imag = np.sin(angles) @ padded
    return np.sqrt(real ** 2 + imag ** 2)


def find_dominant_frequency(
    signal: np.ndarray,
    sample_rate: float,
    min_hz: float = MIN_FREQUENCY_HZ,
    max_hz: float = MAX_FREQUENCY_HZ,
) -> Optional[DominantFrequency]:
    """
    Return the strongest frequency of *signal* inside ``[min_hz, max_hz]``.

    Parameters
    ----------
    signal:
        Filtered PPG window.
    sample_rate:
        Samples per second of *signal*.
    min_hz, max_hz:
        Search band.

    Returns
    -------
    DominantFrequency or None
        *None* when the signal has fewer than two samples or the band holds
        no bin at this sample rate.
    """
    x = np.asarray(signal, dtype=np.float64)
    n = x.size
    if n < 2:
        return None

    size = next_power_of_two(n)
    padded = np.zeros(size, dtype=np.float64)
    padded[:n] = hanning(x)

    bins = band_bins(size, sample_rate, min_hz, max_hz)
    if bins.size == 0:
        logger.debug("No DFT bin in %.2f – %.2f Hz at fs=%.2f", min_hz, max_hz, sample_rate)
        return None

    magnitudes = dft_magnitudes(padded, bins)
    peak_idx = int(np.argmax(magnitudes))

    # Parabolic interpolation for sub-bin frequency resolution
    offset = 0.0
    if 0 < peak_idx < magnitudes.size - 1:
        alpha = magnitudes[peak_idx - 1]
        beta = magnitudes[peak_idx]
        gamma = magnitudes[peak_idx + 1]
        denom = alpha - 2 * beta + gamma
        if denom != 0:
            offset = float(np.clip(0.5 * (alpha - gamma) / denom, -0.5, 0.5))

    peak_bin = int(bins[peak_idx])
    frequency = (peak_bin + offset) * sample_rate / size
    return DominantFrequency(
        frequency=frequency,
        magnitude=float(magnitudes[peak_idx]),
        bin=peak_bin,
    )
