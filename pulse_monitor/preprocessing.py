"""
Pre-processing of the raw brightness window.

Algorithm
---------
1. Remove slow drift (finger pressure, auto-exposure) with a least-squares
   linear detrend.
2. Reject windows whose detrended variance is too small to hold a pulse.
3. Emphasise the 0.7 – 4 Hz band by subtracting a long moving average
   (baseline) from a short one (camera noise suppression).

The moving averages use a window that shrinks at the buffer edges instead
of zero padding, so the first and last samples are not damped towards zero.
"""

from __future__ import annotations

import numpy as np
from scipy.signal import detrend as _scipy_detrend

# Window sizes of the bandpass-by-difference filter.
SHORT_WINDOW = 3
LONG_WINDOW = 8

# Cap on the quality score reported for a flat signal.
LOW_VARIANCE_QUALITY_CAP = 40


def detrend(signal: np.ndarray) -> np.ndarray:
    """
    Subtract the OLS line ``slope * i + intercept`` fitted over the indices.

    Signals with fewer than two samples are returned unchanged.
    """
    x = np.asarray(signal, dtype=np.float64)
    if x.size < 2:
        return x.copy()
    return _scipy_detrend(x, type="linear")


def sample_variance(signal: np.ndarray) -> float:
    """Unbiased (n − 1) variance; 0.0 for fewer than two samples."""
    x = np.asarray(signal, dtype=np.float64)
    if x.size < 2:
        return 0.0
    return float(np.var(x, ddof=1))


def moving_average(signal: np.ndarray, window: int) -> np.ndarray:
    """
    Centred moving average with ``window // 2`` samples on each side.

    Near the edges the window is clamped to the available samples.
    """
    x = np.asarray(signal, dtype=np.float64)
    n = x.size
    if n == 0:
        return x.copy()
    half = window // 2
    idx = np.arange(n)
    lo = np.maximum(0, idx - half)
    hi = np.minimum(n - 1, idx + half)
    csum = np.concatenate(([0.0], np.cumsum(x)))
    return (csum[hi + 1] - csum[lo]) / (hi - lo + 1)


def bandpass(signal: np.ndarray) -> np.ndarray:
    """Short moving average minus the long moving average of it."""
    lowpassed = moving_average(signal, SHORT_WINDOW)
    baseline = moving_average(lowpassed, LONG_WINDOW)
    return lowpassed - baseline


def low_variance_quality(variance: float, threshold: float) -> int:
    """Graded confidence for a signal judged too flat: 0 – 40."""
    score = min(LOW_VARIANCE_QUALITY_CAP, variance / threshold * LOW_VARIANCE_QUALITY_CAP)
    return int(np.floor(score + 0.5))
