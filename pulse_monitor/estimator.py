"""
BPM estimator.

Turns a window of raw brightness samples into a :class:`BpmEstimate`:

1. Require at least ``stabilization_frames`` samples.
2. Detrend and check the variance (flat signal → graded score 0 – 40).
3. Bandpass, then search the dominant frequency in the heart-rate band.
4. ``bpm = round(frequency * 60)``; out-of-range values are dropped with a
   fixed score of 30.
5. Otherwise quality is the peak magnitude relative to the signal energy,
   clamped to 50 – 100.  A returned BPM therefore always carries at least
   medium confidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pulse_monitor import preprocessing
from pulse_monitor.config import SensorConfig
from pulse_monitor.frequency import find_dominant_frequency

logger = logging.getLogger(__name__)

OUT_OF_RANGE_QUALITY = 30
MIN_DETECTED_QUALITY = 50
MAX_QUALITY = 100


@dataclass(frozen=True)
class BpmEstimate:
    """Heart-rate estimate; ``bpm is None`` means no usable detection."""

    bpm: Optional[int]
    quality: int

    @property
    def detected(self) -> bool:
        return self.bpm is not None


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


class BpmEstimator:
    """
    Stateless estimator bound to a :class:`SensorConfig`.

    Parameters
    ----------
    config:
        Measurement parameters.  Defaults to :class:`SensorConfig()`.
    """

    def __init__(self, config: SensorConfig | None = None) -> None:
        self.config = config or SensorConfig()

    def estimate(self, samples: np.ndarray, sample_rate: float | None = None) -> BpmEstimate:
        """
        Estimate the heart rate of *samples*.

        Parameters
        ----------
        samples:
            Raw brightness window in arrival order.
        sample_rate:
            Samples per second.  Defaults to the config's capture rate.
        """
        cfg = self.config
        fs = sample_rate if sample_rate is not None else cfg.sample_rate
        signal = np.asarray(samples, dtype=np.float64)
        n = signal.size

        if n < cfg.stabilization_frames:
            return BpmEstimate(bpm=None, quality=0)

        detrended = preprocessing.detrend(signal)
        variance = preprocessing.sample_variance(detrended)
        if variance < cfg.variance_threshold:
            quality = preprocessing.low_variance_quality(variance, cfg.variance_threshold)
            logger.debug("Flat signal: variance=%.4f quality=%d", variance, quality)
            return BpmEstimate(bpm=None, quality=quality)

        filtered = preprocessing.bandpass(detrended)
        peak = find_dominant_frequency(
            filtered, fs, cfg.min_frequency_hz, cfg.max_frequency_hz
        )
        if peak is None:
            return BpmEstimate(bpm=None, quality=OUT_OF_RANGE_QUALITY)

        bpm = _round_half_up(peak.frequency * 60.0)
        if bpm < cfg.min_bpm or bpm > cfg.max_bpm:
            logger.debug("Rejected out-of-range estimate: %d BPM", bpm)
            return BpmEstimate(bpm=None, quality=OUT_OF_RANGE_QUALITY)

        raw = _round_half_up(peak.magnitude / (variance * n) * 200.0)
        quality = max(MIN_DETECTED_QUALITY, min(MAX_QUALITY, raw))
        return BpmEstimate(bpm=bpm, quality=quality)


def estimate_bpm(
    samples: np.ndarray,
    sample_rate: float,
    config: SensorConfig | None = None,
) -> BpmEstimate:
    """Functional shortcut for ``BpmEstimator(config).estimate(samples, sample_rate)``."""
    return BpmEstimator(config).estimate(samples, sample_rate)
