"""
Measurement configuration.

:class:`SensorConfig` is loaded once per measurement and never mutated while
one is running.  The defaults reproduce the fingertip-camera setup: a 50
sample window captured at 10 fps (about five seconds of signal).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from pulse_monitor.errors import ConfigurationError

# Heart-rate band searched by the frequency analyser (0.7 – 4.0 Hz).
MIN_FREQUENCY_HZ = 0.7
MAX_FREQUENCY_HZ = 4.0

# Quality labels shown next to the reading.
QUALITY_GOOD = 60
QUALITY_EXCELLENT = 80


@dataclass(frozen=True)
class SensorConfig:
    """
    Immutable parameters of one measurement.

    Parameters
    ----------
    buffer_size:
        Capacity of the sliding sample window.
    min_bpm, max_bpm:
        Physiological range; estimates outside it are discarded.
    stabilization_frames:
        Minimum buffered samples before any estimate is attempted.
    variance_threshold:
        Detrended-signal variance below which the signal is considered flat
        (no finger, or finger not pressed on the lens).
    quality_threshold:
        Minimum quality score (0 – 100) required to confirm a reading.
    capture_interval_ms:
        Period of the sampling loop.  Also defines the sample rate.
    sample_region_size:
        Side length, in pixels, of the square the camera frame centre is
        resized to before its luminance is averaged.
    estimate_every:
        Run the estimator on every N-th buffered sample only.
    agreement_tolerance:
        Two consecutive estimates agree when they differ by at most this
        many BPM.
    stable_agreements:
        Consecutive agreements needed for a stable verdict.
    measurement_seconds:
        Length of the countdown reported to the caller.
    acquire_timeout_ms:
        Upper bound on a single camera acquisition.
    """

    buffer_size: int = 50
    min_bpm: int = 42
    max_bpm: int = 240
    stabilization_frames: int = 20
    variance_threshold: float = 0.1
    quality_threshold: int = 50
    capture_interval_ms: float = 100.0
    sample_region_size: int = 50
    estimate_every: int = 5
    agreement_tolerance: int = 5
    stable_agreements: int = 2
    measurement_seconds: float = 10.0
    acquire_timeout_ms: float = 1000.0
    min_frequency_hz: float = MIN_FREQUENCY_HZ
    max_frequency_hz: float = MAX_FREQUENCY_HZ

    def __post_init__(self) -> None:
        for name in (
            "buffer_size",
            "stabilization_frames",
            "sample_region_size",
            "estimate_every",
            "stable_agreements",
        ):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1", field=name)
        if self.stabilization_frames > self.buffer_size:
            raise ConfigurationError(
                "stabilization_frames cannot exceed buffer_size",
                field="stabilization_frames",
            )
        if self.capture_interval_ms <= 0:
            raise ConfigurationError(
                "capture_interval_ms must be positive", field="capture_interval_ms"
            )
        if self.acquire_timeout_ms <= 0:
            raise ConfigurationError(
                "acquire_timeout_ms must be positive", field="acquire_timeout_ms"
            )
        if not 0 < self.min_bpm < self.max_bpm:
            raise ConfigurationError(
                "expected 0 < min_bpm < max_bpm", field="min_bpm"
            )
        if not 0 < self.min_frequency_hz < self.max_frequency_hz:
            raise ConfigurationError(
                "expected 0 < min_frequency_hz < max_frequency_hz",
                field="min_frequency_hz",
            )
        if not 0 <= self.quality_threshold <= 100:
            raise ConfigurationError(
                "quality_threshold must lie in 0 – 100", field="quality_threshold"
            )
        if self.variance_threshold <= 0:
            raise ConfigurationError(
                "variance_threshold must be positive", field="variance_threshold"
            )
        if self.agreement_tolerance < 0:
            raise ConfigurationError(
                "agreement_tolerance cannot be negative", field="agreement_tolerance"
            )

    @property
    def sample_rate(self) -> float:
        """Samples per second implied by the capture interval."""
        return 1000.0 / self.capture_interval_ms

    @property
    def interval_seconds(self) -> float:
        return self.capture_interval_ms / 1000.0

    def replace(self, **changes) -> "SensorConfig":
        """Return a copy with *changes* applied (validated again)."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def synthetic(cls, **overrides) -> "SensorConfig":
        """
        Preset for the synthetic demo source.

        Samples at 10 fps, like the camera.  The 50-sample window and the
        3/8-sample averages do not resolve the pulse band at ~30 fps.
        """
        params = {"capture_interval_ms": 100.0, "estimate_every": 5}
        params.update(overrides)
        return cls(**params)
