"""
Exception hierarchy for the pulse monitor.

Only genuine failures are raised.  Weak or out-of-range signals are not
errors; they are encoded in :class:`~pulse_monitor.estimator.BpmEstimate`
as ``bpm=None`` with a low quality score.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PulseMonitorError(Exception):
    """Base exception for all pulse monitor errors."""

    def __init__(
        self,
        message: str,
        code: str = "PULSE_MONITOR_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a plain dict for the caller's UI layer."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PulseMonitorError):
    """A :class:`SensorConfig` field holds an unusable value."""

    def __init__(self, message: str, field: str = "unknown") -> None:
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"field": field},
        )
        self.field = field


class HardwareUnavailableError(PulseMonitorError):
    """
    The capture hardware (camera + torch) cannot deliver any sample.

    Terminal for the measurement in which it occurs.  Callers are expected
    to fall back to the synthetic source or to manual entry.
    """

    def __init__(
        self,
        message: str,
        device: str = "camera",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code="HARDWARE_UNAVAILABLE",
            details={"device": device, **(details or {})},
        )
        self.device = device


class MeasurementStateError(PulseMonitorError):
    """An operation was requested in a lifecycle state that does not allow it."""

    def __init__(
        self,
        message: str,
        state: str = "unknown",
        code: str = "INVALID_STATE",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code=code,
            details={"state": state, **(details or {})},
        )
        self.state = state


class ConfirmRejectedError(MeasurementStateError):
    """``confirm()`` was called without a confident BPM reading."""

    def __init__(
        self,
        message: str,
        state: str,
        bpm: Optional[int],
        quality: int,
        threshold: int,
    ) -> None:
        super().__init__(
            message=message,
            state=state,
            code="CONFIRM_REJECTED",
            details={"bpm": bpm, "quality": quality, "threshold": threshold},
        )
        self.bpm = bpm
        self.quality = quality
        self.threshold = threshold
