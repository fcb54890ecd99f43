"""
Pulse Monitor – fingertip PPG heart-rate estimation.
Place your finger over the camera lens with the torch on; the brightness of
the frame centre pulses with blood volume and is turned into a BPM reading
with a quality score and a stability verdict.
"""

from pulse_monitor.config import SensorConfig
from pulse_monitor.controller import MeasurementController, MeasurementState, PulseReading
from pulse_monitor.errors import (
    ConfigurationError,
    ConfirmRejectedError,
    HardwareUnavailableError,
    MeasurementStateError,
    PulseMonitorError,
)
from pulse_monitor.estimator import BpmEstimate, BpmEstimator, estimate_bpm
from pulse_monitor.sources import CameraSource, FrameSource, SyntheticSource
from pulse_monitor.stability import StabilityState, StabilityTracker

__version__ = "0.1.0"
__author__ = "pulse_monitor"

__all__ = [
    "BpmEstimate",
    "BpmEstimator",
    "CameraSource",
    "ConfigurationError",
    "ConfirmRejectedError",
    "FrameSource",
    "HardwareUnavailableError",
    "MeasurementController",
    "MeasurementState",
    "MeasurementStateError",
    "PulseMonitorError",
    "PulseReading",
    "SensorConfig",
    "StabilityState",
    "StabilityTracker",
    "SyntheticSource",
    "estimate_bpm",
]
