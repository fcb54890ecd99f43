"""
Unit tests for the synthetic and camera frame sources and the camera wrapper.
"""

from __future__ import annotations

import asyncio
import threading

import numpy as np
import pytest

from conftest import FakeCamera, uniform_frame
from pulse_monitor import camera as camera_module
from pulse_monitor.camera import FingertipCamera
from pulse_monitor.controller import MeasurementController, MeasurementState
from pulse_monitor.errors import HardwareUnavailableError
from pulse_monitor.estimator import estimate_bpm
from pulse_monitor.sources import CameraSource, SyntheticSource, region_luminance


def _collect(source, n: int) -> list:
    async def _run():
        return [await source.produce_sample() for _ in range(n)]
    return asyncio.run(_run())


# ---------------------------------------------------------------------------
# SyntheticSource tests
# ---------------------------------------------------------------------------

class TestSyntheticSource:

    def test_closed_source_yields_nothing(self):
        src = SyntheticSource(target_bpm=72, sample_rate=10.0, seed=1)
        assert _collect(src, 1) == [None]

    def test_seeded_sources_are_reproducible(self):
        a = SyntheticSource(target_bpm=80, sample_rate=10.0, seed=3)
        b = SyntheticSource(target_bpm=80, sample_rate=10.0, seed=3)
        with a, b:
            assert _collect(a, 40) == _collect(b, 40)

    def test_noise_free_waveform(self):
        src = SyntheticSource(target_bpm=60, sample_rate=10.0, noise=False)
        with src:
            values = _collect(src, 60)
        # ramp is zero at t=0: the signal starts on the baseline
        assert values[0] == pytest.approx(128.0)
        # fully ramped: main + dicrotic + resp stay within ±1.4 of the unit wave
        late = np.array(values[30:])
        assert np.all(np.abs(late - 128.0) <= 15 * 1.4 + 1e-9)
        assert late.std() > 5.0

    def test_ramp_grows_amplitude(self):
        src = SyntheticSource(target_bpm=75, sample_rate=10.0, noise=False)
        with src:
            values = np.array(_collect(src, 60))
        assert np.ptp(values[:10]) < np.ptp(values[40:])

    def test_reopen_restarts_clock(self):
        src = SyntheticSource(target_bpm=70, sample_rate=10.0, noise=False)
        with src:
            first = _collect(src, 5)
        with src:
            assert _collect(src, 5) == first
            assert src.elapsed_seconds == pytest.approx(0.5)

    def test_random_target_in_demo_range(self):
        src = SyntheticSource(sample_rate=30.0, seed=11)
        for _ in range(20):
            src.open()
            assert 60 <= src.target_bpm < 100
            src.close()

    def test_waveform_estimates_target(self):
        src = SyntheticSource(target_bpm=80, sample_rate=10.0, seed=5)
        with src:
            values = _collect(src, 100)
        result = estimate_bpm(np.array(values[-50:]), 10.0)
        assert result.bpm is not None
        assert abs(result.bpm - 80) <= 3


# ---------------------------------------------------------------------------
# CameraSource tests
# ---------------------------------------------------------------------------

class TestRegionLuminance:

    def test_uniform_frame(self):
        assert region_luminance(uniform_frame(100)) == pytest.approx(100.0)

    def test_only_centre_counts(self):
        frame = np.zeros((40, 40, 3), dtype=np.uint8)
        frame[10:30, 10:30] = 200
        assert region_luminance(frame, region_size=10) == pytest.approx(200.0)

    def test_grayscale_frame(self):
        frame = np.full((8, 8), 50, dtype=np.uint8)
        assert region_luminance(frame, region_size=4) == pytest.approx(50.0)


class TestCameraSource:

    def test_open_close_drive_camera(self):
        cam = FakeCamera()
        src = CameraSource(cam)
        src.open()
        assert src.is_open and cam.torch_on
        src.close()
        assert not src.is_open and not cam.torch_on

    def test_sample_is_mean_luminance(self):
        cam = FakeCamera([uniform_frame(90), uniform_frame(110)])
        with CameraSource(cam, region_size=10) as src:
            assert _collect(src, 2) == [pytest.approx(90.0), pytest.approx(110.0)]

    def test_dropped_frame_and_errors_yield_none(self):
        cam = FakeCamera([None, RuntimeError("driver hiccup"), uniform_frame(70)])
        with CameraSource(cam) as src:
            values = _collect(src, 3)
        assert values[:2] == [None, None]
        assert values[2] == pytest.approx(70.0)

    def test_closed_source_does_not_read(self):
        cam = FakeCamera([uniform_frame(10)])
        src = CameraSource(cam)
        assert _collect(src, 1) == [None]
        assert cam.reads == 0

    def test_open_failure_propagates(self):
        src = CameraSource(FakeCamera(fail_open=True))
        with pytest.raises(HardwareUnavailableError):
            src.open()
        assert not src.is_open

    def test_timeout_skips_and_never_overlaps(self):
        release = threading.Event()

        def slow_frame():
            release.wait(timeout=5.0)
            return uniform_frame(60)

        cam = FakeCamera([slow_frame, uniform_frame(80)])
        src = CameraSource(cam, timeout=0.05)

        async def _run():
            first = await src.produce_sample()       # times out
            second = await src.produce_sample()      # previous read still in flight
            reads_while_blocked = cam.reads
            release.set()
            await asyncio.sleep(0.2)
            third = await src.produce_sample()
            return first, second, reads_while_blocked, third

        with src:
            first, second, reads_while_blocked, third = asyncio.run(_run())
        assert first is None and second is None
        assert reads_while_blocked == 1
        assert third == pytest.approx(80.0)


# ---------------------------------------------------------------------------
# FingertipCamera tests (OpenCV backend patched out)
# ---------------------------------------------------------------------------

class _FakeCapture:
    instances: list = []

    def __init__(self, index, opened=True):
        self.index = index
        self.opened = opened
        self.released = False
        self.props = {}
        _FakeCapture.instances.append(self)

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        return True, np.full((4, 4, 3), 42, dtype=np.uint8)

    def release(self):
        self.released = True


class TestFingertipCamera:

    def test_open_read_close_with_torch(self, monkeypatch):
        monkeypatch.setattr(camera_module.cv2, "VideoCapture", _FakeCapture)
        torch_calls = []
        cam = FingertipCamera(use_picamera2=False, set_torch=torch_calls.append)
        with cam:
            assert cam.is_open and cam.torch_on
            frame = cam.read_frame()
            assert frame.shape == (4, 4, 3)
        assert not cam.is_open and not cam.torch_on
        assert torch_calls == [True, False]
        assert _FakeCapture.instances[-1].released

    def test_unopenable_device_is_hardware_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            camera_module.cv2, "VideoCapture", lambda index: _FakeCapture(index, opened=False)
        )
        cam = FingertipCamera(use_picamera2=False, camera_index=7)
        with pytest.raises(HardwareUnavailableError) as info:
            cam.open()
        assert info.value.details["camera_index"] == 7
        assert not cam.torch_on

    def test_torch_failure_releases_device(self, monkeypatch):
        monkeypatch.setattr(camera_module.cv2, "VideoCapture", _FakeCapture)

        def broken_torch(on):
            if on:
                raise OSError("torch busy")

        cam = FingertipCamera(use_picamera2=False, set_torch=broken_torch)
        with pytest.raises(HardwareUnavailableError) as info:
            cam.open()
        assert info.value.device == "torch"
        assert not cam.is_open and not cam.torch_on
        assert _FakeCapture.instances[-1].released

    def test_torch_failure_leaves_measurement_cancelled(self, monkeypatch):
        monkeypatch.setattr(camera_module.cv2, "VideoCapture", _FakeCapture)

        def broken_torch(on):
            if on:
                raise OSError("torch busy")

        cam = FingertipCamera(use_picamera2=False, set_torch=broken_torch)
        ctl = MeasurementController(CameraSource(cam))
        with pytest.raises(HardwareUnavailableError):
            ctl.start(autorun=False)
        assert ctl.state is MeasurementState.CANCELLED
        assert not cam.is_open

    def test_close_is_idempotent_and_read_after_close(self):
        cam = FingertipCamera(use_picamera2=False)
        cam.close()
        cam.close()
        assert cam.read_frame() is None
