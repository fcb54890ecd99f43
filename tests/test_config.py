"""
Unit tests for SensorConfig, PulseReading labels and CLI argument handling.
"""

from __future__ import annotations

import pytest

from pulse_monitor.cli import build_config, build_source, parse_args
from pulse_monitor.config import SensorConfig
from pulse_monitor.controller import PulseReading
from pulse_monitor.errors import ConfigurationError
from pulse_monitor.sources import CameraSource, SyntheticSource


class TestSensorConfig:

    def test_defaults(self):
        cfg = SensorConfig()
        assert (cfg.buffer_size, cfg.min_bpm, cfg.max_bpm, cfg.stabilization_frames) == (50, 42, 240, 20)
        assert cfg.sample_rate == pytest.approx(10.0)

    def test_is_immutable(self):
        cfg = SensorConfig()
        with pytest.raises(AttributeError):
            cfg.buffer_size = 10

    def test_replace_validates(self):
        with pytest.raises(ConfigurationError) as info:
            SensorConfig().replace(min_bpm=300)
        assert info.value.field == "min_bpm"

    @pytest.mark.parametrize("field,value", [
        ("buffer_size", 0),
        ("capture_interval_ms", 0),
        ("quality_threshold", 101),
        ("variance_threshold", 0.0),
        ("stabilization_frames", 60),
    ])
    def test_rejects_bad_values(self, field, value):
        with pytest.raises(ConfigurationError):
            SensorConfig(**{field: value})

    def test_synthetic_preset(self):
        cfg = SensorConfig.synthetic()
        assert cfg.capture_interval_ms == 100.0
        assert cfg.sample_rate == pytest.approx(10.0)
        assert cfg.estimate_every == 5
        assert SensorConfig.synthetic(estimate_every=3).estimate_every == 3


class TestPulseReading:

    @pytest.mark.parametrize("quality,label", [(0, "weak"), (59, "weak"), (60, "good"),
                                               (79, "good"), (80, "excellent"), (100, "excellent")])
    def test_quality_label(self, quality, label):
        assert PulseReading(quality=quality).quality_label == label


class TestCli:

    def test_demo_uses_synthetic_source(self):
        args = parse_args(["--demo", "--target-bpm", "75", "--seed", "1"])
        cfg = build_config(args)
        src = build_source(args, cfg)
        assert isinstance(src, SyntheticSource)
        assert src.target_bpm == 75
        assert src.sample_rate == pytest.approx(cfg.sample_rate)

    def test_interval_override(self):
        cfg = build_config(parse_args(["--interval-ms", "50"]))
        assert cfg.sample_rate == pytest.approx(20.0)

    def test_camera_source_built_lazily(self):
        args = parse_args(["--resolution", "320x240", "--camera-index", "2"])
        src = build_source(args, build_config(args))
        assert isinstance(src, CameraSource)
        assert src.camera.resolution == (320, 240)
        assert not src.is_open

    def test_bad_resolution(self):
        args = parse_args(["--resolution", "huge"])
        with pytest.raises(ValueError):
            build_source(args, build_config(args))
