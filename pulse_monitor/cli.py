"""
Headless demo runner.

Usage
-----
    pulse-monitor [OPTIONS]

Options
-------
    --demo               Use the synthetic PPG source instead of the camera
    --target-bpm FLOAT   Simulated heart rate for --demo (default: random 60 – 100)
    --seed INT           Noise seed for --demo
    --interval-ms FLOAT  Capture interval (default: 100)
    --duration FLOAT     Give up after this many seconds (default: 20)
    --camera-index INT   OpenCV camera index (default: 0)
    --resolution WxH     Camera resolution (default: 640x480)
    --auto-confirm       Confirm the reading as soon as it is stable
    --verbose            Log every estimate
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pulse_monitor.camera import FingertipCamera
from pulse_monitor.config import SensorConfig
from pulse_monitor.controller import MeasurementController, PulseReading
from pulse_monitor.errors import ConfirmRejectedError, HardwareUnavailableError, PulseMonitorError
from pulse_monitor.sources import CameraSource, FrameSource, SyntheticSource

logger = logging.getLogger("pulse_monitor")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_HARDWARE = 2


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip PPG heart-rate measurement (camera or synthetic)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--demo", action="store_true",
                        help="Use the synthetic PPG source")
    parser.add_argument("--target-bpm", type=float, default=None,
                        help="Simulated heart rate for --demo")
    parser.add_argument("--seed", type=int, default=None,
                        help="Noise seed for --demo")
    parser.add_argument("--interval-ms", type=float, default=None,
                        help="Capture interval in milliseconds")
    parser.add_argument("--duration", type=float, default=20.0,
                        help="Maximum measurement time in seconds")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index (fallback)")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--auto-confirm", action="store_true",
                        help="Confirm the reading once it is stable")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SensorConfig:
    config = SensorConfig.synthetic() if args.demo else SensorConfig()
    if args.interval_ms is not None:
        config = config.replace(capture_interval_ms=args.interval_ms)
    return config


def build_source(args: argparse.Namespace, config: SensorConfig) -> FrameSource:
    if args.demo:
        return SyntheticSource(
            target_bpm=args.target_bpm,
            sample_rate=config.sample_rate,
            seed=args.seed,
        )
    res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    camera = FingertipCamera(
        resolution=(res_w, res_h),
        fps=max(1, round(config.sample_rate)),
        camera_index=args.camera_index,
    )
    return CameraSource(
        camera,
        region_size=config.sample_region_size,
        timeout=config.acquire_timeout_ms / 1000.0,
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

async def measure(args: argparse.Namespace, config: SensorConfig, source: FrameSource) -> int:
    stable = asyncio.Event()
    last_logged = -1

    def on_update(reading: PulseReading) -> None:
        nonlocal last_logged
        second = int(reading.elapsed_seconds)
        if second == last_logged:
            return
        last_logged = second
        if reading.bpm is not None:
            print(f"[{reading.elapsed_seconds:5.1f}s] BPM={reading.bpm}  "
                  f"quality={reading.quality} ({reading.quality_label})  "
                  f"stable={reading.is_stable}")
        else:
            print(f"[{reading.elapsed_seconds:5.1f}s] Detecting pulse…  quality={reading.quality}")

    def on_stable(reading: PulseReading) -> None:
        logger.info("Stable reading: %s BPM", reading.bpm)
        stable.set()

    controller = MeasurementController(
        source,
        config,
        on_bpm_detected=lambda bpm: print(f"Confirmed heart rate: {bpm} BPM"),
        on_update=on_update,
        on_stable=on_stable,
        on_error=lambda exc: stable.set(),
    )

    try:
        controller.start()
    except HardwareUnavailableError as exc:
        logger.error("%s – try --demo.", exc.message)
        return EXIT_HARDWARE

    try:
        deadline = asyncio.get_running_loop().time() + args.duration
        while controller.is_capturing:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                logger.info("Time limit reached.")
                break
            try:
                await asyncio.wait_for(stable.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            stable.clear()
            if args.auto_confirm and controller.is_capturing:
                try:
                    controller.confirm()
                except ConfirmRejectedError as exc:
                    logger.info("Not confirmed yet: %s", exc.message)
    finally:
        if controller.is_capturing:
            controller.cancel()
        await controller.wait()

    if isinstance(controller.error, HardwareUnavailableError):
        logger.error("%s – try --demo.", controller.error.message)
        return EXIT_HARDWARE
    return EXIT_OK


def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        config = build_config(args)
        source = build_source(args, config)
    except (ValueError, PulseMonitorError) as exc:
        logger.error("Invalid arguments: %s", exc)
        return EXIT_USAGE

    logger.info("Starting pulse monitor.  Press Ctrl+C to stop.")
    try:
        return asyncio.run(measure(args, config, source))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
