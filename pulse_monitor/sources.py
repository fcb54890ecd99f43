"""
Frame sources: where the brightness samples come from.

Both variants expose the same capability, :meth:`FrameSource.produce_sample`,
so the measurement controller never needs to know which one it drives.

* :class:`CameraSource` – mean luminance of the centre of a real camera
  frame, lit by the torch through the fingertip.
* :class:`SyntheticSource` – a PPG-like waveform for demos and tests.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import math
from typing import Optional

import cv2
import numpy as np

from pulse_monitor.camera import FingertipCamera

logger = logging.getLogger(__name__)


class FrameSource(abc.ABC):
    """
    Producer of one brightness sample per capture tick.

    :meth:`open` acquires whatever the source needs (for the camera: the
    exclusive camera + torch resource) and :meth:`close` releases it.
    """

    def __init__(self) -> None:
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    @abc.abstractmethod
    async def produce_sample(self) -> Optional[float]:
        """Return the next sample, or *None* when this tick yields nothing."""

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Synthetic PPG waveform
# ---------------------------------------------------------------------------

class SyntheticSource(FrameSource):
    """
    Simulated fingertip PPG signal.

    The waveform is ``128 + 15·ramp·(main + dicrotic + resp + noise)`` where
    the main pulse is a sine at the target rate, the dicrotic notch its
    second harmonic, ``resp`` a slow 0.2 Hz respiratory swing, and ``ramp``
    rises from 0 to 1 over the first three seconds as if the user were
    settling their finger on the lens.  Time is derived from the sample
    index, so a seeded (or noise-free) source is fully reproducible.

    Parameters
    ----------
    target_bpm:
        Simulated heart rate.  *None* draws a new value in 60 – 100 BPM on
        every :meth:`open`.
    sample_rate:
        Samples per second; must match the controller's capture rate.
    seed:
        Seed for the noise generator.
    noise:
        Disable to get a deterministic waveform without a seed.
    ramp_seconds:
        Duration of the finger-settling ramp.
    """

    BASELINE = 128.0
    AMPLITUDE = 15.0

    def __init__(
        self,
        target_bpm: float | None = None,
        sample_rate: float = 30.0,
        seed: int | None = None,
        noise: bool = True,
        ramp_seconds: float = 3.0,
    ) -> None:
        super().__init__()
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = sample_rate
        self.noise = noise
        self.ramp_seconds = ramp_seconds
        self._requested_bpm = target_bpm
        self._rng = np.random.default_rng(seed)
        self._index = 0
        self.target_bpm: float = target_bpm if target_bpm is not None else self._draw_bpm()

    def open(self) -> None:
        self._index = 0
        if self._requested_bpm is None:
            self.target_bpm = self._draw_bpm()
        logger.info("Synthetic source started at %.0f BPM (fs=%.1f Hz)",
                    self.target_bpm, self.sample_rate)
        super().open()

    @property
    def elapsed_seconds(self) -> float:
        return self._index / self.sample_rate

    def sample_at(self, t: float) -> float:
        """Waveform value at time *t* seconds (noise drawn from the generator)."""
        ramp = min(1.0, t / self.ramp_seconds) if self.ramp_seconds > 0 else 1.0
        f = self.target_bpm / 60.0

        main_wave = math.sin(2 * math.pi * f * t)
        dicrotic_notch = 0.3 * math.sin(4 * math.pi * f * t + 0.5)
        resp_variation = 0.1 * math.sin(2 * math.pi * 0.2 * t)
        noise = 0.0
        if self.noise:
            noise = (1 - ramp * 0.8) * float(self._rng.uniform(-0.5, 0.5))

        return self.BASELINE + self.AMPLITUDE * ramp * (
            main_wave + dicrotic_notch + resp_variation + noise
        )

    async def produce_sample(self) -> Optional[float]:
        if not self.is_open:
            return None
        value = self.sample_at(self.elapsed_seconds)
        self._index += 1
        return value

    def _draw_bpm(self) -> float:
        return float(self._rng.integers(60, 100))


# ---------------------------------------------------------------------------
# Real camera
# ---------------------------------------------------------------------------

def region_luminance(frame: np.ndarray, region_size: int = 50) -> float:
    """
    Mean luminance of the central half of *frame*.

    The centre (25 % – 75 % on both axes) is where the fingertip sits.  It is
    resized to ``region_size × region_size`` before averaging, which keeps
    the cost independent of the camera resolution.
    """
    h, w = frame.shape[:2]
    y0, x0 = h // 4, w // 4
    patch = frame[y0:y0 + max(1, h // 2), x0:x0 + max(1, w // 2)]
    patch = cv2.resize(patch, (region_size, region_size), interpolation=cv2.INTER_AREA)
    if patch.ndim == 3:
        patch = cv2.cvtColor(patch, cv2.COLOR_BGR2GRAY)
    return float(np.mean(patch))


def _discard_result(fut: "asyncio.Future") -> None:
    # Retrieve the outcome of reads nobody awaited anymore (timed out).
    if not fut.cancelled() and fut.exception() is not None:
        logger.debug("Late camera read failed: %s", fut.exception())


class CameraSource(FrameSource):
    """
    Brightness samples from a :class:`FingertipCamera`.

    Each acquisition runs in a worker thread so camera I/O never blocks the
    event loop.  Acquisitions never overlap: while a read is still in flight
    (e.g. after a timeout) further ticks are skipped.  A failed or timed-out
    read yields *None*.

    Parameters
    ----------
    camera:
        The capture hardware.  Opened and closed together with the source.
    region_size:
        Side of the square the frame centre is resized to.
    timeout:
        Seconds to wait for a single acquisition.
    """

    def __init__(
        self,
        camera: FingertipCamera,
        region_size: int = 50,
        timeout: float = 1.0,
    ) -> None:
        super().__init__()
        self.camera = camera
        self.region_size = region_size
        self.timeout = timeout
        self._inflight: "asyncio.Future | None" = None

    @property
    def is_open(self) -> bool:
        return self._open and self.camera.is_open

    def open(self) -> None:
        self.camera.open()
        super().open()

    def close(self) -> None:
        super().close()
        # Blocks until a read running in a worker thread has finished.
        self.camera.close()

    async def produce_sample(self) -> Optional[float]:
        if not self.is_open:
            return None
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Previous acquisition still running – skipping tick.")
            return None

        loop = asyncio.get_running_loop()
        self._inflight = loop.run_in_executor(None, self._acquire)
        self._inflight.add_done_callback(_discard_result)
        try:
            return await asyncio.wait_for(asyncio.shield(self._inflight), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Camera acquisition timed out after %.2fs.", self.timeout)
            return None
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Frame capture failed: %s", exc)
            return None

    def _acquire(self) -> Optional[float]:
        frame = self.camera.read_frame()
        if frame is None:
            return None
        return region_luminance(frame, self.region_size)
