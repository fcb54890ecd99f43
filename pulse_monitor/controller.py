"""
Measurement lifecycle controller.

One :class:`MeasurementController` instance drives one measurement::

    IDLE ──start()──▶ CAPTURING ──confirm()──▶ CONFIRMED
                          │
                          └──cancel() / hardware failure──▶ CANCELLED

While capturing, a single asyncio task calls :meth:`MeasurementController.tick`
every ``capture_interval_ms``.  Each tick pulls one sample from the frame
source into the signal buffer; every ``estimate_every``-th sample the BPM
estimator runs on a snapshot of the buffer and the stability tracker is
updated.  The capture resource (camera + torch) is held only while the
state is CAPTURING: every path out of that state releases it before the
call returns.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pulse_monitor.config import QUALITY_EXCELLENT, QUALITY_GOOD, SensorConfig
from pulse_monitor.errors import (
    ConfirmRejectedError,
    HardwareUnavailableError,
    MeasurementStateError,
)
from pulse_monitor.estimator import BpmEstimator
from pulse_monitor.signal_buffer import SignalBuffer
from pulse_monitor.sources import FrameSource
from pulse_monitor.stability import StabilityState, StabilityTracker

logger = logging.getLogger(__name__)


class MeasurementState(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class PulseReading:
    """Latest published state of a measurement."""

    bpm: Optional[int] = None
    quality: int = 0
    is_stable: bool = False
    elapsed_seconds: float = 0.0
    seconds_remaining: float = 0.0
    samples: int = 0

    @property
    def quality_label(self) -> str:
        if self.quality >= QUALITY_EXCELLENT:
            return "excellent"
        if self.quality >= QUALITY_GOOD:
            return "good"
        return "weak"


class MeasurementController:
    """
    State machine and timer loop of a single heart-rate measurement.

    Parameters
    ----------
    source:
        Injected :class:`FrameSource` (camera or synthetic).
    config:
        Measurement parameters; the source must sample at
        ``config.sample_rate``.
    on_bpm_detected:
        Called once with the final BPM when :meth:`confirm` succeeds.
    on_cancel:
        Called once when :meth:`cancel` ends the measurement.
    on_update:
        Called with every newly published :class:`PulseReading`.
    on_stable:
        Called with the reading on which the estimates became stable.
    on_error:
        Called with the terminal error (e.g. :class:`HardwareUnavailableError`)
        when the measurement aborts on its own.
    """

    def __init__(
        self,
        source: FrameSource,
        config: SensorConfig | None = None,
        on_bpm_detected: Optional[Callable[[int], None]] = None,
        on_cancel: Optional[Callable[[], None]] = None,
        on_update: Optional[Callable[[PulseReading], None]] = None,
        on_stable: Optional[Callable[[PulseReading], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.source = source
        self.config = config or SensorConfig()
        self.on_bpm_detected = on_bpm_detected
        self.on_cancel = on_cancel
        self.on_update = on_update
        self.on_stable = on_stable
        self.on_error = on_error

        self._buffer = SignalBuffer(self.config.buffer_size)
        self._estimator = BpmEstimator(self.config)
        self._tracker = StabilityTracker(
            tolerance=self.config.agreement_tolerance,
            required_agreements=self.config.stable_agreements,
        )
        self._state = MeasurementState.IDLE
        self._task: "asyncio.Task | None" = None
        self._owns_source = False
        self._ticks = 0
        self._samples = 0
        self._reading = PulseReading(seconds_remaining=self.config.measurement_seconds)
        self.error: Exception | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> MeasurementState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._state is MeasurementState.CAPTURING

    @property
    def reading(self) -> PulseReading:
        return self._reading

    @property
    def stability(self) -> StabilityState:
        return self._tracker.state

    @property
    def buffered_samples(self) -> int:
        return len(self._buffer)

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def start(self, autorun: bool = True) -> None:
        """
        Begin capturing.

        Parameters
        ----------
        autorun:
            Schedule the periodic sampling task on the running event loop.
            With *False* the caller drives the measurement through
            :meth:`tick` (deterministic stepping in tests and simulations).

        Raises
        ------
        MeasurementStateError
            If this controller already ran, or the source is held by
            another measurement.
        HardwareUnavailableError
            If the source cannot acquire its hardware.  The measurement is
            then CANCELLED.
        """
        if self._state is not MeasurementState.IDLE:
            raise MeasurementStateError(
                "A measurement can only be started once.", state=self._state.value
            )
        if self.source.is_open:
            raise MeasurementStateError(
                "Frame source is already in use by another measurement.",
                state=self._state.value,
            )
        loop = asyncio.get_running_loop() if autorun else None

        self._buffer.clear()
        self._tracker.reset()
        self._ticks = 0
        self._samples = 0
        self._reading = PulseReading(seconds_remaining=self.config.measurement_seconds)

        try:
            self.source.open()
        except HardwareUnavailableError as exc:
            logger.error("Cannot start measurement: %s", exc)
            self._state = MeasurementState.CANCELLED
            self.error = exc
            self.source.close()
            raise
        self._owns_source = True
        self._state = MeasurementState.CAPTURING
        logger.info(
            "Measurement started – source=%s interval=%.0fms buffer=%d",
            type(self.source).__name__,
            self.config.capture_interval_ms,
            self.config.buffer_size,
        )

        if loop is not None:
            self._task = loop.create_task(self._run())

    def cancel(self) -> None:
        """
        End the measurement from any state.

        The sampling task is cancelled and the capture resource released
        before this returns; no tick runs afterwards.  Buffered samples are
        discarded and ``on_cancel`` fires (once).
        """
        if self._state is MeasurementState.CANCELLED:
            return
        previous = self._state
        self._state = MeasurementState.CANCELLED
        try:
            self._teardown()
        finally:
            self._buffer.clear()
            self._tracker.reset()
            logger.info("Measurement cancelled (was %s).", previous.value)
            if self.on_cancel is not None:
                self.on_cancel()

    def confirm(self) -> int:
        """
        Accept the current reading.

        Returns
        -------
        int
            The confirmed BPM, also passed to ``on_bpm_detected``.

        Raises
        ------
        ConfirmRejectedError
            When not capturing, when no BPM is available, or when its
            quality is below ``config.quality_threshold``.
        """
        reading = self._reading
        threshold = self.config.quality_threshold
        if (
            self._state is not MeasurementState.CAPTURING
            or reading.bpm is None
            or reading.quality < threshold
        ):
            raise ConfirmRejectedError(
                f"Cannot confirm reading bpm={reading.bpm} quality={reading.quality} "
                f"in state {self._state.value}",
                state=self._state.value,
                bpm=reading.bpm,
                quality=reading.quality,
                threshold=threshold,
            )

        self._state = MeasurementState.CONFIRMED
        self._teardown()
        logger.info("Measurement confirmed at %d BPM (quality %d).", reading.bpm, reading.quality)
        if self.on_bpm_detected is not None:
            self.on_bpm_detected(reading.bpm)
        return reading.bpm

    def shutdown(self) -> None:
        """Release everything without notifying the caller (component dismissed)."""
        if self._state is MeasurementState.CAPTURING:
            self._state = MeasurementState.CANCELLED
        self._teardown()

    async def wait(self) -> None:
        """Wait for the sampling task to finish; re-raise if it crashed."""
        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def __aenter__(self) -> "MeasurementController":
        self.start()
        return self

    async def __aexit__(self, *_) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Sampling loop
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[PulseReading]:
        """
        Run one capture cycle.

        Returns the newly published reading, or *None* when this tick did
        not run the estimator (no sample, throttled, or not capturing).
        """
        if self._state is not MeasurementState.CAPTURING:
            return None
        first_tick = self._ticks == 0
        self._ticks += 1

        sample = await self.source.produce_sample()
        if self._state is not MeasurementState.CAPTURING:
            return None

        if sample is None:
            if first_tick:
                self._fail(HardwareUnavailableError(
                    "Frame source produced no sample on the first acquisition.",
                    device=type(self.source).__name__,
                ))
            else:
                logger.debug("No sample on tick %d – skipped.", self._ticks)
            return None

        self._buffer.push(sample)
        self._samples += 1
        cfg = self.config
        if self._samples % cfg.estimate_every != 0 or len(self._buffer) < cfg.stabilization_frames:
            return None

        window = self._buffer.snapshot()
        estimate = self._estimator.estimate(window, cfg.sample_rate)
        became_stable = self._tracker.update(estimate.bpm)

        elapsed = self._ticks * cfg.interval_seconds
        self._reading = PulseReading(
            bpm=estimate.bpm,
            quality=estimate.quality,
            is_stable=self._tracker.is_stable,
            elapsed_seconds=elapsed,
            seconds_remaining=max(0.0, cfg.measurement_seconds - elapsed),
            samples=len(window),
        )
        logger.debug(
            "t=%.1fs bpm=%s quality=%d stable=%s",
            elapsed, estimate.bpm, estimate.quality, self._reading.is_stable,
        )

        if self.on_update is not None:
            self.on_update(self._reading)
        if became_stable and self.on_stable is not None:
            self.on_stable(self._reading)
        return self._reading

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.interval_seconds
        next_at = loop.time()
        try:
            while self._state is MeasurementState.CAPTURING:
                await self.tick()
                next_at += interval
                delay = next_at - loop.time()
                if delay < 0:
                    # Fell behind (slow camera); do not burst to catch up.
                    next_at = loop.time()
                    delay = 0.0
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Measurement loop failed.")
            self._fail(exc)
            raise
        finally:
            if self._state is MeasurementState.CAPTURING:
                # Task cancelled from outside the controller.
                self._state = MeasurementState.CANCELLED
                self._release_source()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fail(self, exc: Exception) -> None:
        logger.error("Measurement aborted: %s", exc)
        self._state = MeasurementState.CANCELLED
        self.error = exc
        self._teardown()
        if self.on_error is not None:
            self.on_error(exc)

    def _teardown(self) -> None:
        task = self._task
        try:
            if task is not None and not task.done():
                try:
                    current = asyncio.current_task()
                except RuntimeError:
                    current = None
                if task is not current:
                    task.cancel()
        finally:
            self._release_source()

    def _release_source(self) -> None:
        if self._owns_source or not self.source.is_open:
            self._owns_source = False
            self.source.close()
