"""
Stability tracking over successive BPM estimates.

Each estimate is compared with the one immediately before it, so the
reference drifts forward with the readings: 70, 73, 76 counts as two
agreements even though 70 and 76 are six apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilityState:
    last_bpm: Optional[int] = None
    consecutive_agreements: int = 0
    is_stable: bool = False


class StabilityTracker:
    """
    Accumulate consecutive agreeing estimates into a stable verdict.

    Parameters
    ----------
    tolerance:
        Maximum BPM difference between two readings that still agree.
    required_agreements:
        Agreements needed before the readings count as stable.  The default
        of 2 means three consecutive mutually close readings, so 70, 73, 71
        is stable on the third reading.  A threshold of 3 agreements would
        need a fourth reading.
    """

    def __init__(self, tolerance: int = 5, required_agreements: int = 2) -> None:
        self.tolerance = tolerance
        self.required_agreements = required_agreements
        self._last_bpm: Optional[int] = None
        self._agreements = 0
        self._stable = False

    def update(self, bpm: Optional[int]) -> bool:
        """
        Feed one estimate; ``None`` is ignored.

        Returns *True* only on the tick where the readings become stable,
        so the caller can fire a one-off success notification.
        """
        if bpm is None:
            return False

        if self._last_bpm is None or abs(bpm - self._last_bpm) > self.tolerance:
            self._agreements = 0
        else:
            self._agreements += 1
        self._last_bpm = bpm

        was_stable = self._stable
        self._stable = self._agreements >= self.required_agreements
        if self._stable and not was_stable:
            logger.info("Reading stable at %d BPM", bpm)
            return True
        return False

    def reset(self) -> None:
        self._last_bpm = None
        self._agreements = 0
        self._stable = False

    @property
    def state(self) -> StabilityState:
        return StabilityState(
            last_bpm=self._last_bpm,
            consecutive_agreements=self._agreements,
            is_stable=self._stable,
        )

    @property
    def is_stable(self) -> bool:
        return self._stable

    @property
    def consecutive_agreements(self) -> int:
        return self._agreements

    @property
    def last_bpm(self) -> Optional[int]:
        return self._last_bpm
