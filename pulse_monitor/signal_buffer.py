"""
Fixed-capacity sliding window of brightness samples.
"""

from __future__ import annotations

from collections import deque
from typing import Deque

import numpy as np


class SignalBuffer:
    """
    FIFO window holding the most recent ``capacity`` samples.

    The oldest sample is evicted once the buffer is full.  Downstream
    analysis only ever sees :meth:`snapshot` copies, so a push that happens
    while an estimate is being computed cannot change its input.
    """

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._samples: Deque[float] = deque(maxlen=capacity)

    def push(self, sample: float) -> None:
        """Append *sample*, evicting the oldest entry when full."""
        self._samples.append(float(sample))

    def snapshot(self) -> np.ndarray:
        """Return a read-only copy of the samples in arrival order."""
        view = np.array(self._samples, dtype=np.float64)
        view.setflags(write=False)
        return view

    def clear(self) -> None:
        self._samples.clear()

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self._samples) / self._samples.maxlen

    def __len__(self) -> int:
        return len(self._samples)
