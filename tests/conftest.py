"""
Shared fakes: a frame source and a camera that never touch hardware.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np
import pytest

from pulse_monitor.errors import HardwareUnavailableError
from pulse_monitor.sources import FrameSource


class FakeSource(FrameSource):
    """Replays a scripted sequence of samples; tracks acquire/release."""

    def __init__(self, samples: Iterable[Optional[float]] = (), default: Optional[float] = 100.0,
                 fail_open: bool = False) -> None:
        super().__init__()
        self._samples: List[Optional[float]] = list(samples)
        self.default = default
        self.fail_open = fail_open
        self.calls = 0
        self.acquired = False
        self.released = False

    def open(self) -> None:
        if self.fail_open:
            raise HardwareUnavailableError("fake camera missing")
        self.acquired = True
        self.released = False
        super().open()

    def close(self) -> None:
        self.released = True
        super().close()

    async def produce_sample(self) -> Optional[float]:
        self.calls += 1
        if self._samples:
            return self._samples.pop(0)
        return self.default


class FakeCamera:
    """Duck-typed stand-in for FingertipCamera."""

    def __init__(self, frames: Iterable[object] = (), fail_open: bool = False) -> None:
        self.frames = list(frames)
        self.fail_open = fail_open
        self.reads = 0
        self._open = False
        self.torch_on = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.fail_open:
            raise HardwareUnavailableError("no camera")
        self._open = True
        self.torch_on = True

    def close(self) -> None:
        self._open = False
        self.torch_on = False

    def read_frame(self):
        self.reads += 1
        item = self.frames.pop(0) if self.frames else None
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item()
        return item


def uniform_frame(value: int, h: int = 40, w: int = 40) -> np.ndarray:
    return np.full((h, w, 3), value, dtype=np.uint8)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()
