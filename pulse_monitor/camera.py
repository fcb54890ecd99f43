"""
Fingertip capture hardware: camera plus torch.

Wraps picamera2 when it is available and falls back to OpenCV
``VideoCapture`` (any webcam) otherwise, which is handy for development on
non-Pi hardware.  The torch lights the fingertip from behind the lens; it is
switched on by :meth:`FingertipCamera.open` and always off again once
:meth:`FingertipCamera.close` returns.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from pulse_monitor.errors import HardwareUnavailableError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False
    logger.debug("picamera2 not found – using OpenCV VideoCapture.")


class FingertipCamera:
    """
    Exclusive camera + torch resource for one measurement.

    Parameters
    ----------
    resolution:
        (width, height) of captured frames.
    fps:
        Target frame rate requested from the driver.
    camera_index:
        OpenCV camera index when picamera2 is unavailable.
    set_torch:
        Optional platform hook switching the light source on/off.  Called
        with *True* on open and *False* on close.
    use_picamera2:
        Force a backend; defaults to picamera2 when it is importable.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 10,
        camera_index: int = 0,
        set_torch: Optional[Callable[[bool], None]] = None,
        use_picamera2: Optional[bool] = None,
    ) -> None:
        self.resolution = resolution
        self.fps = fps
        self.camera_index = camera_index
        self._set_torch = set_torch
        self._use_picamera2 = _PICAMERA2_AVAILABLE if use_picamera2 is None else use_picamera2

        self._cam: "Picamera2 | cv2.VideoCapture | None" = None
        self._torch_on = False
        # Serialises frame reads with close() so the device is never
        # released underneath a read running in a worker thread.
        self._io_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._cam is not None

    @property
    def torch_on(self) -> bool:
        return self._torch_on

    def open(self) -> None:
        """Start the camera and switch the torch on."""
        if self._cam is not None:
            return
        try:
            if self._use_picamera2:
                self._open_picamera2()
            else:
                self._open_opencv()
        except HardwareUnavailableError:
            raise
        except Exception as exc:                         # noqa: BLE001
            raise HardwareUnavailableError(
                f"Cannot start camera: {exc}",
                details={"camera_index": self.camera_index},
            ) from exc
        try:
            self._switch_torch(True)
        except Exception as exc:                         # noqa: BLE001
            self.close()
            raise HardwareUnavailableError(
                f"Cannot switch torch on: {exc}", device="torch"
            ) from exc
        logger.info(
            "Camera opened – backend=%s resolution=%s fps=%d",
            "picamera2" if self._use_picamera2 else "opencv",
            self.resolution,
            self.fps,
        )

    def close(self) -> None:
        """Switch the torch off and release the camera.  Safe to call twice."""
        with self._io_lock:
            try:
                self._switch_torch(False)
            finally:
                if self._cam is not None:
                    if self._use_picamera2:
                        self._cam.stop()
                        self._cam.close()
                    else:
                        self._cam.release()
                    self._cam = None
                    logger.info("Camera closed.")

    def __enter__(self) -> "FingertipCamera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> np.ndarray | None:
        """
        Capture a single frame.

        Returns
        -------
        numpy.ndarray
            BGR image array (H × W × 3, dtype uint8), or *None* on failure
            or when the camera has already been closed.
        """
        with self._io_lock:
            if self._cam is None:
                return None
            if self._use_picamera2:
                return self._read_picamera2()
            return self._read_opencv()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _switch_torch(self, on: bool) -> None:
        if self._torch_on == on:
            return
        if self._set_torch is not None:
            self._set_torch(on)
        self._torch_on = on
        logger.info("Torch %s.", "on" if on else "off")

    def _open_picamera2(self) -> None:
        cam = Picamera2()
        w, h = self.resolution
        config = cam.create_video_configuration(
            main={"size": (w, h), "format": "RGB888"},
            buffer_count=4,
        )
        cam.configure(config)
        frame_duration = int(1_000_000 / self.fps)   # microseconds
        try:
            cam.set_controls({
                "FrameDurationLimits": (frame_duration, frame_duration),
            })
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Could not set FrameDurationLimits: %s", exc)
        cam.start()
        self._cam = cam

    def _read_picamera2(self) -> np.ndarray | None:
        frame = self._cam.capture_array("main")
        if frame is None:
            logger.warning("capture_array returned None.")
            return None
        # Drop alpha channel if camera returned 4-channel XRGB/RGBA
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = frame[:, :, :3]
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise HardwareUnavailableError(
                f"Cannot open video capture device index={self.camera_index}",
                details={"camera_index": self.camera_index},
            )
        w, h = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cam = cap

    def _read_opencv(self) -> np.ndarray | None:
        ok, frame = self._cam.read()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return None
        return frame
