"""Camera device management with scoped acquisition."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import cv2

from ..errors import CameraUnavailable


logger = logging.getLogger(__name__)


class CameraProvider(Protocol):
    """Abstraction for objects that can supply cv2.VideoCapture."""

    def open(self, index: int) -> cv2.VideoCapture:
        ...


class DefaultCameraProvider:
    """Real provider that uses OpenCV to create VideoCapture objects."""

    def open(self, index: int) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(index)
        if not capture or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraUnavailable(f"Cannot open camera index {index}")
        return capture


@dataclass
class CameraConfig:
    index: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    warmup_frames: int = 3
    buffer_size: Optional[int] = 2


class CameraManager:
    """Owns one capture device for the lifetime of a recognition session.

    ``read()`` distinguishes a frame that is simply not ready yet (returns
    ``None``) from a device that went away (raises ``CameraUnavailable``).
    """

    def __init__(
        self,
        index: int = 0,
        provider: Optional[CameraProvider] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        warmup_frames: int = 3,
        buffer_size: Optional[int] = 2,
    ):
        self.config = CameraConfig(
            index=index,
            width=width,
            height=height,
            warmup_frames=warmup_frames,
            buffer_size=buffer_size,
        )
        self.provider = provider or DefaultCameraProvider()
        self._capture: Optional[cv2.VideoCapture] = None

    def __enter__(self) -> "CameraManager":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def open(self) -> cv2.VideoCapture:
        capture = self._capture
        if capture is not None and capture.isOpened():
            return capture

        try:
            capture = self.provider.open(self.config.index)
        except CameraUnavailable:
            raise
        except Exception as exc:
            raise CameraUnavailable(f"Cannot open camera index {self.config.index}: {exc}") from exc
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraUnavailable(f"Camera index {self.config.index} is not available")

        self._capture = capture
        self._configure_capture(capture)
        return capture

    def _configure_capture(self, capture: cv2.VideoCapture) -> None:
        try:
            if self.config.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
            if self.config.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
            if self.config.buffer_size is not None and hasattr(cv2, "CAP_PROP_BUFFERSIZE"):
                capture.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

            actual_w = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            actual_h = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
            fps = capture.get(cv2.CAP_PROP_FPS)
            logger.info(
                "[Camera] Ready: %sx%s @ %.2f fps",
                actual_w,
                actual_h,
                fps or 0,
            )

            warmup = max(0, self.config.warmup_frames)
            if warmup:
                logger.debug("[Camera] Warming up (%s frames)", warmup)
                success = 0
                for _ in range(warmup):
                    ret, _frame = capture.read()
                    if ret:
                        success += 1
                    time.sleep(0.05)
                logger.debug("[Camera] Warmup frames ok=%s/%s", success, warmup)
        except Exception as exc:
            logger.warning("[Camera] Unable to configure camera: %s", exc)

    def release(self) -> None:
        capture = self._capture
        self._capture = None
        if capture is not None:
            try:
                capture.release()
            except Exception as exc:
                logger.warning("[Camera] release() failed: %s", exc)
            else:
                logger.info("[Camera] Device %s released", self.config.index)

    def read(self):
        capture = self._capture
        if capture is None:
            raise CameraUnavailable("Camera is not open")
        if not capture.isOpened():
            raise CameraUnavailable(f"Camera index {self.config.index} was disconnected")
        ret, frame = capture.read()
        if not ret or frame is None:
            return None
        return frame
