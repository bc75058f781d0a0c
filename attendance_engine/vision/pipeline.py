"""Vision pipeline that normalizes frames before inference."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import cv2
import numpy as np

from .camera_manager import CameraManager


@dataclass
class VisionFrame:
    frame_id: str
    timestamp: datetime
    bgr: np.ndarray
    rgb: np.ndarray


class VisionPipeline:
    """Combines CameraManager with colour conversion for the face model."""

    def __init__(self, camera: CameraManager):
        self.camera = camera
        self.frame_counter = 0

    def _next_id(self) -> str:
        self.frame_counter += 1
        return f"frame-{self.frame_counter}"

    def next_frame(self) -> Optional[VisionFrame]:
        """Freshest frame from the camera, or ``None`` when none is ready."""
        frame = self.camera.read()
        if frame is None:
            return None
        # face_recognition expects RGB; OpenCV captures BGR
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return VisionFrame(
            frame_id=self._next_id(),
            timestamp=datetime.now(),
            bgr=frame,
            rgb=rgb,
        )
