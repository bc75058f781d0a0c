"""Camera acquisition and frame normalisation."""

from .camera_manager import CameraConfig, CameraManager, CameraProvider, DefaultCameraProvider
from .pipeline import VisionFrame, VisionPipeline

__all__ = [
    "CameraConfig",
    "CameraManager",
    "CameraProvider",
    "DefaultCameraProvider",
    "VisionFrame",
    "VisionPipeline",
]
