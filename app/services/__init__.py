"""
Services for the face filter studio.

Includes:
- Pixel transforms and colorspace math
- Face detection (external ML detector, heuristic fallback chain)
- Face filter compositing
- Processing pipeline, studio driver and live tracking
"""

from app.services.capture_source import CameraCaptureSource, CaptureSource, StaticCaptureSource
from app.services.detection_orchestrator import DetectionOrchestrator
from app.services.face_filter import FaceFilter, FaceFilterApplicator
from app.services.face_region_detector import BoundingBox, FaceRegionDetector
from app.services.face_tracking_scheduler import FaceTrackingScheduler
from app.services.ml_detectors import HttpFaceDetector, MediaPipeFaceDetector
from app.services.pixel_transforms import PixelTransformEngine
from app.services.processing_pipeline import ImageProcessingPipeline
from app.services.studio import FilterStudio

__all__ = [
    # Processing
    "PixelTransformEngine",
    "ImageProcessingPipeline",
    # Detection
    "BoundingBox",
    "FaceRegionDetector",
    "DetectionOrchestrator",
    "MediaPipeFaceDetector",
    "HttpFaceDetector",
    # Face filter
    "FaceFilter",
    "FaceFilterApplicator",
    # Driver
    "CaptureSource",
    "CameraCaptureSource",
    "StaticCaptureSource",
    "FilterStudio",
    "FaceTrackingScheduler",
]
