"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import (
    CaptureRequest,
    FilterRequest,
    ThresholdAdjustRequest,
    ThresholdSetRequest,
)
from app.schemas.responses import (
    BoundingBox,
    CameraResponse,
    CaptureResponse,
    FaceDetectionResult,
    FilterResponse,
    OutputsResponse,
    StudioStatusResponse,
    ThresholdsResponse,
)

__all__ = [
    "CaptureRequest",
    "FilterRequest",
    "ThresholdAdjustRequest",
    "ThresholdSetRequest",
    "BoundingBox",
    "CameraResponse",
    "CaptureResponse",
    "FaceDetectionResult",
    "FilterResponse",
    "OutputsResponse",
    "StudioStatusResponse",
    "ThresholdsResponse",
]
