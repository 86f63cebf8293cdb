"""
Response schemas for the studio API.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """Bounding box coordinates."""

    x: int = Field(..., description="X coordinate of top-left corner")
    y: int = Field(..., description="Y coordinate of top-left corner")
    width: int = Field(..., description="Width of bounding box")
    height: int = Field(..., description="Height of bounding box")


class FaceDetectionResult(BaseModel):
    """Face box chosen for a captured frame."""

    bbox: BoundingBox = Field(..., description="Face bounding box")
    method: str = Field(
        ..., description="How the box was found: ml, skin_tone, motion, region_scan or center_fallback"
    )
    is_fallback: bool = Field(..., description="True when no detector found a face")


class Thresholds(BaseModel):
    """Current threshold values."""

    red: int
    green: int
    blue: int
    hsv: int
    lab: int


class CaptureResponse(BaseModel):
    """Summary of one capture and its processing run."""

    status: str = Field(..., description="'processed' on success")
    frame_width: int
    frame_height: int
    current_filter: int
    filter_name: str
    face: FaceDetectionResult
    outputs: List[str] = Field(..., description="Tags retrievable from /studio/outputs/{tag}")
    processing_time_ms: int


class FilterResponse(BaseModel):
    """Result of selecting a face filter."""

    filter_id: int
    filter_name: str
    face: Optional[FaceDetectionResult] = Field(
        default=None, description="Re-detected face, when a capture exists"
    )


class ThresholdsResponse(BaseModel):
    """Thresholds after an update."""

    thresholds: Thresholds
    reprocessed: bool = Field(..., description="Whether the current capture was reprocessed")


class CameraResponse(BaseModel):
    """Camera state after a toggle."""

    camera_active: bool
    tracking_active: bool


class OutputsResponse(BaseModel):
    """Available output tags."""

    outputs: List[str]


class StudioStatusResponse(BaseModel):
    """Snapshot of the studio state."""

    camera_active: bool
    is_capturing: bool
    has_capture: bool
    current_filter: int
    filter_name: str
    thresholds: Thresholds
    history_length: int
    last_known_box: Optional[BoundingBox] = None
    last_detection_method: Optional[str] = None
    external_detector: bool
    capture_source: Optional[str] = None
    tracking_active: bool = False


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to accept captures")
    heuristic_detector: str = Field(..., description="Heuristic detector status")
    external_detector: str = Field(..., description="External ML detector status")
    capture_source: str = Field(..., description="Capture source status")
