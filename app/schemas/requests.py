"""
Request schemas for the studio API.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

ThresholdChannel = Literal["red", "green", "blue", "hsv", "lab"]


class CaptureRequest(BaseModel):
    """Request body for POST /studio/capture."""

    image_base64: Optional[str] = Field(
        default=None,
        description="Optional base64-encoded image (PNG/JPEG). When omitted the camera frame is used.",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "image_base64": None,
            }
        }


class FilterRequest(BaseModel):
    """Select the face filter."""

    filter_id: int = Field(
        ...,
        ge=0,
        le=4,
        description="0=Original, 1=Grayscale, 2=Blur, 3=HSV Color Space, 4=Pixelate",
    )


class ThresholdAdjustRequest(BaseModel):
    """Shift one threshold by a delta (result clamped to 0-255)."""

    channel: ThresholdChannel = Field(..., description="Threshold to adjust")
    delta: int = Field(..., ge=-255, le=255, description="Amount to add to the threshold")


class ThresholdSetRequest(BaseModel):
    """Set one threshold to an absolute value."""

    channel: ThresholdChannel = Field(..., description="Threshold to set")
    value: int = Field(..., ge=0, le=255, description="New threshold value")
