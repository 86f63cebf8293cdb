"""
Studio API endpoints.

Capture frames, pick the face filter, tune thresholds and fetch the
processed outputs.
"""

import base64
import binascii
import logging
from typing import Optional

import cv2
import numpy as np
from fastapi import APIRouter, HTTPException, Request, Response

from app.schemas.requests import (
    CaptureRequest,
    FilterRequest,
    ThresholdAdjustRequest,
    ThresholdSetRequest,
)
from app.schemas.responses import (
    CameraResponse,
    CaptureResponse,
    FaceDetectionResult,
    FilterResponse,
    OutputsResponse,
    StudioStatusResponse,
    ThresholdsResponse,
)
from app.services.capture_source import CaptureError, decode_image_bytes
from app.services.detection_orchestrator import FaceDetectionOutcome
from app.services.face_tracking_scheduler import FaceTrackingScheduler
from app.services.studio import CaptureInProgressError, FilterStudio

logger = logging.getLogger(__name__)

router = APIRouter()


def get_studio(request: Request) -> FilterStudio:
    """Get the studio from app state."""
    studio = getattr(request.app.state, "studio", None)
    if studio is None:
        raise HTTPException(
            status_code=503,
            detail="Studio not initialized. Service not ready.",
        )
    return studio


def get_scheduler(request: Request) -> Optional[FaceTrackingScheduler]:
    return getattr(request.app.state, "tracking_scheduler", None)


def _face_result(outcome: FaceDetectionOutcome) -> FaceDetectionResult:
    return FaceDetectionResult(
        bbox=outcome.box.to_dict(),
        method=outcome.method.value,
        is_fallback=outcome.is_fallback,
    )


def _decode_upload(image_base64: str) -> np.ndarray:
    try:
        data = base64.b64decode(image_base64, validate=True)
        return decode_image_bytes(data)
    except (binascii.Error, ValueError, CaptureError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid image: {e}")


def _encode_png(raster: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(raster, cv2.COLOR_RGBA2BGRA))
    if not ok:
        raise HTTPException(status_code=500, detail="Failed to encode output image")
    return buffer.tobytes()


@router.post("/capture", response_model=CaptureResponse)
async def capture(request: Request, body: Optional[CaptureRequest] = None):
    """
    Capture a frame and run every transform and the face filter on it.

    Uses the uploaded image when given, otherwise the camera frame.
    """
    studio = get_studio(request)
    frame = _decode_upload(body.image_base64) if body and body.image_base64 else None

    try:
        result = await studio.capture(frame)
    except CaptureInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CaptureError as e:
        raise HTTPException(status_code=503, detail=str(e))

    context = studio.context
    return CaptureResponse(
        status="processed",
        frame_width=studio.frame_width,
        frame_height=studio.frame_height,
        current_filter=int(context.current_filter),
        filter_name=context.current_filter.display_name,
        face=_face_result(result.detection),
        outputs=studio.output_tags(),
        processing_time_ms=result.processing_time_ms,
    )


@router.put("/filter", response_model=FilterResponse)
async def set_filter(request: Request, body: FilterRequest):
    """Select the face filter; re-runs face detection on the current capture."""
    studio = get_studio(request)
    try:
        outcome = await studio.set_filter(body.filter_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    selected = studio.context.current_filter
    return FilterResponse(
        filter_id=int(selected),
        filter_name=selected.display_name,
        face=_face_result(outcome) if outcome else None,
    )


@router.post("/thresholds/adjust", response_model=ThresholdsResponse)
async def adjust_threshold(request: Request, body: ThresholdAdjustRequest):
    """Shift one threshold by a delta."""
    studio = get_studio(request)
    await studio.adjust_threshold(body.channel, body.delta)
    return ThresholdsResponse(
        thresholds=studio.context.thresholds.to_dict(),
        reprocessed=studio.has_capture,
    )


@router.put("/thresholds", response_model=ThresholdsResponse)
async def set_threshold(request: Request, body: ThresholdSetRequest):
    """Set one threshold."""
    studio = get_studio(request)
    await studio.set_threshold(body.channel, body.value)
    return ThresholdsResponse(
        thresholds=studio.context.thresholds.to_dict(),
        reprocessed=studio.has_capture,
    )


@router.post("/thresholds/reset", response_model=ThresholdsResponse)
async def reset_thresholds(request: Request):
    """Reset every threshold to the default."""
    studio = get_studio(request)
    thresholds = await studio.reset_thresholds()
    return ThresholdsResponse(
        thresholds=thresholds.to_dict(),
        reprocessed=studio.has_capture,
    )


@router.post("/camera/toggle", response_model=CameraResponse)
async def toggle_camera(request: Request):
    """Start or stop the camera and the background face tracking."""
    studio = get_studio(request)
    scheduler = get_scheduler(request)

    camera_active = studio.toggle_camera()
    if scheduler is not None:
        if camera_active:
            scheduler.start()
        else:
            await scheduler.stop()

    return CameraResponse(
        camera_active=camera_active,
        tracking_active=scheduler.is_running if scheduler else False,
    )


@router.get("/status", response_model=StudioStatusResponse)
async def studio_status(request: Request):
    """Snapshot of the studio state."""
    studio = get_studio(request)
    scheduler = get_scheduler(request)
    return StudioStatusResponse(
        **studio.status(),
        tracking_active=scheduler.is_running if scheduler else False,
    )


@router.get("/outputs", response_model=OutputsResponse)
async def list_outputs(request: Request):
    """Tags of the outputs of the last capture."""
    studio = get_studio(request)
    return OutputsResponse(outputs=studio.output_tags())


@router.get("/outputs/{tag}")
async def get_output(request: Request, tag: str):
    """One processed output as a PNG image."""
    studio = get_studio(request)
    try:
        raster = studio.get_output(tag)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Output {tag} not found")

    return Response(content=_encode_png(raster), media_type="image/png")
