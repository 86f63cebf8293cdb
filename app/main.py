"""
FastAPI application entry point for the Face Filter Studio.

The studio captures small webcam frames and produces:
1. Grayscale, per-channel and thresholded views
2. HSV and Lab conversions with thresholds
3. A face view with the selected filter applied to the detected face
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth import verify_api_key
from app.config import get_settings
from app.routers import health, studio
from app.services.capture_source import CameraCaptureSource
from app.services.face_tracking_scheduler import FaceTrackingScheduler
from app.services.ml_detectors import build_external_detector
from app.services.studio import build_studio

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Wires up the studio on startup and releases the camera and detector on shutdown.
    """
    settings = get_settings()
    logger.info("Starting Face Filter Studio...")
    logger.info(f"Frame size: {settings.frame_width}x{settings.frame_height}")

    external_detector = build_external_detector(settings)

    capture_source = None
    if settings.camera_enabled:
        capture_source = CameraCaptureSource(
            camera_index=settings.camera_index,
            frame_width=settings.frame_width,
            frame_height=settings.frame_height,
        )

    face_studio = build_studio(
        settings,
        external_detector=external_detector,
        capture_source=capture_source,
    )
    tracking_scheduler = FaceTrackingScheduler(
        face_studio,
        interval_seconds=settings.tracking_interval_seconds,
    )

    if capture_source is not None and face_studio.toggle_camera():
        tracking_scheduler.start()

    app.state.studio = face_studio
    app.state.external_detector = external_detector
    app.state.tracking_scheduler = tracking_scheduler

    logger.info("Face Filter Studio ready to accept captures.")

    yield

    logger.info("Shutting down Face Filter Studio...")
    await tracking_scheduler.stop()
    if capture_source is not None:
        capture_source.release()
    if external_detector is not None:
        await external_detector.close()

    app.state.studio = None
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Face Filter Studio",
    description="""
Face Filter Studio - webcam image processing and face filtering.

## Features

### Image processing
- Grayscale with brightness boost
- RGB channel split and per-channel thresholds
- HSV and CIE Lab conversions with thresholds

### Face filter
- Optional ML face detector (MediaPipe or HTTP service)
- Heuristic fallback chain: skin tone, motion tracking, region scan, center
- Filters: Original, Grayscale, Blur, HSV Color Space, Pixelate

## Usage

1. Capture a frame: `POST /studio/capture`
2. Pick a filter: `PUT /studio/filter`
3. Fetch an output: `GET /studio/outputs/{tag}`
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(
    studio.router,
    prefix="/studio",
    tags=["Studio"],
    dependencies=[Depends(verify_api_key)],
)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    settings = get_settings()
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "features": {
            "processing": "Grayscale + RGB channels + HSV/Lab + thresholds",
            "face_filter": f"ML detector ({settings.face_detector_backend}) + heuristic fallback",
        },
        "docs": "/docs",
    }
