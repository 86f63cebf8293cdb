"""
Filter studio: the driver that owns capture state and the latest outputs.

Interactive operations (capture, filter choice, thresholds, camera) all go
through FilterStudio. It is the only writer of the PipelineContext.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from app.config import Settings
from app.services.capture_source import CaptureError, CaptureSource, CameraCaptureSource, fit_to_frame
from app.services.detection_orchestrator import DetectionOrchestrator, FaceDetectionOutcome
from app.services.face_filter import FaceFilter, FaceFilterApplicator
from app.services.face_region_detector import FaceRegionDetector
from app.services.ml_detectors import ExternalFaceDetector
from app.services.pixel_transforms import PixelTransformEngine
from app.services.processing_pipeline import (
    OUTPUT_TAGS,
    ImageProcessingPipeline,
    PipelineContext,
    ProcessingResult,
    ThresholdConfig,
)
from app.services.raster import ensure_raster

logger = logging.getLogger(__name__)


class FilterStudio:
    """Holds the captured frame, the selected filter and the thresholds."""

    def __init__(
        self,
        pipeline: ImageProcessingPipeline,
        capture_source: Optional[CaptureSource] = None,
        frame_width: int = 160,
        frame_height: int = 120,
        default_threshold: int = 128,
    ):
        self.pipeline = pipeline
        self.capture_source = capture_source
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.default_threshold = default_threshold

        self.context = PipelineContext(thresholds=ThresholdConfig.uniform(default_threshold))
        self.last_result: Optional[ProcessingResult] = None
        self._outputs: dict[str, np.ndarray] = {}

    @property
    def orchestrator(self) -> DetectionOrchestrator:
        return self.pipeline.orchestrator

    @property
    def camera_active(self) -> bool:
        return self.context.camera_active

    @property
    def is_capturing(self) -> bool:
        return self.context.is_capturing

    @property
    def has_capture(self) -> bool:
        return self.context.captured_frame is not None

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def read_frame(self) -> np.ndarray:
        """
        Read one frame from the capture source in the default executor.

        Raises:
            CaptureError: If there is no ready source or the read fails
        """
        if self.capture_source is None or not self.capture_source.is_ready():
            raise CaptureError("No capture source available")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.capture_source.read)

    def prepare_frame(self, frame: np.ndarray) -> np.ndarray:
        """Convert a supplied image to an RGBA raster at the frame size."""
        return fit_to_frame(ensure_raster(frame), self.frame_width, self.frame_height)

    async def capture(self, frame: Optional[np.ndarray] = None) -> ProcessingResult:
        """
        Capture a frame and run the full processing pipeline on it.

        Args:
            frame: Optional image to use instead of reading the capture source

        Raises:
            CaptureInProgressError: If a capture is already being processed
            CaptureError: If no frame is supplied and the source cannot provide one
        """
        if self.context.is_capturing:
            raise CaptureInProgressError("A capture is already being processed")

        self.context.is_capturing = True
        try:
            raw = frame if frame is not None else await self.read_frame()
            self.context.captured_frame = self.prepare_frame(raw)
            logger.info(f"Captured {self.frame_width}x{self.frame_height} frame")

            result = await self.pipeline.process_images(self.context)
            self._store(result)
            return result
        finally:
            self.context.is_capturing = False

    def _store(self, result: ProcessingResult) -> None:
        self.last_result = result
        self._outputs = dict(result.outputs)

    async def _reprocess(self) -> Optional[ProcessingResult]:
        """Re-run the pipeline on the current capture, if any."""
        if not self.has_capture:
            return None
        if self.context.is_capturing:
            logger.debug("Capture in flight, skipping reprocess")
            return None

        self.context.is_capturing = True
        try:
            result = await self.pipeline.process_images(self.context)
            self._store(result)
            return result
        finally:
            self.context.is_capturing = False

    # ------------------------------------------------------------------
    # Filter and thresholds
    # ------------------------------------------------------------------

    async def set_filter(self, filter_id: int) -> Optional[FaceDetectionOutcome]:
        """
        Select the face filter and re-run face detection on the current capture.

        Raises:
            ValueError: If filter_id is not a known filter
        """
        selected = FaceFilter(filter_id)
        self.context.current_filter = selected
        logger.info(f"Face filter set to {selected.display_name}")

        if not self.has_capture:
            return None
        if self.context.is_capturing:
            logger.debug("Capture in flight, skipping face re-run")
            return None

        self.context.is_capturing = True
        try:
            annotated, outcome = await self.pipeline.process_face_detection(self.context)
            self._outputs["face_detection"] = annotated
            if self.last_result is not None:
                self.last_result.outputs["face_detection"] = annotated
                self.last_result.detection = outcome
            return outcome
        finally:
            self.context.is_capturing = False

    async def adjust_threshold(self, channel: str, delta: int) -> int:
        """Shift one threshold by delta (clamped to [0, 255]) and reprocess."""
        value = self.context.thresholds.adjust(channel, delta)
        logger.info(f"{channel} threshold adjusted by {delta:+d} to {value}")
        await self._reprocess()
        return value

    async def set_threshold(self, channel: str, value: int) -> int:
        """Set one threshold and reprocess. Raises ValueError outside [0, 255]."""
        self.context.thresholds.set(channel, value)
        logger.info(f"{channel} threshold set to {value}")
        await self._reprocess()
        return value

    async def reset_thresholds(self) -> ThresholdConfig:
        self.context.thresholds.reset(self.default_threshold)
        logger.info(f"Thresholds reset to {self.default_threshold}")
        await self._reprocess()
        return self.context.thresholds

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------

    def toggle_camera(self) -> bool:
        """Start or stop the camera. Returns the new camera state."""
        if self.context.camera_active:
            self.context.camera_active = False
            if self.capture_source is not None:
                self.capture_source.release()
            logger.info("Camera stopped")
            return False

        if isinstance(self.capture_source, CameraCaptureSource) and not self.capture_source.open():
            logger.warning("Camera could not be started")
            return False

        # Tracking history from a previous session no longer describes the scene
        self.orchestrator.face_detector.reset()
        self.context.camera_active = True
        logger.info("Camera started")
        return True

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def output_tags(self) -> list[str]:
        return [tag for tag in OUTPUT_TAGS if tag in self._outputs]

    def get_output(self, tag: str) -> np.ndarray:
        """
        Get one processed output.

        Raises:
            KeyError: If the tag is unknown or nothing has been captured yet
        """
        if tag not in self._outputs:
            raise KeyError(tag)
        return self._outputs[tag]

    def status(self) -> dict:
        face_detector = self.orchestrator.face_detector
        last_box = face_detector.last_known_box
        detection = self.last_result.detection if self.last_result else None
        return {
            "camera_active": self.context.camera_active,
            "is_capturing": self.context.is_capturing,
            "has_capture": self.has_capture,
            "current_filter": int(self.context.current_filter),
            "filter_name": self.context.current_filter.display_name,
            "thresholds": self.context.thresholds.to_dict(),
            "history_length": len(face_detector.history),
            "last_known_box": last_box.to_dict() if last_box else None,
            "last_detection_method": detection.method.value if detection else None,
            "external_detector": self.orchestrator.has_external_detector,
            "capture_source": self.capture_source.name if self.capture_source else None,
        }


def build_studio(
    settings: Settings,
    external_detector: Optional[ExternalFaceDetector] = None,
    capture_source: Optional[CaptureSource] = None,
) -> FilterStudio:
    """Wire the engine, detectors and pipeline into a FilterStudio."""
    engine = PixelTransformEngine(brightness_factor=settings.brightness_factor)
    face_detector = FaceRegionDetector(
        frame_width=settings.frame_width,
        frame_height=settings.frame_height,
        min_face_size=settings.min_face_size,
        max_face_size=settings.max_face_size,
        history_length=settings.history_length,
    )
    applicator = FaceFilterApplicator(
        engine=engine,
        face_blur_radius=settings.face_blur_radius,
        pixelate_block_size=settings.pixelate_block_size,
    )
    orchestrator = DetectionOrchestrator(
        face_detector=face_detector,
        applicator=applicator,
        external_detector=external_detector,
        ml_timeout_seconds=settings.ml_detector_timeout_seconds,
    )
    pipeline = ImageProcessingPipeline(engine=engine, orchestrator=orchestrator)

    return FilterStudio(
        pipeline=pipeline,
        capture_source=capture_source,
        frame_width=settings.frame_width,
        frame_height=settings.frame_height,
        default_threshold=settings.default_threshold,
    )


class CaptureInProgressError(Exception):
    """Raised when a capture is requested while another is being processed."""
    pass
