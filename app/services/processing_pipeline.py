"""
Image processing pipeline that runs every transform over a captured frame.
"""

import logging
import time
from dataclasses import dataclass, field, fields
from typing import Callable, Optional

import numpy as np

from app.services.detection_orchestrator import DetectionOrchestrator, FaceDetectionOutcome
from app.services.face_filter import FaceFilter
from app.services.pixel_transforms import PixelTransformEngine
from app.services.raster import RasterAllocationError

logger = logging.getLogger(__name__)

THRESHOLD_CHANNELS = ("red", "green", "blue", "hsv", "lab")

# Output tags in display order
OUTPUT_TAGS = (
    "original",
    "grayscale",
    "red_channel",
    "green_channel",
    "blue_channel",
    "red_threshold",
    "green_threshold",
    "blue_threshold",
    "original_repeat",
    "hsv_conversion",
    "lab_conversion",
    "hsv_threshold",
    "lab_threshold",
    "face_detection",
)


@dataclass
class ThresholdConfig:
    """Threshold per channel / colorspace, each in [0, 255]."""

    red: int = 128
    green: int = 128
    blue: int = 128
    hsv: int = 128
    lab: int = 128

    @classmethod
    def uniform(cls, value: int) -> "ThresholdConfig":
        return cls(**{channel: value for channel in THRESHOLD_CHANNELS})

    def get(self, channel: str) -> int:
        self._check_channel(channel)
        return getattr(self, channel)

    def set(self, channel: str, value: int) -> int:
        """Set a threshold. Raises ValueError outside [0, 255]."""
        self._check_channel(channel)
        if not 0 <= value <= 255:
            raise ValueError(f"Threshold for {channel} must be in [0, 255], got {value}")
        setattr(self, channel, int(value))
        return value

    def adjust(self, channel: str, delta: int) -> int:
        """Shift a threshold by delta, clamped to [0, 255]. Returns the new value."""
        self._check_channel(channel)
        value = max(0, min(255, getattr(self, channel) + delta))
        setattr(self, channel, value)
        return value

    def reset(self, value: int = 128) -> None:
        for channel in THRESHOLD_CHANNELS:
            setattr(self, channel, value)

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @staticmethod
    def _check_channel(channel: str) -> None:
        if channel not in THRESHOLD_CHANNELS:
            raise ValueError(f"Unknown threshold channel: {channel}. Valid channels: {list(THRESHOLD_CHANNELS)}")


@dataclass
class PipelineContext:
    """
    Driver-owned state handed to the pipeline.

    The pipeline only reads it; the driver (FilterStudio) is the sole writer.
    """

    current_filter: FaceFilter = FaceFilter.ORIGINAL
    camera_active: bool = False
    is_capturing: bool = False
    captured_frame: Optional[np.ndarray] = None
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)


@dataclass
class ProcessingResult:
    """All tagged outputs of one pipeline run."""

    outputs: dict[str, np.ndarray]
    detection: FaceDetectionOutcome
    processing_time_ms: int = 0


class ImageProcessingPipeline:
    """
    Orchestrates the full processing of a captured frame:
    1. Grayscale with brightness
    2. RGB channel extraction
    3. Per-channel thresholds
    4. HSV and Lab conversions
    5. Colorspace thresholds
    6. Face detection and face filter
    """

    def __init__(
        self,
        engine: PixelTransformEngine,
        orchestrator: DetectionOrchestrator,
    ):
        self.engine = engine
        self.orchestrator = orchestrator

    def _safe_transform(self, name: str, transform: Callable[..., np.ndarray], raster: np.ndarray, *args) -> np.ndarray:
        """Run a transform; substitute the input raster if the output cannot be allocated."""
        try:
            return transform(raster, *args)
        except RasterAllocationError as e:
            logger.warning(f"{name} could not allocate output, using input raster: {e}")
            return raster

    async def process_images(self, context: PipelineContext) -> ProcessingResult:
        """
        Run every transform and the face pipeline over the captured frame.

        Raises:
            ValueError: If no frame has been captured
        """
        frame = context.captured_frame
        if frame is None:
            raise ValueError("No captured image to process")

        start_time = time.time()
        thresholds = context.thresholds
        engine = self.engine
        outputs: dict[str, np.ndarray] = {"original": frame}

        # Step 1: Grayscale with 20% brightness increase
        outputs["grayscale"] = self._safe_transform("grayscale", engine.grayscale_with_brightness, frame)

        # Step 2: RGB channels
        for index, name in enumerate(("red", "green", "blue")):
            outputs[f"{name}_channel"] = self._safe_transform(
                f"{name} channel", engine.extract_channel, frame, index,
            )

        # Step 3: Per-channel thresholds
        for index, name in enumerate(("red", "green", "blue")):
            outputs[f"{name}_threshold"] = self._safe_transform(
                f"{name} threshold", engine.threshold_channel, frame, thresholds.get(name), index,
            )

        outputs["original_repeat"] = frame

        # Step 4: Colorspace conversions
        hsv_image = self._safe_transform("HSV conversion", engine.to_hsv, frame)
        lab_image = self._safe_transform("Lab conversion", engine.to_lab, frame)
        outputs["hsv_conversion"] = hsv_image
        outputs["lab_conversion"] = lab_image

        # Step 5: Colorspace thresholds
        outputs["hsv_threshold"] = self._safe_transform(
            "HSV threshold", engine.threshold_colorspace, hsv_image, thresholds.hsv,
        )
        outputs["lab_threshold"] = self._safe_transform(
            "Lab threshold", engine.threshold_colorspace, lab_image, thresholds.lab,
        )

        # Step 6: Face detection and filter
        annotated, outcome = await self.orchestrator.process_frame(frame, frame, context.current_filter)
        outputs["face_detection"] = annotated

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Image processing complete: face {outcome.box.as_tuple()} via {outcome.method.value}, "
            f"filter {context.current_filter.display_name}, {processing_time_ms}ms"
        )

        return ProcessingResult(
            outputs=outputs,
            detection=outcome,
            processing_time_ms=processing_time_ms,
        )

    async def process_face_detection(self, context: PipelineContext) -> tuple[np.ndarray, FaceDetectionOutcome]:
        """Re-run only the face stage (used when the filter changes)."""
        frame = context.captured_frame
        if frame is None:
            raise ValueError("No captured image for face detection")
        return await self.orchestrator.process_frame(frame, frame, context.current_filter)
