"""
Detection orchestrator.

Decides, per captured frame, whether the external ML detector's box is used
or the heuristic chain runs, then hands the chosen box to the face filter
applicator.

Detection Priority:
1. External ML detector (optional; first valid result wins)
2. Skin tone scan
3. Motion tracking around the last accepted box
4. Multi-scale region scan
5. Center fallback (never fails)
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from app.services.face_filter import FaceFilterApplicator
from app.services.face_region_detector import BoundingBox, FaceRegionDetector
from app.services.ml_detectors import (
    DetectionShape,
    ExternalDetectorUnavailable,
    ExternalFaceDetector,
    TopLeftForm,
    XMinForm,
    parse_detection_result,
)
from app.services.raster import round_half_up

logger = logging.getLogger(__name__)


class DetectionMethod(str, Enum):
    """How the face box for a frame was obtained."""

    ML = "ml"
    SKIN_TONE = "skin_tone"
    MOTION = "motion"
    REGION_SCAN = "region_scan"
    CENTER_FALLBACK = "center_fallback"


# Heuristics run in this order; the first strategy returning a box wins and
# the remaining ones never run. The center fallback follows the last entry.
HEURISTIC_STRATEGY_ORDER: tuple[DetectionMethod, ...] = (
    DetectionMethod.SKIN_TONE,
    DetectionMethod.MOTION,
    DetectionMethod.REGION_SCAN,
)


@dataclass(frozen=True)
class FaceDetectionOutcome:
    """The box chosen for a frame and the strategy that produced it."""

    box: BoundingBox
    method: DetectionMethod

    @property
    def is_fallback(self) -> bool:
        return self.method == DetectionMethod.CENTER_FALLBACK


class DetectionOrchestrator:
    """Runs ML-first, heuristics-second face detection and applies the face filter."""

    def __init__(
        self,
        face_detector: FaceRegionDetector,
        applicator: FaceFilterApplicator,
        external_detector: Optional[ExternalFaceDetector] = None,
        ml_timeout_seconds: Optional[float] = 5.0,
    ):
        self.face_detector = face_detector
        self.applicator = applicator
        self.external_detector = external_detector
        self.ml_timeout_seconds = ml_timeout_seconds

    @property
    def has_external_detector(self) -> bool:
        return self.external_detector is not None and self.external_detector.is_ready()

    def _strategy(self, method: DetectionMethod) -> Callable[[np.ndarray], Optional[BoundingBox]]:
        strategies = {
            DetectionMethod.SKIN_TONE: self.face_detector.detect_by_skin_tone,
            DetectionMethod.MOTION: self.face_detector.track_by_motion,
            DetectionMethod.REGION_SCAN: self.face_detector.scan_for_face_regions,
        }
        return strategies[method]

    # ------------------------------------------------------------------
    # ML results
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_result(shape: DetectionShape, frame_width: int, frame_height: int) -> Optional[BoundingBox]:
        """
        Convert a parsed ML result into a canonical, frame-clamped box.

        Returns None if the clamped box has no area.
        """
        if isinstance(shape, XMinForm):
            raw_x, raw_y = shape.x_min, shape.y_min
        elif isinstance(shape, TopLeftForm):
            raw_x, raw_y = shape.x, shape.y
        else:
            return None

        x = max(0, round_half_up(raw_x))
        y = max(0, round_half_up(raw_y))
        width = min(round_half_up(shape.width), frame_width)
        height = min(round_half_up(shape.height), frame_height)

        if x + width > frame_width:
            width = frame_width - x
        if y + height > frame_height:
            height = frame_height - y

        if width <= 0 or height <= 0:
            return None
        return BoundingBox(x=x, y=y, width=width, height=height)

    async def _call_external_detector(self, raster: np.ndarray) -> list[dict]:
        if not self.has_external_detector:
            raise ExternalDetectorUnavailable("No external detector configured")

        call = self.external_detector.detect(raster)
        if self.ml_timeout_seconds:
            return await asyncio.wait_for(call, timeout=self.ml_timeout_seconds)
        return await call

    async def detect_with_ml(self, raster: np.ndarray) -> Optional[BoundingBox]:
        """
        Ask the external detector for a face box.

        Unavailability, errors, timeouts and empty or invalid results all
        return None.
        """
        try:
            results = await self._call_external_detector(raster)
        except ExternalDetectorUnavailable as e:
            logger.debug(f"External detector unavailable: {e}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"External detector timed out after {self.ml_timeout_seconds}s")
            return None
        except Exception as e:
            logger.warning(f"External face detection failed: {e}")
            return None

        if not results:
            logger.debug("External detector returned no faces")
            return None

        height, width = raster.shape[:2]
        shape = parse_detection_result(results[0])
        if shape is None:
            logger.warning("External detector result has no recognizable bounding box")
            return None

        box = self.normalize_result(shape, width, height)
        if box is None:
            logger.warning(f"External detector box {shape} is empty after clamping")
        return box

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def run_heuristics(self, raster: np.ndarray) -> FaceDetectionOutcome:
        """Try each heuristic strategy in order; fall back to the center box."""
        for method in HEURISTIC_STRATEGY_ORDER:
            try:
                box = self._strategy(method)(raster)
            except Exception as e:
                logger.warning(f"Heuristic strategy {method.value} failed: {e}")
                box = None

            if box is not None:
                logger.info(f"Face found by {method.value}: {box}")
                return FaceDetectionOutcome(box=box, method=method)

        height, width = raster.shape[:2]
        box = self.face_detector.get_default_center_face(width, height)
        logger.info(f"All detection strategies failed, using center fallback {box}")
        return FaceDetectionOutcome(box=box, method=DetectionMethod.CENTER_FALLBACK)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def detect_face(self, raster: np.ndarray) -> FaceDetectionOutcome:
        """Choose the face box for a captured frame and record it in history."""
        box = await self.detect_with_ml(raster)
        if box is not None:
            outcome = FaceDetectionOutcome(box=box, method=DetectionMethod.ML)
            logger.info(f"Face detected by external detector: {box}")
        else:
            outcome = self.run_heuristics(raster)

        self.face_detector.update_face_history(outcome.box)
        return outcome

    async def process_frame(
        self,
        target_frame: np.ndarray,
        source_frame: np.ndarray,
        filter_id: int,
    ) -> tuple[np.ndarray, FaceDetectionOutcome]:
        """
        Detect the face in source_frame and apply the filter.

        Returns:
            (annotated frame, detection outcome)
        """
        outcome = await self.detect_face(source_frame)
        annotated = self.applicator.apply_face_filter(
            target_frame,
            source_frame,
            outcome.box,
            filter_id,
            is_fallback=outcome.is_fallback,
        )
        return annotated, outcome

    async def track_live_frame(
        self,
        raster: np.ndarray,
        can_commit: Optional[Callable[[], bool]] = None,
    ) -> Optional[BoundingBox]:
        """
        Background tracking tick: ML only, updates history on success.

        Heuristics never run here; they are reserved for captured frames.

        Args:
            raster: Live camera frame
            can_commit: Checked after the ML call returns. If it returns False
                the box is dropped and history is left alone.
        """
        box = await self.detect_with_ml(raster)
        if box is None:
            return None
        if can_commit is not None and not can_commit():
            logger.debug("Dropping live tracking result, history is busy")
            return None
        self.face_detector.update_face_history(box)
        return box
