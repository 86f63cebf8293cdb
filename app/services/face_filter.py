"""
Face filter applicator.

Extracts the detected face region, runs it through the selected filter and
composites it back into the frame, then draws a labeled bounding box.
"""

import logging
from enum import IntEnum
from typing import Optional

import cv2
import numpy as np

from app.services.face_region_detector import BoundingBox
from app.services.pixel_transforms import PixelTransformEngine
from app.services.raster import CompositeError, RasterAllocationError

logger = logging.getLogger(__name__)


class FaceFilter(IntEnum):
    """Filters selectable for the face region."""

    ORIGINAL = 0
    GRAYSCALE = 1
    BLUR = 2
    COLOR_SPACE = 3
    PIXELATE = 4

    @property
    def display_name(self) -> str:
        return FILTER_NAMES[self]


FILTER_NAMES = {
    FaceFilter.ORIGINAL: "Original",
    FaceFilter.GRAYSCALE: "Grayscale",
    FaceFilter.BLUR: "Blur",
    FaceFilter.COLOR_SPACE: "HSV Color Space",
    FaceFilter.PIXELATE: "Pixelate",
}

# Box colors (RGBA): green for real detections, orange for the center fallback
ENHANCED_BOX_COLOR = (0, 255, 0, 255)
FALLBACK_BOX_COLOR = (255, 165, 0, 255)
ENHANCED_LABEL = "Smart Detection"
FALLBACK_LABEL = "Center Fallback"


class FaceFilterApplicator:
    """Applies a face filter to one region of a frame."""

    def __init__(
        self,
        engine: Optional[PixelTransformEngine] = None,
        face_blur_radius: int = 25,
        pixelate_block_size: int = 12,
    ):
        self.engine = engine or PixelTransformEngine()
        self.face_blur_radius = face_blur_radius
        self.pixelate_block_size = pixelate_block_size

    def extract_face_region(self, raster: np.ndarray, box: BoundingBox) -> np.ndarray:
        """
        Copy the box region out of the raster, clamped to the frame.

        Raises:
            InvalidRegionError: If the box is empty or lies fully outside the frame
        """
        if box.is_empty:
            raise InvalidRegionError(f"Face box has non-positive size: {box}")

        height, width = raster.shape[:2]
        if not box.overlaps_frame(width, height):
            raise InvalidRegionError(f"Face box {box} lies outside {width}x{height} frame")

        region = box.clamped(width, height)
        return raster[region.y:region.y + region.height, region.x:region.x + region.width].copy()

    def process_face(self, face: np.ndarray, filter_id: int) -> np.ndarray:
        """
        Run the face sub-raster through the selected filter.

        Never raises: any failure returns the face unmodified.
        """
        try:
            selected = FaceFilter(filter_id)
        except ValueError:
            logger.warning(f"Unknown face filter {filter_id}, leaving face unfiltered")
            return face

        try:
            if selected == FaceFilter.GRAYSCALE:
                return self.engine.grayscale_with_brightness(face)
            if selected == FaceFilter.BLUR:
                return self.engine.blur(face, radius=self.face_blur_radius)
            if selected == FaceFilter.COLOR_SPACE:
                return self.engine.to_hsv(face)
            if selected == FaceFilter.PIXELATE:
                # Pixelation averages channel 0 only, so grayscale first
                grayscale = self.engine.grayscale_with_brightness(face)
                return self.engine.pixelate(grayscale, block_size=self.pixelate_block_size)
            return face
        except RasterAllocationError as e:
            logger.warning(f"Face filter {selected.display_name} could not allocate output: {e}")
            return face
        except Exception as e:
            logger.error(f"Error processing face filter {selected.display_name}: {e}", exc_info=True)
            return face

    def apply_face_filter(
        self,
        target_frame: np.ndarray,
        source_frame: np.ndarray,
        box: BoundingBox,
        filter_id: int,
        is_fallback: bool = False,
    ) -> np.ndarray:
        """
        Filter the face region of source_frame and composite it onto a copy of target_frame.

        Args:
            target_frame: Frame to draw onto (not modified)
            source_frame: Frame the face region is read from
            box: Face bounding box
            filter_id: FaceFilter value
            is_fallback: True when the box came from the center fallback

        Returns:
            New annotated frame
        """
        frame = target_frame.copy()
        logger.debug(f"Applying face filter {filter_id} to face at {box}")

        try:
            face = self.extract_face_region(source_frame, box)
        except InvalidRegionError as e:
            logger.warning(f"Failed to extract face region: {e}")
        else:
            processed = self.process_face(face, filter_id)
            height, width = frame.shape[:2]
            region = box.clamped(width, height)
            copy_width = min(processed.shape[1], width - region.x)
            copy_height = min(processed.shape[0], height - region.y)

            if copy_width > 0 and copy_height > 0:
                try:
                    self._copy_region(frame, processed, region, copy_width, copy_height)
                except CompositeError as e:
                    logger.warning(f"Error copying processed face, using pixel copy: {e}")
                    self._fallback_pixel_copy(frame, processed, region, copy_width, copy_height)

        self._draw_bounding_box(frame, box, is_fallback)
        return frame

    def _copy_region(
        self,
        frame: np.ndarray,
        processed: np.ndarray,
        region: BoundingBox,
        copy_width: int,
        copy_height: int,
    ) -> None:
        """Block copy of the processed face into the frame."""
        try:
            frame[region.y:region.y + copy_height, region.x:region.x + copy_width] = (
                processed[:copy_height, :copy_width]
            )
        except (ValueError, TypeError) as e:
            raise CompositeError(str(e)) from e

    def _fallback_pixel_copy(
        self,
        frame: np.ndarray,
        processed: np.ndarray,
        region: BoundingBox,
        copy_width: int,
        copy_height: int,
    ) -> None:
        """Per-pixel copy with explicit bounds checks on both rasters."""
        frame_height, frame_width = frame.shape[:2]
        src_height, src_width = processed.shape[:2]
        channels = min(frame.shape[2], processed.shape[2]) if processed.ndim == 3 else 0

        try:
            for y in range(copy_height):
                for x in range(copy_width):
                    dest_x = region.x + x
                    dest_y = region.y + y
                    if x >= src_width or y >= src_height:
                        continue
                    if dest_x >= frame_width or dest_y >= frame_height:
                        continue
                    for c in range(channels):
                        frame[dest_y, dest_x, c] = processed[y, x, c]
        except Exception as e:
            logger.error(f"Error in fallback pixel copy: {e}")

    def _draw_bounding_box(self, frame: np.ndarray, box: BoundingBox, is_fallback: bool) -> None:
        """Outline the face and label how it was found. Visualization only."""
        try:
            color = FALLBACK_BOX_COLOR if is_fallback else ENHANCED_BOX_COLOR
            label = FALLBACK_LABEL if is_fallback else ENHANCED_LABEL

            height, width = frame.shape[:2]
            region = box.clamped(width, height)
            if region.is_empty:
                return

            cv2.rectangle(
                frame,
                (region.x, region.y),
                (region.x + region.width - 1, region.y + region.height - 1),
                color,
                2,
            )
            label_y = max(10, region.y - 5)
            cv2.putText(
                frame,
                label,
                (region.x, label_y),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.25,
                color,
                1,
                cv2.LINE_AA,
            )
        except Exception as e:
            logger.error(f"Error drawing face bounding box: {e}")


class InvalidRegionError(Exception):
    """Raised when a face box is empty or lies outside the frame."""
    pass
