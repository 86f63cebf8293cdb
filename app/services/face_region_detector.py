"""
Heuristic face region detector.

Strategies (tried in this order by the DetectionOrchestrator):
1. Skin tone scan over five fixed candidate regions
2. Motion tracking around the last accepted face box
3. Multi-scale sliding-window region scoring
4. Center fallback (always succeeds)

The detector keeps a short history of accepted boxes; the motion tracker
uses the most recent one to seed its local search.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from app.config import DEFAULT_HEURISTICS, HeuristicConfig, SkinToneBand
from app.services.raster import rgb_channels, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned face rectangle in integer pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def overlaps_frame(self, frame_width: int, frame_height: int) -> bool:
        """True if at least one pixel of the box lies inside the frame."""
        return (
            not self.is_empty
            and self.x < frame_width
            and self.y < frame_height
            and self.x + self.width > 0
            and self.y + self.height > 0
        )

    def clamped(self, frame_width: int, frame_height: int) -> "BoundingBox":
        """
        Clamp to frame bounds.

        The origin is pulled inside the frame and the size trimmed so that
        x + width <= frame_width and y + height <= frame_height. A box lying
        fully outside the frame clamps to an empty box.
        """
        x = max(0, min(self.x, frame_width - 1))
        y = max(0, min(self.y, frame_height - 1))
        if not self.overlaps_frame(frame_width, frame_height):
            return BoundingBox(x=x, y=y, width=0, height=0)

        width = min(self.width, frame_width - x)
        height = min(self.height, frame_height - y)
        return BoundingBox(x=x, y=y, width=width, height=height)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


def _band_matches(band: SkinToneBand, r, g, b):
    """Evaluate one skin band. Works on ints and on int32 numpy planes."""
    result = (r > band.min_red) & (g > band.min_green) & (b > band.min_blue)

    if band.min_channel_spread is not None:
        spread = np.maximum(np.maximum(r, g), b) - np.minimum(np.minimum(r, g), b)
        result = result & (spread > band.min_channel_spread)
    if band.min_red_green_gap is not None:
        result = result & (np.abs(r - g) > band.min_red_green_gap)
    if band.min_red_blue_gap is not None:
        result = result & ((r - b) > band.min_red_blue_gap)
    if band.min_green_blue_gap is not None:
        result = result & ((g - b) > band.min_green_blue_gap)
    if band.red_over_green:
        result = result & (r > g)
    if band.red_over_blue:
        result = result & (r > b)
    if band.green_over_blue:
        result = result & (g > b)
    if band.green_at_least_blue:
        result = result & (g >= b)

    return result


class FaceRegionDetector:
    """
    Stateful heuristic face detector.

    Holds the last accepted face box and a bounded history of accepted boxes.
    All strategies return None when they find nothing usable, except the
    center fallback which always returns a box.
    """

    def __init__(
        self,
        frame_width: int = 160,
        frame_height: int = 120,
        min_face_size: int = 30,
        max_face_size: int = 100,
        history_length: int = 5,
        heuristics: HeuristicConfig = DEFAULT_HEURISTICS,
    ):
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.min_face_size = min_face_size
        self.max_face_size = max_face_size
        self.heuristics = heuristics

        self.last_known_box: Optional[BoundingBox] = None
        self.history: deque[BoundingBox] = deque(maxlen=history_length)

    def reset(self) -> None:
        """Forget tracking state (e.g. when the camera restarts)."""
        self.last_known_box = None
        self.history.clear()

    # ------------------------------------------------------------------
    # Skin tone classification
    # ------------------------------------------------------------------

    def is_skin_tone(self, r: int, g: int, b: int) -> bool:
        """True if any skin band accepts the pixel."""
        r, g, b = int(r), int(g), int(b)
        return any(
            bool(_band_matches(band, r, g, b))
            for band in self.heuristics.skin_tone_bands
        )

    def skin_tone_mask(self, raster: np.ndarray) -> np.ndarray:
        """Boolean (height, width) mask of skin-tone pixels."""
        r, g, b = rgb_channels(raster)
        mask = np.zeros(r.shape, dtype=bool)
        for band in self.heuristics.skin_tone_bands:
            mask |= _band_matches(band, r, g, b)
        return mask

    def is_valid_face_size(self, box: Optional[BoundingBox]) -> bool:
        """Both dimensions within [min_face_size, max_face_size]."""
        return (
            box is not None
            and self.min_face_size <= box.width <= self.max_face_size
            and self.min_face_size <= box.height <= self.max_face_size
        )

    # ------------------------------------------------------------------
    # Strategy 1: skin tone regions
    # ------------------------------------------------------------------

    def candidate_regions(self, frame_width: int, frame_height: int) -> list[BoundingBox]:
        """The fixed skin-scan candidate regions for a frame size."""
        return [
            BoundingBox(
                x=round_half_up(frame_width * fx),
                y=round_half_up(frame_height * fy),
                width=round_half_up(frame_width * fw),
                height=round_half_up(frame_height * fh),
            )
            for fx, fy, fw, fh in self.heuristics.skin_regions
        ]

    def detect_by_skin_tone(self, raster: np.ndarray) -> Optional[BoundingBox]:
        """
        Pick the candidate region with the most skin.

        A region wins only if its skin ratio exceeds the minimum AND it beats
        the current best on both skin pixel count and ratio.
        """
        height, width = raster.shape[:2]
        mask = self.skin_tone_mask(raster)

        best_region = None
        max_skin_pixels = 0
        max_skin_ratio = 0.0

        for index, region in enumerate(self.candidate_regions(width, height)):
            if region.x + region.width > width or region.y + region.height > height:
                continue

            window = mask[region.y:region.y + region.height, region.x:region.x + region.width]
            total_pixels = window.size
            skin_pixels = int(window.sum())
            skin_ratio = skin_pixels / total_pixels if total_pixels > 0 else 0.0
            logger.debug(f"Region {index} skin ratio: {skin_ratio:.3f} ({skin_pixels}/{total_pixels} pixels)")

            if (
                skin_pixels > max_skin_pixels
                and skin_ratio > self.heuristics.min_skin_ratio
                and skin_ratio > max_skin_ratio
            ):
                max_skin_pixels = skin_pixels
                max_skin_ratio = skin_ratio
                best_region = region

        if best_region is not None and self.is_valid_face_size(best_region):
            logger.debug(f"Skin tone detection found {best_region} (ratio {max_skin_ratio:.3f})")
            return best_region

        logger.debug("No significant skin tone regions found")
        return None

    # ------------------------------------------------------------------
    # Strategy 2: motion tracking
    # ------------------------------------------------------------------

    def calculate_skin_density(
        self,
        raster: np.ndarray,
        x: int,
        y: int,
        width: int,
        height: int,
        mask: Optional[np.ndarray] = None,
    ) -> float:
        """Fraction of skin pixels inside the (frame-clipped) window."""
        if mask is None:
            mask = self.skin_tone_mask(raster)
        window = mask[max(0, y):y + height, max(0, x):x + width]
        if window.size == 0:
            return 0.0
        return float(window.sum()) / window.size

    def track_by_motion(self, raster: np.ndarray) -> Optional[BoundingBox]:
        """
        Search around the last known box for the densest skin placement.

        Only runs when a previous face box exists. Candidate placements keep
        the previous box size.
        """
        last = self.last_known_box
        if last is None:
            logger.debug("No previous face position for motion tracking")
            return None

        height, width = raster.shape[:2]
        mask = self.skin_tone_mask(raster)
        radius = self.heuristics.motion_search_radius
        step = self.heuristics.motion_search_step

        max_density = 0.0
        best_position = None

        for offset_y in range(-radius, radius + 1, step):
            for offset_x in range(-radius, radius + 1, step):
                test_x = max(0, last.x + offset_x)
                test_y = max(0, last.y + offset_y)

                if test_x + last.width > width or test_y + last.height > height:
                    continue

                density = self.calculate_skin_density(
                    raster, test_x, test_y, last.width, last.height, mask=mask,
                )
                if density > max_density and density > self.heuristics.min_motion_density:
                    max_density = density
                    best_position = BoundingBox(test_x, test_y, last.width, last.height)

        if best_position is not None and self.is_valid_face_size(best_position):
            logger.debug(f"Motion tracking found {best_position} (density {max_density:.3f})")
            return best_position

        logger.debug("Motion tracking failed")
        return None

    # ------------------------------------------------------------------
    # Strategy 3: multi-scale region scan
    # ------------------------------------------------------------------

    def calculate_color_variation(self, raster: np.ndarray, x: int, y: int, width: int, height: int) -> float:
        """Mean per-channel standard deviation of a sampled window, normalized to [0, 1]."""
        step = max(1, round_half_up(width / 10))
        samples = raster[y:y + height:step, x:x + width:step, :3].reshape(-1, 3).astype(np.float64)
        if samples.size == 0:
            return 0.0

        avg_variation = float(samples.std(axis=0).mean())
        return min(1.0, avg_variation / self.heuristics.variation_normalizer)

    def score_face_region(
        self,
        raster: np.ndarray,
        x: int,
        y: int,
        width: int,
        height: int,
        mask: Optional[np.ndarray] = None,
    ) -> float:
        """Weighted face-likeness score of a window."""
        h = self.heuristics
        weights = h.scoring_weights
        frame_height = raster.shape[0]

        skin_score = self.calculate_skin_density(raster, x, y, width, height, mask=mask)

        # Prefer windows centered in the upper third of the frame
        preferred_y = frame_height * h.preferred_center_y_ratio
        position_score = 1.0 - abs((y + height / 2) - preferred_y) / preferred_y
        position_score = max(0.0, min(1.0, position_score))

        variation_score = self.calculate_color_variation(raster, x, y, width, height)

        size_score = 1.0 - abs((width + height) / 2 - h.preferred_face_size) / h.preferred_face_size
        size_score = max(0.0, min(1.0, size_score))

        aspect_ratio = width / height
        aspect_score = 1.0 - abs(aspect_ratio - h.preferred_aspect_ratio) / h.preferred_aspect_ratio
        aspect_score = max(0.0, min(1.0, aspect_score))

        return (
            weights.skin_density * skin_score
            + weights.vertical_position * position_score
            + weights.color_variation * variation_score
            + weights.size * size_score
            + weights.aspect_ratio * aspect_score
        )

    def scan_for_face_regions(self, raster: np.ndarray) -> Optional[BoundingBox]:
        """Slide windows of several scales over the frame and keep the best-scoring one."""
        h = self.heuristics
        height, width = raster.shape[:2]
        mask = self.skin_tone_mask(raster)

        best_position = None
        max_score = 0.0

        for scale in h.scan_scales:
            scan_width = round_half_up(max(h.min_scan_size, min(h.max_scan_size, width * scale)))
            scan_height = round_half_up(max(h.min_scan_size, min(h.max_scan_size, height * scale)))
            step = max(h.min_scan_step, round_half_up(scan_width * h.scan_step_ratio))

            for y in range(0, height - scan_height + 1, step):
                for x in range(0, width - scan_width + 1, step):
                    score = self.score_face_region(raster, x, y, scan_width, scan_height, mask=mask)
                    if score > max_score:
                        max_score = score
                        best_position = BoundingBox(x, y, scan_width, scan_height)

        if best_position is not None and max_score > h.min_region_score:
            logger.debug(f"Region scanning found {best_position} (score {max_score:.3f})")
            return best_position

        logger.debug("Region scanning found no suitable region")
        return None

    # ------------------------------------------------------------------
    # Strategy 4: center fallback
    # ------------------------------------------------------------------

    def get_default_center_face(
        self,
        frame_width: Optional[int] = None,
        frame_height: Optional[int] = None,
    ) -> BoundingBox:
        """Central box covering half of each frame dimension."""
        frame_width = frame_width or self.frame_width
        frame_height = frame_height or self.frame_height
        ratio = self.heuristics.center_fallback_ratio

        width = round_half_up(frame_width * ratio)
        height = round_half_up(frame_height * ratio)
        x = max(0, round_half_up((frame_width - width) / 2))
        y = max(0, round_half_up((frame_height - height) / 2))

        return BoundingBox(
            x=x,
            y=y,
            width=min(width, frame_width - x),
            height=min(height, frame_height - y),
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def update_face_history(self, box: Optional[BoundingBox]) -> bool:
        """
        Record an accepted face box.

        Boxes failing the size check are ignored. Returns True if recorded.
        """
        if not self.is_valid_face_size(box):
            return False

        self.history.append(box)
        self.last_known_box = box
        return True
