"""
Pixel transform engine.

Every transform reads an input raster and returns a newly allocated raster
of the same dimensions. Allocation failures surface as RasterAllocationError
so callers can fall back to the untouched input.
"""

import logging

import cv2
import numpy as np

from app.services.colorspace import rgb_to_hsv_array, rgb_to_lab_array
from app.services.raster import (
    OPAQUE,
    allocate_like,
    round_half_up,
    to_uint8,
)

logger = logging.getLogger(__name__)

# Luminance weights (ITU-R BT.601)
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

BRIGHTNESS_FACTOR = 1.2
DEFAULT_PIXELATE_BLOCK = 12
DEFAULT_BLUR_RADIUS = 8

CHANNEL_NAMES = ("red", "green", "blue")


class PixelTransformEngine:
    """
    Applies full-raster pixel transforms.

    Stateless; a single instance is shared by the processing pipeline and
    the face filter applicator.
    """

    def __init__(self, brightness_factor: float = BRIGHTNESS_FACTOR):
        self.brightness_factor = brightness_factor

    def grayscale_with_brightness(self, raster: np.ndarray) -> np.ndarray:
        """
        Convert to grayscale and raise brightness in a single pass.

        Luminance is scaled by the brightness factor and clamped to 255 so
        bright pixels saturate instead of overflowing.
        """
        output = allocate_like(raster)
        gray = raster[..., :3].astype(np.float64) @ LUMA_WEIGHTS
        brightened = to_uint8(np.minimum(255.0, gray * self.brightness_factor))
        output[..., 0] = brightened
        output[..., 1] = brightened
        output[..., 2] = brightened
        return output

    def extract_channel(self, raster: np.ndarray, channel_index: int) -> np.ndarray:
        """Keep one RGB channel and zero the other two."""
        if channel_index not in (0, 1, 2):
            raise ValueError(f"Invalid channel index: {channel_index}")
        output = allocate_like(raster)
        output[..., channel_index] = raster[..., channel_index]
        return output

    def extract_color_channels(self, raster: np.ndarray) -> dict[str, np.ndarray]:
        """Split a raster into red, green and blue channel rasters."""
        return {
            name: self.extract_channel(raster, index)
            for index, name in enumerate(CHANNEL_NAMES)
        }

    def threshold_channel(self, raster: np.ndarray, threshold: int, channel_index: int) -> np.ndarray:
        """Binarize one channel: 255 where value > threshold, else 0."""
        if channel_index not in (0, 1, 2):
            raise ValueError(f"Invalid channel index: {channel_index}")
        output = allocate_like(raster)
        binary = np.where(raster[..., channel_index] > threshold, 255, 0).astype(np.uint8)
        output[..., 0] = binary
        output[..., 1] = binary
        output[..., 2] = binary
        return output

    def to_hsv(self, raster: np.ndarray) -> np.ndarray:
        """Pack HSV into the color channels, hue rescaled from degrees to [0, 255]."""
        output = allocate_like(raster)
        hsv = rgb_to_hsv_array(raster[..., :3])
        hsv[..., 0] = hsv[..., 0] / 360 * 255
        output[..., :3] = to_uint8(hsv)
        return output

    def to_lab(self, raster: np.ndarray) -> np.ndarray:
        """Pack rescaled Lab into the color channels."""
        output = allocate_like(raster)
        output[..., :3] = to_uint8(rgb_to_lab_array(raster[..., :3]))
        return output

    def threshold_colorspace(self, raster: np.ndarray, threshold: int) -> np.ndarray:
        """Binarize the mean of the three stored channels against threshold."""
        output = allocate_like(raster)
        intensity = raster[..., :3].astype(np.float64).sum(axis=-1) / 3
        binary = np.where(intensity > threshold, 255, 0).astype(np.uint8)
        output[..., 0] = binary
        output[..., 1] = binary
        output[..., 2] = binary
        return output

    def pixelate(self, raster: np.ndarray, block_size: int = DEFAULT_PIXELATE_BLOCK) -> np.ndarray:
        """
        Replace each block_size x block_size tile with its mean intensity.

        The raster is expected to be grayscale already: only channel 0 is
        averaged. Edge tiles are clipped to the raster and average only
        their in-bounds pixels. Means are rounded half up.
        """
        if block_size < 1:
            raise ValueError(f"Block size must be positive, got {block_size}")

        output = allocate_like(raster)
        height, width = raster.shape[:2]
        intensity = raster[..., 0].astype(np.int64)

        for y in range(0, height, block_size):
            for x in range(0, width, block_size):
                tile = intensity[y:y + block_size, x:x + block_size]
                average = round_half_up(tile.sum() / tile.size)
                output[y:y + block_size, x:x + block_size, :3] = average

        output[..., 3] = OPAQUE
        return output

    def blur(self, raster: np.ndarray, radius: int = DEFAULT_BLUR_RADIUS) -> np.ndarray:
        """
        Gaussian blur with the given radius.

        The kernel spans 2 * radius + 1 pixels so a larger radius averages
        over a wider neighbourhood. Radius 0 returns an unblurred copy.
        """
        if radius < 0:
            raise ValueError(f"Blur radius must be non-negative, got {radius}")

        output = allocate_like(raster)
        if radius == 0:
            output[...] = raster
            return output

        ksize = 2 * radius + 1
        output[..., :3] = cv2.GaussianBlur(
            np.ascontiguousarray(raster[..., :3]),
            (ksize, ksize),
            0,
        )
        return output

    def flip_horizontal(self, raster: np.ndarray) -> np.ndarray:
        """Mirror columns, undoing webcam mirroring."""
        output = allocate_like(raster)
        output[...] = raster[:, ::-1]
        return output
