"""
Raster helpers shared by the transform engine, detector and compositor.

A raster is a (height, width, 4) uint8 RGBA numpy array. Transforms never
write into their input; they allocate a fresh output through
`allocate_raster`.
"""

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

RGBA_CHANNELS = 4
OPAQUE = 255


def allocate_raster(height: int, width: int) -> np.ndarray:
    """
    Allocate an opaque black RGBA raster.

    Raises:
        RasterAllocationError: If the backing buffer cannot be created
    """
    if height <= 0 or width <= 0:
        raise RasterAllocationError(f"Cannot allocate {width}x{height} raster")
    try:
        output = np.zeros((height, width, RGBA_CHANNELS), dtype=np.uint8)
    except (MemoryError, ValueError) as e:
        raise RasterAllocationError(f"Failed to allocate {width}x{height} raster: {e}") from e
    output[..., 3] = OPAQUE
    return output


def allocate_like(raster: np.ndarray) -> np.ndarray:
    """Allocate an opaque raster with the same dimensions as `raster`."""
    height, width = raster.shape[:2]
    return allocate_raster(height, width)


def ensure_raster(raster: np.ndarray) -> np.ndarray:
    """
    Validate raster shape and dtype.

    Accepts RGB input and widens it to RGBA so capture sources and uploads
    can hand over whatever the decoder produced.
    """
    if not isinstance(raster, np.ndarray) or raster.ndim != 3:
        raise ValueError("Raster must be a (height, width, channels) array")
    if raster.shape[2] == 3:
        alpha = np.full(raster.shape[:2] + (1,), OPAQUE, dtype=np.uint8)
        raster = np.concatenate([raster.astype(np.uint8), alpha], axis=2)
    elif raster.shape[2] != RGBA_CHANNELS:
        raise ValueError(f"Unsupported channel count: {raster.shape[2]}")
    return raster.astype(np.uint8, copy=False)


def to_uint8(values: np.ndarray) -> np.ndarray:
    """Quantize float channel values the way a canvas byte store does (clamp, round half to even)."""
    return np.rint(np.clip(values, 0, 255)).astype(np.uint8)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up."""
    return int(math.floor(value + 0.5))


def rgb_channels(raster: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a raster into signed int32 R, G, B planes (safe for differences)."""
    rgb = raster[..., :3].astype(np.int32)
    return rgb[..., 0], rgb[..., 1], rgb[..., 2]


class RasterAllocationError(Exception):
    """Raised when an output raster cannot be allocated."""
    pass


class CompositeError(Exception):
    """Raised when a raster-to-raster copy fails."""
    pass
