"""
Pytest configuration and fixtures.
"""

import asyncio
import os
import sys

import numpy as np
import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import Settings
from app.services.face_filter import FaceFilterApplicator
from app.services.face_region_detector import FaceRegionDetector
from app.services.ml_detectors import ExternalFaceDetector
from app.services.pixel_transforms import PixelTransformEngine

FRAME_WIDTH = 160
FRAME_HEIGHT = 120

# Matches the "light" skin band: r>95, g>40, b>20, spread and r-g > 15, r>g, r>b
SKIN_COLOR = (200, 150, 100)


def make_raster(color, width=FRAME_WIDTH, height=FRAME_HEIGHT):
    """Uniform opaque RGBA raster."""
    raster = np.zeros((height, width, 4), dtype=np.uint8)
    raster[..., 0] = color[0]
    raster[..., 1] = color[1]
    raster[..., 2] = color[2]
    raster[..., 3] = 255
    return raster


def paint(raster, x, y, width, height, color=SKIN_COLOR):
    """Fill a rectangle of the raster in place and return it."""
    raster[y:y + height, x:x + width, 0] = color[0]
    raster[y:y + height, x:x + width, 1] = color[1]
    raster[y:y + height, x:x + width, 2] = color[2]
    return raster


class FakeFaceDetector(ExternalFaceDetector):
    """External detector returning canned results."""

    name = "fake"

    def __init__(self, results=None, error=None, delay=0.0, ready=True):
        self.results = results if results is not None else []
        self.error = error
        self.delay = delay
        self.ready = ready
        self.calls = 0

    def is_ready(self) -> bool:
        return self.ready

    async def detect(self, raster):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results


@pytest.fixture
def black_frame():
    """160x120 black frame (no skin anywhere)."""
    return make_raster((0, 0, 0))


@pytest.fixture
def gray_frame():
    """160x120 uniform mid-gray frame."""
    return make_raster((128, 128, 128))


@pytest.fixture
def skin_frame():
    """Black frame with a 50x50 skin patch at (47, 37)."""
    return paint(make_raster((0, 0, 0)), 47, 37, 50, 50)


@pytest.fixture
def engine():
    return PixelTransformEngine()


@pytest.fixture
def detector():
    return FaceRegionDetector(frame_width=FRAME_WIDTH, frame_height=FRAME_HEIGHT)


@pytest.fixture
def applicator(engine):
    return FaceFilterApplicator(engine=engine)


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)
