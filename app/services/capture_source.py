"""
Frame capture sources.

Every source yields RGBA rasters at the configured frame size.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from app.services.pixel_transforms import PixelTransformEngine
from app.services.raster import ensure_raster

logger = logging.getLogger(__name__)


def fit_to_frame(raster: np.ndarray, frame_width: int, frame_height: int) -> np.ndarray:
    """Resize a raster to the frame size if needed."""
    height, width = raster.shape[:2]
    if (width, height) == (frame_width, frame_height):
        return raster
    return cv2.resize(raster, (frame_width, frame_height), interpolation=cv2.INTER_AREA)


def decode_image_bytes(data: bytes) -> np.ndarray:
    """
    Decode an encoded image (PNG, JPEG, ...) into an RGBA raster.

    Raises:
        CaptureError: If the bytes are not a decodable image
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None:
        raise CaptureError("Could not decode image data")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)


class CaptureSource:
    """Base class for frame sources."""

    name = "source"

    def is_ready(self) -> bool:
        return False

    def read(self) -> np.ndarray:
        raise NotImplementedError

    def release(self) -> None:
        return None


class StaticCaptureSource(CaptureSource):
    """Always returns a copy of the same raster."""

    name = "static"

    def __init__(self, raster: np.ndarray):
        self._raster = ensure_raster(raster)

    def is_ready(self) -> bool:
        return True

    def read(self) -> np.ndarray:
        return self._raster.copy()


class CameraCaptureSource(CaptureSource):
    """
    Local camera via OpenCV VideoCapture.

    Frames are resized to the working size, converted BGR -> RGBA and
    flipped horizontally so the stored frame is not mirrored.
    """

    name = "camera"

    def __init__(
        self,
        camera_index: int = 0,
        frame_width: int = 160,
        frame_height: int = 120,
        mirror: bool = True,
        engine: Optional[PixelTransformEngine] = None,
    ):
        self.camera_index = camera_index
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.mirror = mirror
        self.engine = engine or PixelTransformEngine()
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> bool:
        """Open the camera. Returns False if the device is unavailable."""
        if self._capture is not None and self._capture.isOpened():
            return True

        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            logger.error(f"Could not open camera {self.camera_index}")
            capture.release()
            return False

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        self._capture = capture
        logger.info(f"Camera {self.camera_index} opened")
        return True

    def is_ready(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    def read(self) -> np.ndarray:
        if not self.is_ready():
            raise CaptureError(f"Camera {self.camera_index} is not open")

        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CaptureError(f"Failed to read frame from camera {self.camera_index}")

        frame = fit_to_frame(frame, self.frame_width, self.frame_height)
        raster = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)
        if self.mirror:
            raster = self.engine.flip_horizontal(raster)
        return raster

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"Camera {self.camera_index} released")


class CaptureError(Exception):
    """Raised when no frame can be obtained from a capture source."""
    pass
