"""
Optional external ML face detectors.

A detector exposes `async detect(raster) -> list[dict]`. Each result carries
its bounding box in one of two layouts:

    {"box": {"xMin": .., "yMin": .., "width": .., "height": ..}}
    {"boundingBox": {"topLeft": {"x": .., "y": ..}, "width": .., "height": ..}}

`parse_detection_result` turns either layout into a tagged union
(XMinForm | TopLeftForm). The raw dict shape never travels past the
DetectionOrchestrator.

Backends:
- MediaPipe FaceDetection (local, loaded lazily)
- HTTP detector service (remote, via httpx)
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import httpx
import numpy as np

from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XMinForm:
    """Result layout {box: {xMin, yMin, width, height}}."""

    x_min: float
    y_min: float
    width: float
    height: float


@dataclass(frozen=True)
class TopLeftForm:
    """Result layout {boundingBox: {topLeft: {x, y}, width, height}}."""

    x: float
    y: float
    width: float
    height: float


DetectionShape = Union[XMinForm, TopLeftForm]


def parse_detection_result(result: dict) -> Optional[DetectionShape]:
    """
    Identify the bounding box layout of one detector result.

    Returns None for results with neither layout or with malformed fields.
    """
    if not isinstance(result, dict):
        return None

    try:
        box = result.get("box")
        if box:
            return XMinForm(
                x_min=float(box["xMin"]),
                y_min=float(box["yMin"]),
                width=float(box["width"]),
                height=float(box["height"]),
            )

        bounding_box = result.get("boundingBox")
        if bounding_box:
            top_left = bounding_box["topLeft"]
            return TopLeftForm(
                x=float(top_left["x"]),
                y=float(top_left["y"]),
                width=float(bounding_box["width"]),
                height=float(bounding_box["height"]),
            )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed detector result {result}: {e}")

    return None


class ExternalFaceDetector:
    """Base class for pluggable ML face detectors."""

    name = "external"

    def is_ready(self) -> bool:
        return False

    async def detect(self, raster: np.ndarray) -> list[dict]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MediaPipeFaceDetector(ExternalFaceDetector):
    """
    MediaPipe FaceDetection (short-range model).

    MediaPipe is optional: if it cannot be imported or initialized the
    detector reports not ready and the orchestrator uses heuristics.
    """

    name = "mediapipe"

    def __init__(self, confidence_threshold: float = 0.5):
        self.confidence_threshold = confidence_threshold
        self._detector = None
        self._load_detector()

    def _load_detector(self) -> None:
        try:
            import mediapipe as mp
            self._detector = mp.solutions.face_detection.FaceDetection(
                model_selection=0,  # 0 for short-range (webcam distance)
                min_detection_confidence=self.confidence_threshold,
            )
            logger.info("MediaPipe FaceDetection loaded")
        except ImportError:
            logger.warning("MediaPipe not available, face detection will use heuristics only")
        except Exception as e:
            logger.warning(f"MediaPipe FaceDetection failed to initialize: {e}")

    def is_ready(self) -> bool:
        return self._detector is not None

    async def detect(self, raster: np.ndarray) -> list[dict]:
        if self._detector is None:
            raise ExternalDetectorUnavailable("MediaPipe detector not loaded")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._detect_sync, raster)

    def _detect_sync(self, raster: np.ndarray) -> list[dict]:
        height, width = raster.shape[:2]
        # Rasters are RGBA; MediaPipe expects contiguous RGB
        rgb_image = np.ascontiguousarray(raster[..., :3])
        results = self._detector.process(rgb_image)

        detections = []
        if results.detections:
            for detection in results.detections:
                bbox = detection.location_data.relative_bounding_box
                detections.append({
                    "box": {
                        "xMin": bbox.xmin * width,
                        "yMin": bbox.ymin * height,
                        "width": bbox.width * width,
                        "height": bbox.height * height,
                    },
                    "score": float(detection.score[0]),
                })
        return detections

    async def close(self) -> None:
        if self._detector is not None:
            try:
                self._detector.close()
            except Exception as e:
                logger.debug(f"MediaPipe detector close failed: {e}")
            self._detector = None


class HttpFaceDetector(ExternalFaceDetector):
    """
    Remote face detector reached over HTTP.

    POSTs {"image": <base64 JPEG>} and accepts either a JSON list of results
    or {"detections": [...]}.
    """

    name = "http"

    def __init__(self, url: Optional[str], timeout_seconds: float = 5.0):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

        if not self.url:
            logger.warning("FACE_DETECTOR_URL not configured - HTTP detector disabled")
        else:
            logger.info(f"HTTP face detector configured at {self.url}")

    def is_ready(self) -> bool:
        return bool(self.url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _encode_raster(self, raster: np.ndarray) -> str:
        bgr = cv2.cvtColor(np.ascontiguousarray(raster), cv2.COLOR_RGBA2BGR)
        ok, buffer = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, 90])
        if not ok:
            raise ExternalDetectorUnavailable("Failed to encode frame for HTTP detector")
        return base64.b64encode(buffer).decode("utf-8")

    async def detect(self, raster: np.ndarray) -> list[dict]:
        if not self.url:
            raise ExternalDetectorUnavailable("HTTP detector URL not configured")

        client = await self._get_client()
        response = await client.post(self.url, json={"image": self._encode_raster(raster)})
        response.raise_for_status()

        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("detections", [])
        if not isinstance(payload, list):
            raise ExternalDetectorUnavailable(f"Unexpected detector payload: {type(payload).__name__}")
        return payload


def build_external_detector(settings: Settings) -> Optional[ExternalFaceDetector]:
    """Create the configured ML detector, or None when disabled."""
    backend = settings.face_detector_backend

    if backend == "mediapipe":
        return MediaPipeFaceDetector(confidence_threshold=settings.ml_confidence_threshold)
    if backend == "http":
        return HttpFaceDetector(
            url=settings.face_detector_url,
            timeout_seconds=settings.ml_detector_timeout_seconds,
        )

    logger.info("No external face detector configured, using heuristics only")
    return None


class ExternalDetectorUnavailable(Exception):
    """Raised when the ML detector is missing, failing or returned nothing usable."""
    pass
