"""
Background face tracking while the camera is live.

Every few seconds the ML detector (if any) is run on a fresh camera frame so
that the motion tracker has an up to date box when the next capture happens.
"""

import asyncio
import logging
from typing import Optional

from app.services.face_region_detector import BoundingBox
from app.services.studio import FilterStudio

logger = logging.getLogger(__name__)


class FaceTrackingScheduler:
    """Periodic ML tracking tick driven by an asyncio task."""

    def __init__(self, studio: FilterStudio, interval_seconds: float = 3.0):
        self.studio = studio
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.tracked = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_track(self) -> bool:
        """Tick guard: live camera, no capture in flight, ML detector and source ready."""
        studio = self.studio
        source = studio.capture_source
        return (
            studio.camera_active
            and not studio.is_capturing
            and studio.orchestrator.has_external_detector
            and source is not None
            and source.is_ready()
        )

    async def tick(self) -> Optional[BoundingBox]:
        """Run one tracking step. Returns the tracked box, or None if skipped or not found."""
        self.ticks += 1
        if not self.should_track():
            return None

        frame = await self.studio.read_frame()
        # A capture may start while the ML detector is running
        box = await self.studio.orchestrator.track_live_frame(
            frame, can_commit=lambda: not self.studio.is_capturing,
        )
        if box is not None:
            self.tracked += 1
            logger.debug(f"Live tracking updated face box to {box}")
        return box

    async def _run(self) -> None:
        logger.info(f"Face tracking started (every {self.interval_seconds}s)")
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Face tracking tick failed: {e}")

    def start(self) -> None:
        """Start ticking. Calling start on a running scheduler does nothing."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel further ticks."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Face tracking stopped")
