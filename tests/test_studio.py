"""
Tests for the studio driver, capture sources and the live tracking scheduler.
"""

import asyncio
import threading

import cv2
import numpy as np
import pytest

from app.services.capture_source import (
    CaptureError,
    CameraCaptureSource,
    StaticCaptureSource,
    decode_image_bytes,
)
from app.services.face_filter import FaceFilter
from app.services.face_tracking_scheduler import FaceTrackingScheduler
from app.services.studio import CaptureInProgressError, build_studio
from conftest import FakeFaceDetector, make_raster

TOPLEFT_RESULT = {"boundingBox": {"topLeft": {"x": 30, "y": 20}, "width": 60, "height": 70}}


@pytest.fixture
def studio(settings, gray_frame):
    return build_studio(settings, capture_source=StaticCaptureSource(gray_frame))


class TestCaptureSources:
    """Tests for frame sources."""

    def test_static_source_returns_copies(self, gray_frame):
        source = StaticCaptureSource(gray_frame)
        frame = source.read()
        frame[...] = 0
        assert source.read()[0, 0, 0] == 128
        assert source.is_ready()

    def test_static_source_widens_rgb(self):
        source = StaticCaptureSource(np.zeros((4, 4, 3), dtype=np.uint8))
        assert source.read().shape == (4, 4, 4)

    def test_camera_read_converts_and_mirrors(self, mocker):
        bgr = np.zeros((120, 160, 3), dtype=np.uint8)
        bgr[:, 0] = (255, 0, 0)  # blue in the leftmost column
        capture = mocker.MagicMock()
        capture.isOpened.return_value = True
        capture.read.return_value = (True, bgr)
        mocker.patch("app.services.capture_source.cv2.VideoCapture", return_value=capture)

        source = CameraCaptureSource()
        assert source.open()
        raster = source.read()

        assert raster.shape == (120, 160, 4)
        assert raster[0, 159].tolist() == [0, 0, 255, 255]
        assert raster[0, 0].tolist() == [0, 0, 0, 255]

    def test_camera_read_failure(self, mocker):
        capture = mocker.MagicMock()
        capture.isOpened.return_value = True
        capture.read.return_value = (False, None)
        mocker.patch("app.services.capture_source.cv2.VideoCapture", return_value=capture)

        source = CameraCaptureSource()
        source.open()
        with pytest.raises(CaptureError):
            source.read()

    def test_camera_unavailable(self, mocker):
        capture = mocker.MagicMock()
        capture.isOpened.return_value = False
        mocker.patch("app.services.capture_source.cv2.VideoCapture", return_value=capture)

        source = CameraCaptureSource()
        assert not source.open()
        assert not source.is_ready()
        with pytest.raises(CaptureError):
            source.read()

    def test_decode_png(self):
        bgr = np.zeros((2, 3, 3), dtype=np.uint8)
        bgr[..., 2] = 255
        ok, buffer = cv2.imencode(".png", bgr)
        assert ok

        raster = decode_image_bytes(buffer.tobytes())
        assert raster.shape == (2, 3, 4)
        assert raster[0, 0].tolist() == [255, 0, 0, 255]

    def test_decode_garbage(self):
        with pytest.raises(CaptureError):
            decode_image_bytes(b"not an image")


class TestCapture:
    """Tests for capture and its in-flight guard."""

    def test_capture_from_source(self, studio):
        result = asyncio.run(studio.capture())
        assert studio.has_capture
        assert not studio.is_capturing
        assert studio.output_tags()[0] == "original"
        assert studio.get_output("grayscale")[0, 0, 0] == 154
        assert result.detection is not None

    def test_supplied_frame_is_resized(self, studio):
        asyncio.run(studio.capture(make_raster((10, 20, 30), 320, 240)))
        assert studio.context.captured_frame.shape == (120, 160, 4)

    def test_no_source(self, settings):
        studio = build_studio(settings)
        with pytest.raises(CaptureError):
            asyncio.run(studio.capture())
        assert not studio.is_capturing

    def test_rejected_while_capturing(self, studio):
        studio.context.is_capturing = True
        with pytest.raises(CaptureInProgressError):
            asyncio.run(studio.capture())

    def test_concurrent_capture_is_rejected(self, settings, gray_frame):
        """A second capture while the first awaits the ML detector is refused."""
        studio = build_studio(
            settings,
            external_detector=FakeFaceDetector([TOPLEFT_RESULT], delay=0.05),
            capture_source=StaticCaptureSource(gray_frame),
        )

        async def run_both():
            first = asyncio.create_task(studio.capture())
            await asyncio.sleep(0.01)
            with pytest.raises(CaptureInProgressError):
                await studio.capture()
            return await first

        result = asyncio.run(run_both())
        assert result.detection.box.as_tuple() == (30, 20, 60, 70)
        assert not studio.is_capturing

    def test_read_frame_runs_in_executor(self, studio, mocker):
        threads = []
        read = studio.capture_source.read

        def tracked_read():
            threads.append(threading.get_ident())
            return read()

        mocker.patch.object(studio.capture_source, "read", side_effect=tracked_read)
        frame = asyncio.run(studio.read_frame())

        assert frame.shape == (120, 160, 4)
        assert threads and threads[0] != threading.get_ident()

    def test_flag_cleared_after_failure(self, studio, mocker):
        mocker.patch.object(studio.pipeline, "process_images", side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            asyncio.run(studio.capture())
        assert not studio.is_capturing

    def test_unknown_output(self, studio):
        with pytest.raises(KeyError):
            studio.get_output("grayscale")


class TestControls:
    """Tests for filter, thresholds and camera controls."""

    def test_set_filter_reruns_face_stage(self, studio, mocker):
        asyncio.run(studio.capture())
        spy = mocker.spy(studio.pipeline, "process_face_detection")

        outcome = asyncio.run(studio.set_filter(FaceFilter.PIXELATE))

        assert studio.context.current_filter == FaceFilter.PIXELATE
        assert outcome is not None
        spy.assert_called_once()

    def test_capture_rejected_during_filter_rerun(self, settings, gray_frame):
        """A filter re-run awaiting the ML detector holds the capture guard."""
        studio = build_studio(
            settings,
            external_detector=FakeFaceDetector([TOPLEFT_RESULT], delay=0.05),
            capture_source=StaticCaptureSource(gray_frame),
        )

        async def run():
            await studio.capture()
            rerun = asyncio.create_task(studio.set_filter(FaceFilter.GRAYSCALE))
            await asyncio.sleep(0.01)
            assert studio.is_capturing
            with pytest.raises(CaptureInProgressError):
                await studio.capture(make_raster((0, 0, 0)))
            return await rerun

        outcome = asyncio.run(run())

        assert outcome is not None
        assert not studio.is_capturing
        assert studio.get_output("original")[5, 5].tolist() == [128, 128, 128, 255]
        assert studio.get_output("face_detection")[5, 5].tolist() == [128, 128, 128, 255]

    def test_set_filter_skipped_while_capturing(self, studio):
        asyncio.run(studio.capture())
        studio.context.is_capturing = True
        assert asyncio.run(studio.set_filter(FaceFilter.BLUR)) is None
        assert studio.context.current_filter == FaceFilter.BLUR

    def test_set_filter_without_capture(self, studio):
        assert asyncio.run(studio.set_filter(2)) is None
        assert studio.context.current_filter == FaceFilter.BLUR

    def test_set_filter_rejects_unknown(self, studio):
        with pytest.raises(ValueError):
            asyncio.run(studio.set_filter(7))

    def test_adjust_threshold_reprocesses(self, studio):
        asyncio.run(studio.capture())
        assert (studio.get_output("red_threshold")[..., 0] == 0).all()

        value = asyncio.run(studio.adjust_threshold("red", -10))

        assert value == 118
        assert (studio.get_output("red_threshold")[..., 0] == 255).all()

    def test_set_and_reset_thresholds(self, studio):
        asyncio.run(studio.set_threshold("blue", 5))
        assert studio.context.thresholds.blue == 5
        thresholds = asyncio.run(studio.reset_thresholds())
        assert thresholds.blue == 128

    def test_toggle_camera(self, studio):
        studio.orchestrator.face_detector.last_known_box = object()
        assert studio.toggle_camera() is True
        assert studio.orchestrator.face_detector.last_known_box is None
        assert studio.toggle_camera() is False
        assert not studio.camera_active

    def test_status(self, studio):
        asyncio.run(studio.capture())
        status = studio.status()
        assert status["has_capture"]
        assert status["filter_name"] == "Original"
        assert status["thresholds"]["lab"] == 128
        assert status["capture_source"] == "static"
        assert status["last_detection_method"] == "region_scan"
        assert status["external_detector"] is False


class TestFaceTrackingScheduler:
    """Tests for the periodic tracking guard."""

    def make(self, settings, gray_frame, external=None):
        studio = build_studio(
            settings,
            external_detector=external,
            capture_source=StaticCaptureSource(gray_frame),
        )
        return studio, FaceTrackingScheduler(studio, interval_seconds=0.01)

    def test_skips_when_camera_inactive(self, settings, gray_frame):
        external = FakeFaceDetector([TOPLEFT_RESULT])
        studio, scheduler = self.make(settings, gray_frame, external)
        assert asyncio.run(scheduler.tick()) is None
        assert external.calls == 0

    def test_skips_while_capturing(self, settings, gray_frame):
        external = FakeFaceDetector([TOPLEFT_RESULT])
        studio, scheduler = self.make(settings, gray_frame, external)
        studio.toggle_camera()
        studio.context.is_capturing = True
        assert not scheduler.should_track()
        assert asyncio.run(scheduler.tick()) is None
        assert external.calls == 0

    def test_skips_without_ml_detector(self, settings, gray_frame):
        studio, scheduler = self.make(settings, gray_frame)
        studio.toggle_camera()
        assert not scheduler.should_track()

    def test_tracks_when_guard_passes(self, settings, gray_frame):
        external = FakeFaceDetector([TOPLEFT_RESULT])
        studio, scheduler = self.make(settings, gray_frame, external)
        studio.toggle_camera()

        box = asyncio.run(scheduler.tick())

        assert box.as_tuple() == (30, 20, 60, 70)
        assert studio.orchestrator.face_detector.last_known_box == box
        assert scheduler.tracked == 1

    def test_result_dropped_when_capture_starts_mid_call(self, settings, gray_frame):
        external = FakeFaceDetector([TOPLEFT_RESULT], delay=0.05)
        studio, scheduler = self.make(settings, gray_frame, external)
        studio.toggle_camera()

        async def run():
            tick = asyncio.create_task(scheduler.tick())
            await asyncio.sleep(0.01)
            studio.context.is_capturing = True
            try:
                return await tick
            finally:
                studio.context.is_capturing = False

        assert asyncio.run(run()) is None
        assert external.calls == 1
        assert studio.orchestrator.face_detector.last_known_box is None
        assert scheduler.tracked == 0

    def test_start_is_idempotent_and_stop_cancels(self, settings, gray_frame):
        external = FakeFaceDetector([TOPLEFT_RESULT])
        studio, scheduler = self.make(settings, gray_frame, external)
        studio.toggle_camera()

        async def run():
            scheduler.start()
            task = scheduler._task
            scheduler.start()
            assert scheduler._task is task
            await asyncio.sleep(0.05)
            await scheduler.stop()
            calls = external.calls
            await asyncio.sleep(0.03)
            return calls

        calls_at_stop = asyncio.run(run())
        assert calls_at_stop >= 1
        assert external.calls == calls_at_stop
        assert not scheduler.is_running

    def test_tick_errors_do_not_stop_loop(self, settings, gray_frame, mocker):
        external = FakeFaceDetector([TOPLEFT_RESULT])
        studio, scheduler = self.make(settings, gray_frame, external)
        studio.toggle_camera()
        mocker.patch.object(studio.capture_source, "read", side_effect=RuntimeError("camera gone"))

        async def run():
            scheduler.start()
            await asyncio.sleep(0.05)
            running = scheduler.is_running
            await scheduler.stop()
            return running

        assert asyncio.run(run())
        assert scheduler.ticks >= 2
