"""
Unit tests for the pixel transform engine and raster helpers.
"""

import numpy as np
import pytest

from app.services.raster import (
    RasterAllocationError,
    allocate_raster,
    ensure_raster,
    round_half_up,
    to_uint8,
)
from conftest import make_raster


class TestRasterHelpers:
    """Tests for raster allocation and quantization."""

    def test_allocate_is_opaque_black(self):
        raster = allocate_raster(4, 6)
        assert raster.shape == (4, 6, 4)
        assert raster.dtype == np.uint8
        assert (raster[..., :3] == 0).all()
        assert (raster[..., 3] == 255).all()

    def test_allocate_rejects_empty(self):
        with pytest.raises(RasterAllocationError):
            allocate_raster(0, 10)

    def test_ensure_raster_widens_rgb(self):
        rgb = np.full((3, 3, 3), 7, dtype=np.uint8)
        raster = ensure_raster(rgb)
        assert raster.shape == (3, 3, 4)
        assert (raster[..., 3] == 255).all()

    def test_ensure_raster_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            ensure_raster(np.zeros((3, 3), dtype=np.uint8))

    def test_rounding_conventions(self):
        """Stores round half to even; means round half up."""
        assert to_uint8(np.array([0.5, 1.5, 2.5, 300.0, -4.0])).tolist() == [0, 2, 2, 255, 0]
        assert round_half_up(63.75) == 64
        assert round_half_up(2.5) == 3


class TestGrayscale:
    """Tests for grayscale with brightness."""

    def test_mid_gray(self, engine):
        """128 gray brightened by 1.2 stores as 154."""
        output = engine.grayscale_with_brightness(make_raster((128, 128, 128), 4, 4))
        assert (output[..., :3] == 154).all()
        assert (output[..., 3] == 255).all()

    def test_clamps_at_255(self, engine):
        """White stays at 255 rather than overflowing."""
        output = engine.grayscale_with_brightness(make_raster((255, 255, 255), 4, 4))
        assert (output[..., :3] == 255).all()

    def test_output_never_below_luminance(self, engine):
        colors = [(200, 150, 100), (10, 20, 30), (0, 255, 0)]
        for color in colors:
            output = engine.grayscale_with_brightness(make_raster(color, 2, 2))
            luminance = 0.299 * color[0] + 0.587 * color[1] + 0.114 * color[2]
            assert output[0, 0, 0] >= int(luminance)

    def test_input_untouched(self, engine):
        raster = make_raster((200, 150, 100), 4, 4)
        before = raster.copy()
        engine.grayscale_with_brightness(raster)
        np.testing.assert_array_equal(raster, before)


class TestChannels:
    """Tests for channel extraction and thresholds."""

    def test_extract_channel_keeps_only_its_channel(self, engine):
        raster = make_raster((10, 20, 30), 3, 3)
        channels = engine.extract_color_channels(raster)

        assert channels["red"][0, 0].tolist() == [10, 0, 0, 255]
        assert channels["green"][0, 0].tolist() == [0, 20, 0, 255]
        assert channels["blue"][0, 0].tolist() == [0, 0, 30, 255]

    def test_extract_channel_rejects_bad_index(self, engine):
        with pytest.raises(ValueError):
            engine.extract_channel(make_raster((1, 2, 3), 2, 2), 3)

    def test_threshold_is_strict(self, engine):
        """Values equal to the threshold map to 0."""
        raster = make_raster((128, 129, 0), 2, 2)
        assert (engine.threshold_channel(raster, 128, 0)[..., :3] == 0).all()
        assert (engine.threshold_channel(raster, 128, 1)[..., :3] == 255).all()

    def test_colorspace_threshold_uses_channel_mean(self, engine):
        raster = make_raster((90, 120, 150), 2, 2)  # mean 120
        assert (engine.threshold_colorspace(raster, 119)[..., :3] == 255).all()
        assert (engine.threshold_colorspace(raster, 120)[..., :3] == 0).all()


class TestColorspaceTransforms:
    """Tests for the HSV and Lab raster transforms."""

    def test_hsv_packs_scaled_hue(self, engine):
        """Pure blue (240 degrees) stores hue 170."""
        output = engine.to_hsv(make_raster((0, 0, 255), 2, 2))
        assert output[0, 0].tolist() == [170, 255, 255, 255]

    def test_hsv_gray_has_no_hue(self, engine):
        output = engine.to_hsv(make_raster((128, 128, 128), 2, 2))
        assert output[0, 0].tolist() == [0, 0, 128, 255]

    def test_lab_black(self, engine):
        output = engine.to_lab(make_raster((0, 0, 0), 2, 2))
        assert output[0, 0, 0] == 0
        assert output[0, 0, 3] == 255


class TestPixelate:
    """Tests for block pixelation."""

    def test_uniform_input_is_unchanged(self, engine):
        """Pixelating a constant raster yields the same raster for any block size."""
        raster = make_raster((77, 77, 77), 25, 19)
        for block_size in (1, 3, 12, 40):
            np.testing.assert_array_equal(engine.pixelate(raster, block_size), raster)

    def test_two_by_two_average_rounds_half_up(self, engine):
        """[0, 0, 0, 255] averages to 63.75 and stores 64."""
        raster = make_raster((0, 0, 0), 2, 2)
        raster[1, 1, :3] = 255
        output = engine.pixelate(raster, block_size=2)
        assert (output[..., :3] == 64).all()

    def test_edge_tiles_average_in_bounds_pixels(self, engine):
        """A 3-wide raster with block 2 has a 1-wide edge tile averaged on its own."""
        raster = make_raster((0, 0, 0), 3, 2)
        raster[:, 2, :3] = 200
        output = engine.pixelate(raster, block_size=2)
        assert (output[:, :2, :3] == 0).all()
        assert (output[:, 2, :3] == 200).all()

    def test_rejects_non_positive_block(self, engine):
        with pytest.raises(ValueError):
            engine.pixelate(make_raster((1, 1, 1), 2, 2), 0)


class TestBlurAndFlip:
    """Tests for blur and horizontal flip."""

    def test_blur_uniform_is_unchanged(self, engine):
        raster = make_raster((90, 60, 30), 20, 20)
        np.testing.assert_array_equal(engine.blur(raster, 8), raster)

    def test_blur_smooths_edges(self, engine):
        raster = make_raster((0, 0, 0), 20, 20)
        raster[:, 10:, :3] = 255
        output = engine.blur(raster, 3)
        assert 0 < output[10, 10, 0] < 255
        assert 0 < output[10, 9, 0] < 255

    def test_blur_radius_zero_copies(self, engine):
        raster = make_raster((1, 2, 3), 4, 4)
        output = engine.blur(raster, 0)
        np.testing.assert_array_equal(output, raster)
        assert output is not raster

    def test_flip_horizontal(self, engine):
        raster = make_raster((0, 0, 0), 3, 1)
        raster[0, 0, :3] = 255
        output = engine.flip_horizontal(raster)
        assert output[0, 2, :3].tolist() == [255, 255, 255]
        assert output[0, 0, :3].tolist() == [0, 0, 0]
