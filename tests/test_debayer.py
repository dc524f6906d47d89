"""
Test Bayer mosaic reconstruction
"""
from types import SimpleNamespace

import numpy as np
import pytest

from fastfits import debayer
from fastfits.config import DemosaicMode
from fastfits.debayer import BAYER_PATTERNS, cfa_masks, demosaic, green_kernel, red_blue_kernel
from fastfits.errors import ReconstructionError


class TestKernels:
    """Test interpolation kernels"""

    def test_bilinear_kernels(self):
        np.testing.assert_allclose(
            red_blue_kernel(DemosaicMode.BILINEAR),
            [[0.25, 0.5, 0.25], [0.5, 1.0, 0.5], [0.25, 0.5, 0.25]],
        )
        np.testing.assert_allclose(
            green_kernel(DemosaicMode.BILINEAR),
            [[0.0, 0.25, 0.0], [0.25, 1.0, 0.25], [0.0, 0.25, 0.0]],
        )

    @pytest.mark.parametrize("mode", list(DemosaicMode))
    def test_weights_sum_to_one_on_every_phase(self, mode):
        kernel = red_blue_kernel(mode)
        r = kernel.shape[0] // 2
        for dy in (0, 1):
            for dx in (0, 1):
                # Sample sites sit at offsets with the same parity as (dy, dx).
                total = sum(
                    kernel[r + y, r + x]
                    for y in range(-r, r + 1)
                    for x in range(-r, r + 1)
                    if (y - dy) % 2 == 0 and (x - dx) % 2 == 0
                )
                assert total == pytest.approx(1.0)

    def test_cubic_green_kernel(self):
        kernel = green_kernel(DemosaicMode.CUBIC)
        assert kernel.shape == (7, 7)
        assert kernel[3, 4] == pytest.approx(0.31640625)
        assert kernel[4, 5] == pytest.approx(-0.03515625)
        assert kernel[3, 6] == pytest.approx(0.00390625)
        # Same-parity offsets are never green neighbours.
        assert kernel[4, 4] == 0.0
        assert kernel[3, 5] == 0.0
        # Neighbour weights of a missing green site sum to one.
        assert kernel.sum() - kernel[3, 3] == pytest.approx(1.0)


class TestCfaMasks:
    """Test CFA site masks"""

    def test_rggb_layout(self):
        masks = cfa_masks("RGGB", 2, 2)
        assert masks[0].tolist() == [[True, False], [False, False]]
        assert masks[1].tolist() == [[False, True], [True, False]]
        assert masks[2].tolist() == [[False, False], [False, True]]

    @pytest.mark.parametrize("pattern", BAYER_PATTERNS)
    def test_every_site_has_one_colour(self, pattern):
        masks = cfa_masks(pattern, 5, 7)
        assert (masks.sum(axis=0) == 1).all()
        assert masks[1].sum() in (17, 18)

    def test_unknown_pattern(self):
        with pytest.raises(ValueError):
            cfa_masks("RGBG", 2, 2)


class TestDemosaic:
    """Test reconstruction results"""

    @pytest.mark.parametrize("pattern", BAYER_PATTERNS)
    @pytest.mark.parametrize("mode", list(DemosaicMode))
    def test_uniform_colours_reconstructed_exactly(self, rgb_mosaic, pattern, mode):
        mosaic = rgb_mosaic(pattern, height=9, width=12, values=(1000, 2000, 3000))
        rgb = demosaic(mosaic, pattern, mode)
        assert rgb.shape == (3, 9, 12)
        assert rgb.dtype == np.float32
        np.testing.assert_allclose(rgb[0], 1000)
        np.testing.assert_allclose(rgb[1], 2000)
        np.testing.assert_allclose(rgb[2], 3000)

    def test_bilinear_hand_computed(self):
        mosaic = np.zeros((4, 4), dtype=np.uint16)
        # Red sites of RGGB.
        mosaic[0, 0], mosaic[0, 2], mosaic[2, 0], mosaic[2, 2] = 100, 200, 300, 400
        # Green sites around (2, 2).
        mosaic[1, 2], mosaic[3, 2], mosaic[2, 1], mosaic[2, 3] = 10, 20, 30, 40
        rgb = demosaic(mosaic, "RGGB", DemosaicMode.BILINEAR)
        # Red at the blue site (1, 1): mean of the four diagonal reds.
        assert rgb[0, 1, 1] == pytest.approx(250.0)
        # Red at the green site (0, 1): mean of left and right reds.
        assert rgb[0, 0, 1] == pytest.approx(150.0)
        # Green at the red site (2, 2): mean of its four neighbours.
        assert rgb[1, 2, 2] == pytest.approx(25.0)
        # Measured samples are kept.
        assert rgb[0, 2, 2] == 400.0
        assert rgb[1, 1, 2] == 10.0

    @pytest.mark.parametrize("mode", list(DemosaicMode))
    def test_linear_ramp_reproduced_in_interior(self, mode):
        ramp = (1000 + 100 * np.arange(16))[None, :].repeat(12, axis=0).astype(np.uint16)
        rgb = demosaic(ramp, "BGGR", mode)
        for c in range(3):
            np.testing.assert_allclose(rgb[c, 3:-3, 3:-3], ramp[3:-3, 3:-3])

    def test_output_clipped_to_16_bit_range(self):
        mosaic = np.zeros((12, 12), dtype=np.uint16)
        mosaic[:, 6:] = 65535
        rgb = demosaic(mosaic, "RGGB", DemosaicMode.CUBIC)
        assert float(rgb.min()) >= 0.0
        assert float(rgb.max()) <= 65535.0

    def test_mosaic_too_small(self):
        with pytest.raises(ReconstructionError):
            demosaic(np.zeros((1, 8), dtype=np.uint16), "RGGB")

    def test_plane_of_wrong_shape(self, monkeypatch, rgb_mosaic):
        monkeypatch.setattr(
            debayer, "ndimage", SimpleNamespace(convolve=lambda sparse, kernel, mode: sparse[1:])
        )
        with pytest.raises(ReconstructionError):
            demosaic(rgb_mosaic(), "RGGB")

    def test_rejects_colour_input(self):
        with pytest.raises(ValueError):
            demosaic(np.zeros((3, 4, 4), dtype=np.uint16), "RGGB")

    def test_accepts_mode_name(self, rgb_mosaic):
        rgb = demosaic(rgb_mosaic(), "RGGB", "cubic")
        np.testing.assert_allclose(rgb[2], 3000)
