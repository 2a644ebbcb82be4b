import numpy as np
import pytest

from dyeing import InvalidDimensions
from sampling import BLEED_MAX_STEPS, bleed, cover_fit, cover_rect


class TestCoverRect:
    def test_wide_source_crops_sides(self):
        assert cover_rect(200, 100, 100, 100) == pytest.approx((50.0, 0.0, 100.0, 100.0))

    def test_tall_source_crops_top_and_bottom(self):
        assert cover_rect(100, 200, 100, 50) == pytest.approx((0.0, 75.0, 100.0, 50.0))

    @pytest.mark.parametrize("iw,ih,w,h", [(640, 480, 1280, 720), (37, 91, 20, 20), (10, 10, 3, 7)])
    def test_keeps_destination_aspect_inside_source(self, iw, ih, w, h):
        sx, sy, sw, sh = cover_rect(iw, ih, w, h)
        assert sw / sh == pytest.approx(w / h)
        assert sx >= -1e-9 and sy >= -1e-9
        assert sx + sw <= iw + 1e-9 and sy + sh <= ih + 1e-9
        assert sx == pytest.approx(iw - sx - sw)
        assert sy == pytest.approx(ih - sy - sh)

    def test_rejects_empty_sizes(self):
        with pytest.raises(InvalidDimensions):
            cover_rect(0, 10, 5, 5)
        with pytest.raises(InvalidDimensions):
            cover_rect(10, 10, 5, 0)


class TestCoverFit:
    def test_same_size_is_identity(self, gradient):
        out = cover_fit(gradient, gradient.shape[1], gradient.shape[0])
        np.testing.assert_array_equal(out, gradient)
        assert out is not gradient

    def test_output_size(self, gradient):
        out = cover_fit(gradient, 30, 90)
        assert out.shape == (90, 30, 4)
        assert out.dtype == np.uint8

    def test_uniform_stays_uniform(self):
        src = np.zeros((20, 50, 4), np.uint8)
        src[...] = (12, 130, 250, 255)
        out = cover_fit(src, 33, 17).astype(int)
        assert np.abs(out - src[0, 0].astype(int)).max() <= 1

    def test_rejects_empty_destination(self, gradient):
        with pytest.raises(InvalidDimensions):
            cover_fit(gradient, 0, 10)


class TestBleed:
    def test_zero_softness_is_a_copy(self, gradient):
        out = bleed(gradient, 0)
        np.testing.assert_array_equal(out, gradient)
        assert out is not gradient

    def test_uniform_is_fixed_point(self):
        src = np.zeros((16, 16, 4), np.uint8)
        src[...] = (90, 40, 200, 255)
        np.testing.assert_array_equal(bleed(src, 5), src)

    def test_steps_are_capped(self, gradient):
        np.testing.assert_array_equal(bleed(gradient, 20), bleed(gradient, BLEED_MAX_STEPS))

    def test_fractional_softness_floors(self, gradient):
        np.testing.assert_array_equal(bleed(gradient, 2.9), bleed(gradient, 2))

    def test_softens_hard_edge(self):
        src = np.zeros((12, 20, 4), np.uint8)
        src[..., 3] = 255
        src[:, 10:, :3] = 255
        out = bleed(src, 3)
        middle = out[6, :, 0]
        assert ((middle > 0) & (middle < 255)).any()
        assert out[6, 9, 0] > 0 or out[6, 10, 0] < 255

    def test_does_not_touch_input(self, gradient):
        before = gradient.copy()
        bleed(gradient, 3)
        np.testing.assert_array_equal(gradient, before)
